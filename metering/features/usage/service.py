"""
metering/features/usage/service.py

Usage ledger: per-user, per-feature, per-period counters.

Handles:
- Reads of the current count (0 when no row exists yet)
- Atomic upsert-and-add increments
- The quota gate: increment only while count + delta stays within a ceiling
- Period history for reporting

Counters are never changed by a read followed by a separate write. Every
mutation is one INSERT ... ON CONFLICT DO UPDATE ... RETURNING statement.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from metering.core.database import dialect_insert, usage_records, use_session
from metering.core.errors import ValidationError
from metering.models.usage import UsageRecord


logger = logging.getLogger(__name__)

_KEY_COLUMNS = [usage_records.c.user_id, usage_records.c.feature, usage_records.c.period_key]


def _validate_delta(delta: int) -> None:
    if isinstance(delta, bool) or not isinstance(delta, int) or delta <= 0:
        raise ValidationError(f"Usage delta must be a positive integer, got {delta!r}")


def get_usage(user_id: str, feature: str, period_key: int, session: Optional[Session] = None) -> int:
    """
    Get the count for (user, feature, period_key).

    Returns 0 if no usage has been recorded in that period.
    """
    with use_session(session, "get_usage") as db:
        used = db.execute(
            select(usage_records.c.used)
            .where(usage_records.c.user_id == user_id)
            .where(usage_records.c.feature == feature)
            .where(usage_records.c.period_key == period_key)
        ).scalar()
    return int(used or 0)


def increment_usage(
    user_id: str,
    feature: str,
    period_key: int,
    delta: int,
    session: Optional[Session] = None,
) -> int:
    """
    Add delta to the counter, creating it on first use.

    Returns:
        The new count
    """
    _validate_delta(delta)
    now = datetime.now(timezone.utc)
    with use_session(session, "increment_usage") as db:
        stmt = dialect_insert(db, usage_records).values(
            user_id=user_id,
            feature=feature,
            period_key=period_key,
            used=delta,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=_KEY_COLUMNS,
            set_={"used": usage_records.c.used + delta, "updated_at": now},
        ).returning(usage_records.c.used)
        new_count = db.execute(stmt).scalar_one()

    logger.debug(
        "[usage] incremented",
        extra={"user_id": user_id, "feature": feature, "period_key": period_key, "delta": delta, "new_count": new_count},
    )
    return int(new_count)


def increment_usage_within(
    user_id: str,
    feature: str,
    period_key: int,
    delta: int,
    ceiling: int,
    session: Optional[Session] = None,
) -> Optional[int]:
    """
    Add delta only if the resulting count stays <= ceiling.

    The comparison and the write are one statement, so concurrent callers
    can never be admitted past the ceiling together.

    Returns:
        The new count, or None when the ceiling would be exceeded (nothing written)
    """
    _validate_delta(delta)
    if delta > ceiling:
        return None

    now = datetime.now(timezone.utc)
    with use_session(session, "increment_usage_within") as db:
        stmt = dialect_insert(db, usage_records).values(
            user_id=user_id,
            feature=feature,
            period_key=period_key,
            used=delta,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=_KEY_COLUMNS,
            set_={"used": usage_records.c.used + delta, "updated_at": now},
            where=(usage_records.c.used + delta <= ceiling),
        ).returning(usage_records.c.used)
        new_count = db.execute(stmt).scalar()

    if new_count is None:
        return None
    return int(new_count)


def get_usage_history(user_id: str, feature: str, session: Optional[Session] = None) -> List[UsageRecord]:
    """All recorded periods for (user, feature), oldest first."""
    with use_session(session, "get_usage_history") as db:
        rows = db.execute(
            select(usage_records)
            .where(usage_records.c.user_id == user_id)
            .where(usage_records.c.feature == feature)
            .order_by(usage_records.c.period_key)
        ).all()

    return [
        UsageRecord(
            user_id=row.user_id,
            feature=row.feature,
            period_key=row.period_key,
            count=row.used,
            updated_at=row.updated_at,
        )
        for row in rows
    ]
