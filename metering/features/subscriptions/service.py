"""
metering/features/subscriptions/service.py

Subscription facts from the billing collaborator.

The billing/checkout flow calls upsert_subscription once a tier change is
settled; the engine only ever reads.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from metering.core.database import dialect_insert, subscriptions, use_session
from metering.models.subscription import Subscription


logger = logging.getLogger(__name__)


def get_subscription(user_id: str, session: Optional[Session] = None) -> Optional[Subscription]:
    """Get the user's current subscription, or None if the user is unknown."""
    with use_session(session, "get_subscription") as db:
        row = db.execute(
            select(subscriptions).where(subscriptions.c.user_id == user_id)
        ).first()

    if not row:
        return None

    return Subscription(
        user_id=row.user_id,
        tier=row.tier,
        billing_interval=row.billing_interval,
        status=row.status,
        period_start=row.period_start,
    )


def upsert_subscription(subscription: Subscription, session: Optional[Session] = None) -> Subscription:
    """
    Record a settled subscription (creates or replaces).

    Usage rows are keyed by period number, so changing period_start or the
    billing interval re-partitions future lookups; past rows are untouched.
    """
    now = datetime.now(timezone.utc)
    values = {
        "user_id": subscription.user_id,
        "tier": subscription.tier.value,
        "billing_interval": subscription.billing_interval.value,
        "status": subscription.status.value,
        "period_start": subscription.period_start,
        "updated_at": now,
    }
    with use_session(session, "upsert_subscription") as db:
        stmt = dialect_insert(db, subscriptions).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[subscriptions.c.user_id],
            set_={k: v for k, v in values.items() if k != "user_id"},
        )
        db.execute(stmt)

    logger.info(
        "[subscription] upserted",
        extra={
            "user_id": subscription.user_id,
            "tier": subscription.tier.value,
            "billing_interval": subscription.billing_interval.value,
            "status": subscription.status.value,
        },
    )
    return subscription
