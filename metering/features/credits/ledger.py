"""
Credit ledger and balance service.

Manages credit accounting with:
- Append-only ledger (purchase, subtraction_for_feature, refund, manual_adjustment)
- Atomic debit-if-sufficient (no check-then-act, no negative balances)
- Balance row and ledger entry written in the same transaction

The cached balance on credit_accounts always equals the sum of the user's
ledger deltas; reconciliation.verify_account replays the ledger to prove it.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Union

from sqlalchemy import select, update, insert
from sqlalchemy.orm import Session

from metering.core.database import credit_accounts, credit_ledger, dialect_insert, use_session
from metering.core.errors import ValidationError
from metering.core.metrics import credit_debits_total
from metering.models.credit import CreditLedgerEntry, CreditReason, DebitResult


logger = logging.getLogger(__name__)

GRANT_REASONS = {CreditReason.PURCHASE, CreditReason.REFUND, CreditReason.MANUAL_ADJUSTMENT}


def _validate_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(f"Credit amount must be a positive integer, got {amount!r}")


def _coerce_reason(reason: Union[CreditReason, str]) -> CreditReason:
    try:
        return CreditReason(reason)
    except ValueError as e:
        raise ValidationError(f"Unknown credit reason {reason!r}") from e


def _append_entry(
    db: Session,
    user_id: str,
    delta: int,
    reason: CreditReason,
    related_feature: Optional[str],
    balance_after: int,
    now: datetime,
) -> int:
    """Append entry to credit_ledger. Returns entry ID."""
    result = db.execute(
        insert(credit_ledger)
        .values(
            user_id=user_id,
            delta=delta,
            reason=reason.value,
            related_feature=related_feature,
            balance_after=balance_after,
            created_at=now,
        )
        .returning(credit_ledger.c.id)
    )
    return int(result.scalar_one())


def get_balance(user_id: str, session: Optional[Session] = None) -> int:
    """Current balance; 0 for users who never held credits."""
    with use_session(session, "get_balance") as db:
        balance = db.execute(
            select(credit_accounts.c.balance).where(credit_accounts.c.user_id == user_id)
        ).scalar()
    return int(balance or 0)


def try_debit(
    user_id: str,
    amount: int,
    reason: Union[CreditReason, str] = CreditReason.SUBTRACTION_FOR_FEATURE,
    related_feature: Optional[str] = None,
    session: Optional[Session] = None,
) -> DebitResult:
    """
    Debit amount if and only if the balance covers it.

    The balance check and the write are a single conditional UPDATE; two
    concurrent debits of 8 against a balance of 10 cannot both succeed.

    Returns:
        DebitResult(ok=True, new_balance) or DebitResult(ok=False, shortfall)
    """
    _validate_amount(amount)
    reason = _coerce_reason(reason)
    now = datetime.now(timezone.utc)

    with use_session(session, "try_debit") as db:
        new_balance = db.execute(
            update(credit_accounts)
            .where(credit_accounts.c.user_id == user_id)
            .where(credit_accounts.c.balance >= amount)
            .values(balance=credit_accounts.c.balance - amount, updated_at=now)
            .returning(credit_accounts.c.balance)
        ).scalar()

        if new_balance is None:
            current = db.execute(
                select(credit_accounts.c.balance)
                .where(credit_accounts.c.user_id == user_id)
                .with_for_update()
            ).scalar() or 0
            shortfall = max(amount - int(current), 0)
            credit_debits_total.inc({"result": "insufficient"})
            logger.info(
                "[credits] debit refused",
                extra={"user_id": user_id, "amount": amount, "balance": int(current), "shortfall": shortfall},
            )
            return DebitResult(ok=False, shortfall=shortfall)

        entry_id = _append_entry(db, user_id, -amount, reason, related_feature, int(new_balance), now)

    credit_debits_total.inc({"result": "debited"})
    logger.info(
        "[credits] debited",
        extra={
            "user_id": user_id,
            "amount": amount,
            "reason": reason.value,
            "related_feature": related_feature,
            "balance_after": int(new_balance),
        },
    )
    return DebitResult(ok=True, new_balance=int(new_balance), entry_id=entry_id)


def credit(
    user_id: str,
    amount: int,
    reason: Union[CreditReason, str] = CreditReason.PURCHASE,
    related_feature: Optional[str] = None,
    session: Optional[Session] = None,
) -> int:
    """
    Add credits (purchase, refund or manual adjustment). Always succeeds.

    Returns:
        The new balance
    """
    _validate_amount(amount)
    reason = _coerce_reason(reason)
    if reason not in GRANT_REASONS:
        raise ValidationError(f"Credits cannot be granted with reason {reason.value}")
    now = datetime.now(timezone.utc)

    with use_session(session, "credit") as db:
        stmt = dialect_insert(db, credit_accounts).values(
            user_id=user_id,
            balance=amount,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[credit_accounts.c.user_id],
            set_={"balance": credit_accounts.c.balance + amount, "updated_at": now},
        ).returning(credit_accounts.c.balance)
        new_balance = int(db.execute(stmt).scalar_one())
        _append_entry(db, user_id, amount, reason, related_feature, new_balance, now)

    logger.info(
        "[credits] granted",
        extra={"user_id": user_id, "amount": amount, "reason": reason.value, "balance_after": new_balance},
    )
    return new_balance


def get_ledger_entries(user_id: str, limit: Optional[int] = None, session: Optional[Session] = None) -> List[CreditLedgerEntry]:
    """Ledger entries for a user, newest first."""
    query = (
        select(credit_ledger)
        .where(credit_ledger.c.user_id == user_id)
        .order_by(credit_ledger.c.id.desc())
    )
    if limit is not None:
        query = query.limit(limit)

    with use_session(session, "get_ledger_entries") as db:
        rows = db.execute(query).all()

    return [
        CreditLedgerEntry(
            id=row.id,
            user_id=row.user_id,
            delta=row.delta,
            reason=row.reason,
            related_feature=row.related_feature,
            balance_after=row.balance_after,
            created_at=row.created_at,
        )
        for row in rows
    ]
