"""
Credit ledger reconciliation.

Replays each user's ledger and compares it with the stored balance.
Report only: a mismatch means a bug or out-of-band write, and is surfaced
for investigation rather than papered over with an adjustment entry.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select, union
from sqlalchemy.orm import Session

from metering.core.database import credit_accounts, credit_ledger, use_session
from metering.models.reconciliation import ReconciliationReport, ReconciliationResult


logger = logging.getLogger(__name__)


def verify_account(user_id: str, session: Optional[Session] = None) -> ReconciliationResult:
    """
    Replay one user's ledger.

    Checks:
    1. Sum of deltas equals the stored balance
    2. Every entry's balance_after equals the running sum at that entry
    """
    with use_session(session, "verify_account") as db:
        stored = db.execute(
            select(credit_accounts.c.balance).where(credit_accounts.c.user_id == user_id)
        ).scalar()
        rows = db.execute(
            select(credit_ledger.c.id, credit_ledger.c.delta, credit_ledger.c.balance_after)
            .where(credit_ledger.c.user_id == user_id)
            .order_by(credit_ledger.c.id)
        ).all()

    running = 0
    broken_at = None
    for entry_id, delta, balance_after in rows:
        running += delta
        if broken_at is None and balance_after != running:
            broken_at = entry_id

    return ReconciliationResult(
        user_id=user_id,
        stored_balance=int(stored or 0),
        ledger_sum=running,
        entry_count=len(rows),
        broken_chain_entry_id=broken_at,
    )


def run_reconciliation(session: Optional[Session] = None) -> ReconciliationReport:
    """Verify every user that has an account or any ledger entry."""
    with use_session(session, "run_reconciliation") as db:
        user_ids: List[str] = [
            row[0]
            for row in db.execute(
                union(select(credit_accounts.c.user_id), select(credit_ledger.c.user_id))
            ).all()
        ]
        results = [verify_account(user_id, session=db) for user_id in sorted(user_ids)]

    mismatches = [r for r in results if not r.consistent]
    for mismatch in mismatches:
        logger.error(
            "[reconciliation] ledger mismatch",
            extra={
                "user_id": mismatch.user_id,
                "ledger_sum": mismatch.ledger_sum,
                "stored_balance": mismatch.stored_balance,
                "difference": mismatch.difference,
                "broken_chain_entry_id": mismatch.broken_chain_entry_id,
            },
        )

    report = ReconciliationReport(
        users_checked=len(results),
        mismatches=mismatches,
        reconciled_at=datetime.now(timezone.utc),
    )
    logger.info(
        "[reconciliation] completed",
        extra={"users_checked": report.users_checked, "mismatches_found": len(mismatches)},
    )
    return report
