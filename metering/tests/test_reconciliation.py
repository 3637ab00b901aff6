"""
Tests for credit ledger reconciliation.
"""
import pytest
from sqlalchemy import update

from metering.core.database import credit_accounts, credit_ledger, get_db_session
from metering.features.credits.ledger import credit, try_debit
from metering.features.credits.reconciliation import run_reconciliation, verify_account


pytestmark = pytest.mark.usefixtures("ledger_db")


def test_consistent_account():
    credit("u1", 10)
    try_debit("u1", 4)

    result = verify_account("u1")

    assert result.consistent
    assert result.ledger_sum == 6
    assert result.stored_balance == 6
    assert result.entry_count == 2


def test_empty_run():
    report = run_reconciliation()
    assert report.users_checked == 0
    assert report.status == "consistent"


def test_out_of_band_balance_write_is_detected(caplog):
    credit("u1", 10)
    credit("u2", 5)
    with get_db_session() as db:
        db.execute(update(credit_accounts).where(credit_accounts.c.user_id == "u1").values(balance=50))

    report = run_reconciliation()

    assert report.users_checked == 2
    assert report.status == "mismatch_detected"
    assert [m.user_id for m in report.mismatches] == ["u1"]
    assert report.mismatches[0].difference == -40
    assert any("ledger mismatch" in r.getMessage() for r in caplog.records)


def test_tampered_entry_breaks_chain():
    credit("u1", 10)
    try_debit("u1", 3)
    with get_db_session() as db:
        entry_id = db.execute(
            update(credit_ledger)
            .where(credit_ledger.c.user_id == "u1")
            .where(credit_ledger.c.delta == 10)
            .values(balance_after=11)
            .returning(credit_ledger.c.id)
        ).scalar_one()

    result = verify_account("u1")

    assert not result.consistent
    assert result.difference == 0
    assert result.broken_chain_entry_id == entry_id


def test_reconciliation_never_writes():
    credit("u1", 10)
    with get_db_session() as db:
        db.execute(update(credit_accounts).values(balance=1))

    run_reconciliation()

    assert verify_account("u1").stored_balance == 1
    assert verify_account("u1").entry_count == 1
