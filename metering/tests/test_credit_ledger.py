"""
Tests for the credit ledger and balance service.
"""
import pytest

from metering.core.errors import ValidationError
from metering.core.metrics import credit_debits_total
from metering.features.credits.ledger import credit, get_balance, get_ledger_entries, try_debit
from metering.models.credit import CreditReason


pytestmark = pytest.mark.usefixtures("ledger_db")


class TestGrants:
    def test_balance_starts_at_zero(self):
        assert get_balance("u1") == 0

    def test_purchase_creates_account(self):
        assert credit("u1", 20) == 20
        assert credit("u1", 5, CreditReason.REFUND) == 25
        assert get_balance("u1") == 25

    def test_reason_accepts_string(self):
        assert credit("u1", 3, "manual_adjustment") == 3

    def test_grant_cannot_use_debit_reason(self):
        with pytest.raises(ValidationError):
            credit("u1", 10, CreditReason.SUBTRACTION_FOR_FEATURE)
        assert get_balance("u1") == 0

    def test_unknown_reason(self):
        with pytest.raises(ValidationError):
            credit("u1", 10, "gift")

    @pytest.mark.parametrize("amount", [0, -5, True, 2.5])
    def test_amount_must_be_positive_integer(self, amount):
        with pytest.raises(ValidationError):
            credit("u1", amount)


class TestDebits:
    def test_debit_within_balance(self):
        credit("u1", 10)

        result = try_debit("u1", 3, related_feature="progress_reports")

        assert result.ok is True
        assert result.new_balance == 7
        assert result.entry_id is not None
        assert get_balance("u1") == 7
        assert credit_debits_total.value({"result": "debited"}) == 1

    def test_debit_entire_balance(self):
        credit("u1", 5)
        result = try_debit("u1", 5)
        assert result.ok is True
        assert result.new_balance == 0

    def test_insufficient_balance_reports_shortfall(self):
        credit("u1", 2)

        result = try_debit("u1", 5)

        assert result.ok is False
        assert result.shortfall == 3
        assert result.new_balance is None
        assert get_balance("u1") == 2
        assert credit_debits_total.value({"result": "insufficient"}) == 1

    def test_debit_without_account(self):
        result = try_debit("nobody", 4)
        assert result.ok is False
        assert result.shortfall == 4
        assert get_ledger_entries("nobody") == []

    def test_refused_debit_writes_no_entry(self):
        credit("u1", 2)
        try_debit("u1", 5)
        assert len(get_ledger_entries("u1")) == 1


class TestLedgerEntries:
    def test_entries_newest_first(self):
        credit("u1", 10)
        try_debit("u1", 3, related_feature="progress_reports")
        credit("u1", 2, CreditReason.REFUND)

        entries = get_ledger_entries("u1")

        assert [e.delta for e in entries] == [2, -3, 10]
        assert [e.balance_after for e in entries] == [9, 7, 10]
        assert entries[1].reason == CreditReason.SUBTRACTION_FOR_FEATURE
        assert entries[1].related_feature == "progress_reports"
        assert entries[2].reason == CreditReason.PURCHASE

    def test_limit(self):
        for _ in range(4):
            credit("u1", 1)
        assert len(get_ledger_entries("u1", limit=2)) == 2

    def test_sum_of_deltas_equals_balance(self):
        credit("u1", 12)
        try_debit("u1", 5)
        try_debit("u1", 9)
        try_debit("u1", 7)
        assert sum(e.delta for e in get_ledger_entries("u1")) == get_balance("u1") == 0
