"""
metering/models/reconciliation.py

Ledger replay results.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict


class ReconciliationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    stored_balance: int
    ledger_sum: int
    entry_count: int
    # First entry whose balance_after does not follow from the running sum
    broken_chain_entry_id: Optional[int] = None

    @property
    def difference(self) -> int:
        return self.ledger_sum - self.stored_balance

    @property
    def consistent(self) -> bool:
        return self.difference == 0 and self.broken_chain_entry_id is None


class ReconciliationReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    users_checked: int
    mismatches: List[ReconciliationResult]
    reconciled_at: datetime

    @property
    def status(self) -> str:
        return "consistent" if not self.mismatches else "mismatch_detected"
