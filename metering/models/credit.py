"""
metering/models/credit.py

Credit ledger models.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class CreditReason(str, Enum):
    PURCHASE = "purchase"
    SUBTRACTION_FOR_FEATURE = "subtraction_for_feature"
    REFUND = "refund"
    MANUAL_ADJUSTMENT = "manual_adjustment"


class CreditLedgerEntry(BaseModel):
    """
    One append-only ledger line.

    delta is signed: positive for grants, negative for debits. The account
    balance always equals the sum of deltas for the user.
    """
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    delta: int
    reason: CreditReason
    related_feature: Optional[str] = None
    balance_after: int
    created_at: Optional[datetime] = None


class DebitResult(BaseModel):
    """Outcome of an atomic debit-if-sufficient."""
    model_config = ConfigDict(frozen=True)

    ok: bool
    new_balance: Optional[int] = None
    shortfall: int = 0
    entry_id: Optional[int] = None
