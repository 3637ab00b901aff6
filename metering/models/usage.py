"""
metering/models/usage.py

Usage models: per-period counters and the read-only UI snapshot.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class UsageRecord(BaseModel):
    """
    Counter for one (user, feature, period_key).

    Records from past periods are kept for history and never mutated.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    feature: str
    period_key: int
    count: int
    updated_at: Optional[datetime] = None


class UsageStatus(str, Enum):
    OK = "ok"
    APPROACHING_LIMIT = "approaching_limit"
    AT_LIMIT = "at_limit"


class UsageSnapshot(BaseModel):
    """Current-period usage for display; never used for admission."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    feature: str
    used: int
    limit: int
    remaining: int
    period_key: int
    period_start: datetime
    resets_at: datetime
    status: UsageStatus
    creditable: bool
    credit_cost_per_unit: Optional[int] = None
