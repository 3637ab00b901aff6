"""
metering/models/subscription.py

Subscription facts delivered by the billing collaborator.

The engine treats these as read-only input: tier changes and cancellations
are settled elsewhere and arrive here already decided.
"""

from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, ConfigDict, field_validator


class Tier(str, Enum):
    FREE = "free"
    EDUCATOR = "educator"
    PROFESSIONAL = "professional"
    INSTITUTION = "institution"
    ENTERPRISE = "enterprise"


class BillingInterval(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"


class Subscription(BaseModel):
    """
    A user's current subscription.

    period_start anchors the billing cycle: usage periods are counted in
    whole billing intervals from this instant.
    """
    model_config = ConfigDict(frozen=True, use_enum_values=False)

    user_id: str
    tier: Tier
    billing_interval: BillingInterval = BillingInterval.MONTHLY
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    period_start: datetime

    @field_validator("period_start")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        # Naive values are UTC; SQLite hands them back without an offset
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
