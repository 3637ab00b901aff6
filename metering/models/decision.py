"""
metering/models/decision.py

Authorization decision returned by the entitlement evaluator.

Denials are ordinary values: the caller renders reason and shortfall into
"upgrade or buy credits" messaging and writes its own audit line.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional, Dict, Any


class DecisionStatus(str, Enum):
    ADMITTED = "admitted"
    DENIED = "denied"
    ERROR = "error"


class AdmissionVia(str, Enum):
    QUOTA = "quota"
    CREDITS = "credits"


class DecisionReason(str, Enum):
    QUOTA_EXHAUSTED_AND_NOT_CREDITABLE = "quota_exhausted_and_not_creditable"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    UNKNOWN_FEATURE = "unknown_feature"
    UNKNOWN_USER = "unknown_user"


@dataclass(frozen=True)
class Decision:
    status: DecisionStatus
    user_id: str
    feature: str
    quantity: int
    via: Optional[AdmissionVia] = None
    reason: Optional[DecisionReason] = None
    spent: int = 0
    shortfall: int = 0
    quota: Optional[int] = None
    period_key: Optional[int] = None
    usage_before: Optional[int] = None
    usage_after: Optional[int] = None
    balance_after: Optional[int] = None

    @property
    def admitted(self) -> bool:
        return self.status == DecisionStatus.ADMITTED

    @property
    def outcome(self) -> str:
        """Flat label, e.g. admitted_quota or denied_insufficient_credits."""
        if self.via is not None:
            return f"{self.status.value}_{self.via.value}"
        if self.reason is not None:
            return f"{self.status.value}_{self.reason.value}"
        return self.status.value

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        for key, value in payload.items():
            if isinstance(value, Enum):
                payload[key] = value.value
        return payload

    @classmethod
    def admitted_via_quota(cls, user_id: str, feature: str, quantity: int, **details) -> "Decision":
        return cls(DecisionStatus.ADMITTED, user_id, feature, quantity, via=AdmissionVia.QUOTA, **details)

    @classmethod
    def admitted_via_credits(cls, user_id: str, feature: str, quantity: int, spent: int, **details) -> "Decision":
        return cls(DecisionStatus.ADMITTED, user_id, feature, quantity, via=AdmissionVia.CREDITS, spent=spent, **details)

    @classmethod
    def denied(cls, user_id: str, feature: str, quantity: int, reason: DecisionReason, **details) -> "Decision":
        return cls(DecisionStatus.DENIED, user_id, feature, quantity, reason=reason, **details)

    @classmethod
    def error(cls, user_id: str, feature: str, quantity: int, reason: DecisionReason) -> "Decision":
        return cls(DecisionStatus.ERROR, user_id, feature, quantity, reason=reason)
