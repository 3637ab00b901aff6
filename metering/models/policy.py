"""
metering/models/policy.py

FeaturePolicy model: what one tier allows for one feature.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class FeaturePolicy(BaseModel):
    """
    Quota and credit pricing for a (tier, feature) pair.

    quota is the per-period allotment; 0 means nothing is included in the
    tier (the feature may still be paid for with credits).
    credit_cost_per_unit of None means the feature cannot be bought with
    credits once the quota is spent.
    """
    model_config = ConfigDict(frozen=True)

    tier: str
    feature: str
    quota: int = Field(ge=0)
    credit_cost_per_unit: Optional[int] = Field(default=None, ge=0)

    @property
    def creditable(self) -> bool:
        return self.credit_cost_per_unit is not None
