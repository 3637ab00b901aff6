"""
metering/features/policy/catalogue.py

Policy catalogue: tier -> per-feature quota, feature -> credit cost.

Handles:
- Built-in default catalogue (free, educator, professional, institution, enterprise)
- Optional JSON catalogue file (POLICY_CATALOGUE_PATH), versioned by deploy
- Pure lookups; no storage access
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union, Any

from metering.core.config import settings
from metering.core.errors import UnknownFeatureError, ValidationError
from metering.models.policy import FeaturePolicy
from metering.models.subscription import Tier


logger = logging.getLogger(__name__)


# Default catalogue. Quotas are per billing period; storage is in MB.
DEFAULT_CATALOGUE: Dict[str, Any] = {
    "version": "2024-09-default",
    "features": {
        "ai_recommendations": {"credit_cost_per_unit": 1},
        "progress_reports": {"credit_cost_per_unit": 3},
        "meeting_notes": {"credit_cost_per_unit": 2},
        "lesson_plans": {"credit_cost_per_unit": 5},
        "storage": {"credit_cost_per_unit": None},  # not creditable
    },
    "tiers": {
        "free": {
            "ai_recommendations": 0,
            "progress_reports": 0,
            "meeting_notes": 0,
            "lesson_plans": 0,
            "storage": 100,
        },
        "educator": {
            "ai_recommendations": 50,
            "progress_reports": 10,
            "meeting_notes": 5,
            "lesson_plans": 0,
            "storage": 1000,
        },
        "professional": {
            "ai_recommendations": 200,
            "progress_reports": 50,
            "meeting_notes": 20,
            "lesson_plans": 10,
            "storage": 5000,
        },
        "institution": {
            "ai_recommendations": 300,
            "progress_reports": 100,
            "meeting_notes": 50,
            "lesson_plans": 30,
            "storage": 20000,
        },
        "enterprise": {
            "ai_recommendations": 1000,
            "progress_reports": 500,
            "meeting_notes": 200,
            "lesson_plans": 100,
            "storage": 100000,
        },
    },
}


TierLike = Union[Tier, str]


def _tier_key(tier: TierLike) -> str:
    return tier.value if isinstance(tier, Tier) else str(tier)


def _non_negative_int(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{what} must be a non-negative integer, got {value!r}")
    return value


class PolicyCatalogue:
    """Immutable lookup over tier quotas and feature credit costs."""

    def __init__(
        self,
        credit_costs: Dict[str, Optional[int]],
        tier_quotas: Dict[str, Dict[str, int]],
        version: str = "unversioned",
    ):
        self.version = version
        self._credit_costs = dict(credit_costs)
        self._tier_quotas = {tier: dict(quotas) for tier, quotas in tier_quotas.items()}

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "PolicyCatalogue":
        """
        Build a catalogue from the DEFAULT_CATALOGUE shape.

        Raises:
            ValidationError: if the structure or any value is invalid, or a Tier is missing
        """
        if not isinstance(config, dict):
            raise ValidationError("Policy catalogue must be a JSON object")
        features = config.get("features")
        tiers = config.get("tiers")
        if not isinstance(features, dict) or not isinstance(tiers, dict):
            raise ValidationError("Policy catalogue requires 'features' and 'tiers' objects")

        credit_costs: Dict[str, Optional[int]] = {}
        for feature, entry in features.items():
            cost = (entry or {}).get("credit_cost_per_unit")
            credit_costs[feature] = None if cost is None else _non_negative_int(cost, f"{feature}.credit_cost_per_unit")

        tier_quotas: Dict[str, Dict[str, int]] = {}
        for tier, quotas in tiers.items():
            if not isinstance(quotas, dict):
                raise ValidationError(f"Tier {tier} quotas must be an object")
            for feature, quota in quotas.items():
                if feature not in credit_costs:
                    raise ValidationError(f"Tier {tier} sets a quota for unregistered feature {feature}")
                _non_negative_int(quota, f"{tier}.{feature}")
            tier_quotas[tier] = quotas

        missing = [t.value for t in Tier if t.value not in tier_quotas]
        if missing:
            raise ValidationError(f"Policy catalogue is missing tiers: {', '.join(missing)}")

        return cls(credit_costs, tier_quotas, version=str(config.get("version", "unversioned")))

    def features(self) -> List[str]:
        return sorted(self._credit_costs)

    def tiers(self) -> List[str]:
        return sorted(self._tier_quotas)

    def _require_feature(self, feature: str) -> None:
        if feature not in self._credit_costs:
            raise UnknownFeatureError(feature)

    def quota_for(self, tier: TierLike, feature: str) -> int:
        """Per-period quota; 0 when the tier includes none of the feature."""
        self._require_feature(feature)
        key = _tier_key(tier)
        if key not in self._tier_quotas:
            raise ValidationError(f"Tier {key} is not configured in catalogue {self.version}")
        return int(self._tier_quotas[key].get(feature, 0))

    def credit_cost_for(self, feature: str) -> Tuple[int, bool]:
        """Return (cost per unit, creditable)."""
        self._require_feature(feature)
        cost = self._credit_costs[feature]
        if cost is None:
            return 0, False
        return int(cost), True

    def policy_for(self, tier: TierLike, feature: str) -> FeaturePolicy:
        quota = self.quota_for(tier, feature)
        cost, creditable = self.credit_cost_for(feature)
        return FeaturePolicy(
            tier=_tier_key(tier),
            feature=feature,
            quota=quota,
            credit_cost_per_unit=cost if creditable else None,
        )


def load_catalogue(path: Union[str, Path]) -> PolicyCatalogue:
    """Load a catalogue from a JSON file."""
    config_path = Path(path)
    try:
        with open(config_path, "r") as f:
            config = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ValidationError(f"Failed to load policy catalogue {config_path}: {e}") from e

    catalogue = PolicyCatalogue.from_dict(config)
    logger.info(
        "Loaded policy catalogue",
        extra={"path": str(config_path), "catalogue_version": catalogue.version},
    )
    return catalogue


_catalogue: Optional[PolicyCatalogue] = None


def get_catalogue() -> PolicyCatalogue:
    """Process-wide catalogue (file from settings, else built-in default)."""
    global _catalogue
    if _catalogue is None:
        if settings.POLICY_CATALOGUE_PATH:
            _catalogue = load_catalogue(settings.POLICY_CATALOGUE_PATH)
        else:
            _catalogue = PolicyCatalogue.from_dict(DEFAULT_CATALOGUE)
    return _catalogue


def set_catalogue(catalogue: Optional[PolicyCatalogue]) -> None:
    """Swap the process-wide catalogue (None re-reads settings on next use)."""
    global _catalogue
    _catalogue = catalogue
