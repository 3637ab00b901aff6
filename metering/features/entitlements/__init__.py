"""
Entitlement Engine

Decides whether a user may use a metered feature right now:
- Admitted under the tier's per-period quota
- Admitted by spending credits once the quota is exhausted
- Denied with a reason (and shortfall) otherwise

Usage and credit ledgers are updated in the same transaction as the decision.
"""

from metering.features.entitlements.service import (
    authorize,
    get_credit_balance,
    get_usage_snapshot,
    get_usage_summary,
    grant_credits,
)

__all__ = [
    "authorize",
    "get_credit_balance",
    "get_usage_snapshot",
    "get_usage_summary",
    "grant_credits",
]
