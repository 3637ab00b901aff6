"""
metering/features/entitlements/service.py

Entitlement evaluator and the engine's external operations.

Handles:
- authorize: quota admission, credit fallback, or denial, as one transaction
- get_usage_snapshot / get_usage_summary: read-only usage for display
- grant_credits / get_credit_balance: credit top-ups and balance reads

Business denials are returned as Decision values. Only storage failures
(StorageUnavailableError) and invalid arguments (ValidationError) raise.
"""

import logging
from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy.orm import Session

from metering.core.config import settings
from metering.core.database import get_db_session, use_session
from metering.core.errors import UnknownFeatureError, UnknownUserError, ValidationError
from metering.core.logging import log_event
from metering.core.metrics import authorize_decisions_total
from metering.features.credits.ledger import credit, get_balance, try_debit
from metering.features.periods.service import current_period_key, period_bounds
from metering.features.policy.catalogue import get_catalogue
from metering.features.subscriptions.service import get_subscription
from metering.features.usage.service import get_usage, increment_usage, increment_usage_within
from metering.models.credit import CreditReason
from metering.models.decision import Decision, DecisionReason, DecisionStatus
from metering.models.usage import UsageSnapshot, UsageStatus


logger = logging.getLogger(__name__)


def _validate_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError(f"Quantity must be a positive integer, got {quantity!r}")


def _evaluate(db: Session, user_id: str, feature: str, quantity: int, now: Optional[datetime]) -> Decision:
    """Decide and apply, inside the caller's transaction."""
    subscription = get_subscription(user_id, session=db)
    if subscription is None:
        return Decision.error(user_id, feature, quantity, DecisionReason.UNKNOWN_USER)

    period_key = current_period_key(subscription, now)
    try:
        policy = get_catalogue().policy_for(subscription.tier, feature)
    except UnknownFeatureError:
        return Decision.error(user_id, feature, quantity, DecisionReason.UNKNOWN_FEATURE)

    details = {"quota": policy.quota, "period_key": period_key}
    usage_before = get_usage(user_id, feature, period_key, session=db)

    # The gated increment is the admission check.
    new_count = increment_usage_within(
        user_id, feature, period_key, quantity, ceiling=policy.quota, session=db
    )
    if new_count is not None:
        return Decision.admitted_via_quota(
            user_id, feature, quantity,
            usage_before=new_count - quantity, usage_after=new_count, **details,
        )

    if not policy.creditable:
        return Decision.denied(
            user_id, feature, quantity, DecisionReason.QUOTA_EXHAUSTED_AND_NOT_CREDITABLE,
            usage_before=usage_before, usage_after=usage_before, **details,
        )

    cost = policy.credit_cost_per_unit * quantity
    if cost == 0:
        new_count = increment_usage(user_id, feature, period_key, quantity, session=db)
        return Decision.admitted_via_credits(
            user_id, feature, quantity, spent=0,
            usage_before=new_count - quantity, usage_after=new_count,
            balance_after=get_balance(user_id, session=db), **details,
        )

    debit = try_debit(user_id, cost, CreditReason.SUBTRACTION_FOR_FEATURE, feature, session=db)
    if not debit.ok:
        return Decision.denied(
            user_id, feature, quantity, DecisionReason.INSUFFICIENT_CREDITS,
            shortfall=debit.shortfall, usage_before=usage_before, usage_after=usage_before,
            balance_after=get_balance(user_id, session=db), **details,
        )

    # Usage is still tracked when paid for with credits
    new_count = increment_usage(user_id, feature, period_key, quantity, session=db)
    return Decision.admitted_via_credits(
        user_id, feature, quantity, spent=cost,
        usage_before=new_count - quantity, usage_after=new_count,
        balance_after=debit.new_balance, **details,
    )


def _log_decision(decision: Decision) -> None:
    extra = {
        "user_id": decision.user_id,
        "feature": decision.feature,
        "quantity": decision.quantity,
        "quota": decision.quota,
        "period_key": decision.period_key,
        "usage_after": decision.usage_after,
    }
    if decision.status == DecisionStatus.ADMITTED:
        extra["spent"] = decision.spent
        logger.info(f"[entitlement] {decision.outcome.upper()}", extra=extra)
    elif decision.status == DecisionStatus.DENIED:
        extra["shortfall"] = decision.shortfall
        logger.warning(f"[entitlement] {decision.outcome.upper()}", extra=extra)
    else:
        log_event(
            "error",
            f"[entitlement] {decision.outcome.upper()}",
            user_id=decision.user_id,
            feature=decision.feature,
            event_type="authorize",
            error_code=decision.reason.value,
            extra={"quantity": decision.quantity},
        )


def authorize(user_id: str, feature: str, quantity: int = 1, *, now: Optional[datetime] = None) -> Decision:
    """
    Decide whether user_id may perform quantity units of feature, and record it.

    Steps (one transaction spanning usage and credits):
    1. Resolve subscription, period and policy
    2. Admit under quota if count + quantity <= quota (gated increment)
    3. Otherwise deny if the feature is not creditable
    4. Otherwise debit cost * quantity credits and record usage, or deny
       with the shortfall

    Raises:
        ValidationError: quantity is not a positive integer
        StorageUnavailableError: the store failed; nothing was applied
    """
    _validate_quantity(quantity)

    with get_db_session("authorize") as db:
        decision = _evaluate(db, user_id, feature, quantity, now)

    # Only committed decisions are reported
    authorize_decisions_total.inc({"outcome": decision.outcome})
    _log_decision(decision)
    return decision


def _snapshot(db: Session, subscription, feature: str, now: Optional[datetime]) -> UsageSnapshot:
    policy = get_catalogue().policy_for(subscription.tier, feature)
    period_key = current_period_key(subscription, now)
    period_start, resets_at = period_bounds(subscription, period_key)
    used = get_usage(subscription.user_id, feature, period_key, session=db)

    if used >= policy.quota:
        status = UsageStatus.AT_LIMIT
    elif used >= policy.quota * settings.USAGE_WARNING_THRESHOLD:
        status = UsageStatus.APPROACHING_LIMIT
    else:
        status = UsageStatus.OK

    return UsageSnapshot(
        user_id=subscription.user_id,
        feature=feature,
        used=used,
        limit=policy.quota,
        remaining=max(0, policy.quota - used),
        period_key=period_key,
        period_start=period_start,
        resets_at=resets_at,
        status=status,
        creditable=policy.creditable,
        credit_cost_per_unit=policy.credit_cost_per_unit,
    )


def get_usage_snapshot(user_id: str, feature: str, *, now: Optional[datetime] = None) -> UsageSnapshot:
    """
    Current-period usage for one feature (read-only, for display).

    Raises:
        UnknownUserError: no subscription for user_id
        UnknownFeatureError: feature not in the catalogue
    """
    with use_session(None, "get_usage_snapshot") as db:
        subscription = get_subscription(user_id, session=db)
        if subscription is None:
            raise UnknownUserError(user_id)
        return _snapshot(db, subscription, feature, now)


def get_usage_summary(user_id: str, *, now: Optional[datetime] = None) -> List[UsageSnapshot]:
    """Snapshots for every catalogue feature, read in one transaction."""
    with use_session(None, "get_usage_summary") as db:
        subscription = get_subscription(user_id, session=db)
        if subscription is None:
            raise UnknownUserError(user_id)
        return [_snapshot(db, subscription, feature, now) for feature in get_catalogue().features()]


def grant_credits(user_id: str, amount: int, reason: Union[CreditReason, str] = CreditReason.PURCHASE) -> int:
    """
    Add settled credits (purchase, refund, promotional/manual grant).

    Returns:
        The new balance
    """
    return credit(user_id, amount, reason)


def get_credit_balance(user_id: str) -> int:
    return get_balance(user_id)
