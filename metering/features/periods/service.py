"""
metering/features/periods/service.py

Billing period resolution.

Periods are whole billing intervals counted from the subscription's
period_start (calendar anniversaries, not rolling 30-day windows). There is
no reset job: a new period key simply has no usage rows yet.
"""

import calendar
from datetime import datetime, timezone
from typing import Optional, Tuple

from metering.core.errors import ValidationError
from metering.models.subscription import BillingInterval, Subscription


INTERVAL_MONTHS = {
    BillingInterval.MONTHLY: 1,
    BillingInterval.QUARTERLY: 3,
    BillingInterval.ANNUAL: 12,
}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(anchor: datetime, months: int) -> datetime:
    """Shift by whole months, clamping the day to the target month's length."""
    total = anchor.month - 1 + months
    year = anchor.year + total // 12
    month = total % 12 + 1
    day = min(anchor.day, calendar.monthrange(year, month)[1])
    return anchor.replace(year=year, month=month, day=day)


def current_period_key(subscription: Subscription, now: Optional[datetime] = None) -> int:
    """
    Number of whole billing intervals elapsed since period_start.

    Same subscription + same now = same key. A now earlier than
    period_start maps to period 0.
    """
    start = _as_utc(subscription.period_start)
    moment = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    if moment <= start:
        return 0

    step = INTERVAL_MONTHS[BillingInterval(subscription.billing_interval)]
    months = (moment.year - start.year) * 12 + (moment.month - start.month)
    key = months // step
    # Same calendar month as the boundary but before the anniversary instant
    if key > 0 and add_months(start, key * step) > moment:
        key -= 1
    return key


def period_bounds(subscription: Subscription, period_key: int) -> Tuple[datetime, datetime]:
    """Half-open [start, end) window covered by period_key."""
    if period_key < 0:
        raise ValidationError(f"period_key must be non-negative, got {period_key}")
    start = _as_utc(subscription.period_start)
    step = INTERVAL_MONTHS[BillingInterval(subscription.billing_interval)]
    return add_months(start, period_key * step), add_months(start, (period_key + 1) * step)
