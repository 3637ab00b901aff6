"""
Tests for billing period resolution.
"""
from datetime import datetime, timedelta, timezone

import pytest

from metering.core.errors import ValidationError
from metering.features.periods.service import add_months, current_period_key, period_bounds
from metering.models.subscription import BillingInterval, Subscription, Tier


def make_subscription(start, interval=BillingInterval.MONTHLY):
    return Subscription(user_id="u1", tier=Tier.EDUCATOR, billing_interval=interval, period_start=start)


START = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


class TestMonthly:
    def test_first_period(self):
        sub = make_subscription(START)
        assert current_period_key(sub, START + timedelta(days=3)) == 0

    def test_boundary_is_half_open(self):
        sub = make_subscription(START)
        boundary = datetime(2024, 2, 15, 9, 0, tzinfo=timezone.utc)
        assert current_period_key(sub, boundary - timedelta(seconds=1)) == 0
        assert current_period_key(sub, boundary) == 1

    def test_later_periods(self):
        sub = make_subscription(START)
        assert current_period_key(sub, datetime(2024, 6, 20, tzinfo=timezone.utc)) == 5
        assert current_period_key(sub, datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)) == 12

    def test_before_start_is_period_zero(self):
        sub = make_subscription(START)
        assert current_period_key(sub, START - timedelta(days=40)) == 0

    def test_deterministic(self):
        sub = make_subscription(START)
        now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert current_period_key(sub, now) == current_period_key(sub, now)

    def test_naive_now_is_utc(self):
        sub = make_subscription(START)
        assert current_period_key(sub, datetime(2024, 2, 15, 9, 0)) == 1


class TestMonthEndClamping:
    def test_add_months_clamps(self):
        anchor = datetime(2024, 1, 31, tzinfo=timezone.utc)
        assert add_months(anchor, 1) == datetime(2024, 2, 29, tzinfo=timezone.utc)
        assert add_months(anchor, 2) == datetime(2024, 3, 31, tzinfo=timezone.utc)
        assert add_months(anchor, 13) == datetime(2025, 2, 28, tzinfo=timezone.utc)

    def test_period_starting_on_31st(self):
        sub = make_subscription(datetime(2024, 1, 31, tzinfo=timezone.utc))
        assert current_period_key(sub, datetime(2024, 2, 28, tzinfo=timezone.utc)) == 0
        assert current_period_key(sub, datetime(2024, 2, 29, tzinfo=timezone.utc)) == 1
        assert current_period_key(sub, datetime(2024, 3, 30, tzinfo=timezone.utc)) == 1
        assert current_period_key(sub, datetime(2024, 3, 31, tzinfo=timezone.utc)) == 2


class TestOtherIntervals:
    def test_quarterly(self):
        sub = make_subscription(START, BillingInterval.QUARTERLY)
        assert current_period_key(sub, datetime(2024, 4, 15, 8, 59, tzinfo=timezone.utc)) == 0
        assert current_period_key(sub, datetime(2024, 4, 15, 9, 0, tzinfo=timezone.utc)) == 1
        assert current_period_key(sub, datetime(2024, 12, 1, tzinfo=timezone.utc)) == 3

    def test_annual(self):
        sub = make_subscription(START, BillingInterval.ANNUAL)
        assert current_period_key(sub, datetime(2024, 12, 31, tzinfo=timezone.utc)) == 0
        assert current_period_key(sub, datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)) == 1
        assert current_period_key(sub, datetime(2027, 1, 16, tzinfo=timezone.utc)) == 3


class TestPeriodBounds:
    def test_bounds_monthly(self):
        sub = make_subscription(START)
        start, end = period_bounds(sub, 1)
        assert start == datetime(2024, 2, 15, 9, 0, tzinfo=timezone.utc)
        assert end == datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)

    def test_bounds_contain_now(self):
        sub = make_subscription(START, BillingInterval.QUARTERLY)
        now = datetime(2024, 9, 2, tzinfo=timezone.utc)
        start, end = period_bounds(sub, current_period_key(sub, now))
        assert start <= now < end

    def test_negative_key_rejected(self):
        with pytest.raises(ValidationError):
            period_bounds(make_subscription(START), -1)


class TestAnchorNormalization:
    def test_offset_anchor_is_stored_as_utc(self):
        anchor = datetime(2024, 1, 31, 22, 0, tzinfo=timezone(timedelta(hours=-5)))
        sub = make_subscription(anchor)
        assert sub.period_start == datetime(2024, 2, 1, 3, 0, tzinfo=timezone.utc)
        assert sub.period_start.utcoffset() == timedelta(0)

    def test_naive_anchor_is_utc(self):
        sub = make_subscription(datetime(2024, 1, 15, 9, 0))
        assert sub.period_start == START

    def test_offset_anchor_boundary(self):
        anchor = datetime(2024, 1, 31, 22, 0, tzinfo=timezone(timedelta(hours=-5)))
        sub = make_subscription(anchor)
        assert current_period_key(sub, datetime(2024, 3, 1, 2, 59, tzinfo=timezone.utc)) == 0
        assert current_period_key(sub, datetime(2024, 3, 1, 3, 0, tzinfo=timezone.utc)) == 1
