# metering/conftest.py
import os
from datetime import datetime, timezone

import pytest

from metering.core.database import (
    create_all_tables,
    dispose_engine,
    drop_all_tables,
    init_engine,
)
from metering.core.metrics import METRICS
from metering.features.policy.catalogue import set_catalogue
from metering.features.subscriptions.service import upsert_subscription
from metering.models.subscription import BillingInterval, Subscription, Tier


PERIOD_START = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def db_url(tmp_path):
    """
    Provide a database URL for tests.

    TEST_DATABASE_URL wins when set (e.g. a PostgreSQL instance); otherwise
    each test gets its own SQLite file so threads can share it.
    """
    return os.getenv("TEST_DATABASE_URL") or f"sqlite:///{tmp_path / 'metering.db'}"


@pytest.fixture(scope="function", autouse=True)
def reset_state():
    """Catalogue and counters are process-wide; start every test clean."""
    set_catalogue(None)
    METRICS.reset()
    yield
    set_catalogue(None)
    METRICS.reset()


@pytest.fixture(scope="function")
def ledger_db(db_url):
    """Fresh schema per test, dropped afterwards."""
    init_engine(db_url)
    drop_all_tables()
    create_all_tables()
    yield db_url
    drop_all_tables()
    dispose_engine()


@pytest.fixture
def make_user(ledger_db):
    """Register a subscription and return its user_id."""

    def _make_user(
        user_id: str,
        tier: Tier = Tier.EDUCATOR,
        billing_interval: BillingInterval = BillingInterval.MONTHLY,
        period_start: datetime = PERIOD_START,
    ) -> str:
        upsert_subscription(
            Subscription(
                user_id=user_id,
                tier=tier,
                billing_interval=billing_interval,
                period_start=period_start,
            )
        )
        return user_id

    return _make_user
