"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures like a temp document DB and mocked ports.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_fake_key_for_tests")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_fake_secret_for_tests")
os.environ.setdefault("STORE_BACKEND", "sqlite")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "America/New_York")
os.environ.setdefault("APP_BASE_URL", "https://seva-finance-app.web.app")

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_finance.db")


@pytest.fixture
def finance_db(tmp_db_path):
    """Return a FinanceDB instance backed by a temp file."""
    from src.data.db import FinanceDB
    return FinanceDB(db_path=tmp_db_path)


@pytest.fixture
def push():
    """A PushPort that accepts every message."""
    port = AsyncMock()
    port.send = AsyncMock(return_value="projects/test/messages/1")
    return port


@pytest.fixture
def now():
    """A fixed 'current time': 2026-03-10 14:00 UTC (10:00 in New York)."""
    return datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)


@pytest.fixture
def user_doc():
    """Factory for a push-enabled user document with every alert turned on."""

    def _make(**overrides):
        doc = {
            "email": "user@example.com",
            "pushEnabled": True,
            "pushToken": "token-abc",
            "notificationPreferences": {
                "budgetAlerts": True,
                "billReminders": True,
                "spendingAlerts": True,
            },
            "isPro": False,
            "hasPaid": False,
            "scanCountThisMonth": 0,
        }
        doc.update(overrides)
        return doc

    return _make
