"""Shared test fixtures and configuration.

Sets up fake environment variables so healthbot.config doesn't sys.exit(),
and provides common fixtures: a temp HealthDB, its async view, scriptable
fake channels and a dispatcher wired to them.
"""

import os

# Patch env vars BEFORE any healthbot imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_ID", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "UTC")

from datetime import datetime, timezone

import pytest

from healthbot.core.notification import DeliveryOutcome

USER_ID = 12345


def at(hour: int, minute: int = 0, day: int = 2, month: int = 3) -> datetime:
    """Aware UTC datetime in March 2026. 2026-03-02 is a Monday."""
    return datetime(2026, month, day, hour, minute, tzinfo=timezone.utc)


class FakeChannel:
    """Scriptable NotificationChannel that records what it was asked to send."""

    def __init__(
        self,
        name: str = "fake",
        succeed: bool = True,
        raises: Exception | None = None,
        supports_actions: bool = True,
        max_actions: int = 8,
        message_id: int | None = 100,
    ) -> None:
        self.name = name
        self.succeed = succeed
        self.raises = raises
        self.supports_actions = supports_actions
        self.max_actions = max_actions
        self.message_id = message_id
        self.sent: list = []
        self.removed: list = []

    async def send(self, user_id, notif):
        self.sent.append((user_id, notif))
        if self.raises is not None:
            raise self.raises
        if not self.succeed:
            return DeliveryOutcome(channel=self.name, success=False, error="scripted failure")
        return DeliveryOutcome(channel=self.name, success=True, message_id=self.message_id)

    async def remove_notification(self, user_id, notification_id):
        self.removed.append((user_id, notification_id))
        return True


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_health.db")


@pytest.fixture
def health_db(tmp_db_path):
    """Return a HealthDB instance backed by a temp file."""
    from healthbot.data.db import HealthDB
    return HealthDB(db_path=tmp_db_path)


@pytest.fixture
def store(health_db):
    """Async view of the temp HealthDB, as engine components see it."""
    from healthbot.data.async_store import AsyncStore
    return AsyncStore(health_db, timeout=5)


@pytest.fixture
def channel():
    return FakeChannel(name="telegram")


@pytest.fixture
def suppression(store):
    from healthbot.core.suppression import SuppressionPolicy
    return SuppressionPolicy(store)


@pytest.fixture
def dispatcher(store, suppression, channel):
    """Dispatcher with a single healthy fake channel registered."""
    from healthbot.core.dispatcher import NotificationDispatcher
    d = NotificationDispatcher(store, suppression, send_timeout=1)
    d.register_channel(channel)
    return d
