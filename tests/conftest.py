"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.pool import StaticPool

from herald.config import HeraldConfig
from herald.database.models import Base
from herald.engine.cache import ContentCache
from herald.services.engagement_service import EngagementTracker
from herald.services.notification_service import (
    NotificationDispatcher,
    StaticAudienceResolver,
)
from herald.services.subscription_service import SubscriberRegistry


def run_async(coro):
    """Run an async coroutine in a new event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class FakeClock:
    """Manually advanced clock.  ``monotonic`` for the cache, ``now`` for
    everything keyed on wall-clock datetimes."""

    def __init__(self, start: datetime | None = None) -> None:
        self.seconds = 0.0
        self.start = start or datetime(2024, 3, 15, 12, 0, tzinfo=UTC)

    def monotonic(self) -> float:
        return self.seconds

    def now(self) -> datetime:
        return self.start + timedelta(seconds=self.seconds)

    def advance(self, seconds: float) -> None:
        self.seconds += seconds


class FakeConnection:
    """In-memory live handle that records what was sent."""

    def __init__(self, *, connected: bool = True, fail: bool = False) -> None:
        self._connected = connected
        self.fail = fail
        self.sent: list[tuple[str, dict]] = []

    @property
    def connected(self) -> bool:
        return self._connected

    async def send(self, event: str, payload: dict) -> None:
        if self.fail:
            raise RuntimeError("socket write failed")
        self.sent.append((event, payload))


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all Herald tables.

    StaticPool keeps one shared connection, so work pushed to a thread by
    ``run_db`` sees the same database.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache() -> ContentCache:
    return ContentCache()


@pytest.fixture
def registry() -> SubscriberRegistry:
    return SubscriberRegistry()


@pytest.fixture
def dispatcher(registry: SubscriberRegistry) -> NotificationDispatcher:
    return NotificationDispatcher(
        registry, audience=StaticAudienceResolver({"staff": ["alice"]})
    )


@pytest.fixture
def tracker() -> EngagementTracker:
    return EngagementTracker(capacity=1000)


@pytest.fixture
def client(db_engine, cache, registry, dispatcher, tracker):
    """FastAPI TestClient wired to the in-memory fixtures.

    The scheduler is disabled so no background task runs during tests.
    """
    from fastapi.testclient import TestClient

    from herald.api import deps
    from herald.api.main import app

    app.dependency_overrides[deps.get_engine] = lambda: db_engine
    app.dependency_overrides[deps.get_cache] = lambda: cache
    app.dependency_overrides[deps.get_registry] = lambda: registry
    app.dependency_overrides[deps.get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[deps.get_tracker] = lambda: tracker
    app.dependency_overrides[deps.get_config] = lambda: HeraldConfig(scheduler_enabled=False)

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()
