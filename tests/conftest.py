# ==============================================================================
# Shared Test Fixtures
# ==============================================================================
"""
Pytest fixtures shared across all test modules.

Provides:
- A frozen, manually advanced clock for all time-dependent logic
- fakeredis-backed ValkeyCache instances
- In-memory stores, a static plan directory and the default retention policy
- Fully wired services on top of those
"""

from datetime import UTC, datetime, timedelta

import fakeredis
import pytest

from pulse.core.compactor import Compactor
from pulse.core.event_recorder import EventRecorder
from pulse.core.models import PlanTier
from pulse.core.query_service import AggregateQueryService
from pulse.core.retention import RetentionPolicy
from pulse.core.session_tracker import SessionTracker
from pulse.infrastructure.cache import ValkeyCache
from pulse.infrastructure.plans import StaticPlanDirectory
from pulse.infrastructure.repositories.memory import (
    InMemoryAggregateRepository,
    InMemoryEventRepository,
    InMemorySessionRepository,
)

START = datetime(2024, 3, 10, 12, 0, tzinfo=UTC)


class FrozenClock:
    """A clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return self.now


@pytest.fixture()
def clock():
    return FrozenClock()


@pytest.fixture()
def fake_redis():
    """A clean fakeredis instance for each test.

    Uses decode_responses=True to match the real ValkeyCache behavior.
    """
    server = fakeredis.FakeServer()
    client = fakeredis.FakeRedis(server=server, decode_responses=True)
    yield client
    client.flushall()
    client.close()


@pytest.fixture()
def fake_cache(fake_redis):
    """A ValkeyCache sharing the fakeredis client."""
    return ValkeyCache(client=fake_redis)


@pytest.fixture()
def policy():
    """The default tiered retention (raw 30/90/180 days, aggregates 90/365/forever)."""
    return RetentionPolicy(
        raw_days={PlanTier.FREE: 30, PlanTier.PRO: 90, PlanTier.ENTERPRISE: 180},
        aggregate_days={PlanTier.FREE: 90, PlanTier.PRO: 365, PlanTier.ENTERPRISE: None},
        minimum_raw_days=14,
    )


@pytest.fixture()
def events():
    return InMemoryEventRepository()


@pytest.fixture()
def aggregates(events):
    return InMemoryAggregateRepository(events)


@pytest.fixture()
def sessions():
    return InMemorySessionRepository()


@pytest.fixture()
def plans():
    return StaticPlanDirectory({"pro-user": PlanTier.PRO, "ent-user": PlanTier.ENTERPRISE})


@pytest.fixture()
def recorder(events, plans, policy, clock):
    """EventRecorder without a cache (ceiling counted from the event store)."""
    return EventRecorder(events, plans, policy, daily_limit=10, clock=clock)


@pytest.fixture()
def compactor(events, aggregates, policy, clock):
    return Compactor(events, aggregates, policy, settlement_days=7, clock=clock)


@pytest.fixture()
def queries(events, aggregates, plans, policy, clock):
    return AggregateQueryService(
        events, aggregates, settlement_days=7, plans=plans, policy=policy, clock=clock
    )


@pytest.fixture()
def tracker(sessions, clock):
    """SessionTracker with no recorder or notifier attached."""
    return SessionTracker(sessions, clock=clock)
