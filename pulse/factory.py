# ==============================================================================
# Engine Factory
# ==============================================================================
"""
Wires repositories, collaborators and services from settings.

Uses STORAGE_BACKEND (via config) to pick the persistence adapters and
VALKEY_ENABLED to add the Valkey counter, plan cache and notifier.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta

from pulse.base import (
    AggregateRepository,
    Cache,
    EventRepository,
    Notifier,
    NullNotifier,
    PlanDirectory,
    SessionRepository,
)
from pulse.core.compactor import Compactor
from pulse.core.event_recorder import EventRecorder
from pulse.core.query_service import AggregateQueryService
from pulse.core.retention import RetentionPolicy
from pulse.core.sanitizer import PayloadLimits
from pulse.core.session_tracker import SessionTracker
from pulse.core.throttle import EventThrottle, ThrottlePolicy
from pulse.utils.clock import Clock, utc_now
from pulse.utils.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    """Fully wired engine: stores, collaborators and the four services."""

    events: EventRepository
    aggregates: AggregateRepository
    sessions: SessionRepository
    plans: PlanDirectory
    policy: RetentionPolicy
    recorder: EventRecorder
    tracker: SessionTracker
    compactor: Compactor
    queries: AggregateQueryService
    cache: Cache | None = None
    notifier: Notifier = field(default_factory=NullNotifier)

    def close(self) -> None:
        """Close every store connection."""
        for store in (self.events, self.aggregates, self.sessions):
            store.close()
        close_plans = getattr(self.plans, "close", None)
        if close_plans is not None:
            close_plans()
        close_cache = getattr(self.cache, "close", None)
        if close_cache is not None:
            close_cache()


def build_stores(
    settings: Settings,
) -> tuple[EventRepository, AggregateRepository, SessionRepository, PlanDirectory]:
    """
    Create and connect the storage adapters for the configured backend.

    Raises:
        ValueError: If an unknown backend is configured
    """
    backend = settings.storage.backend

    match backend:
        case "postgresql":
            from pulse.infrastructure.plans import PostgreSQLPlanDirectory
            from pulse.infrastructure.repositories.postgresql import (
                PostgreSQLAggregateRepository,
                PostgreSQLEventRepository,
                PostgreSQLSessionRepository,
            )

            events = PostgreSQLEventRepository(settings)
            aggregates = PostgreSQLAggregateRepository(settings)
            sessions = PostgreSQLSessionRepository(settings)
            plans = PostgreSQLPlanDirectory(settings)
            plans.connect()
        case "memory":
            from pulse.infrastructure.plans import StaticPlanDirectory
            from pulse.infrastructure.repositories.memory import (
                InMemoryAggregateRepository,
                InMemoryEventRepository,
                InMemorySessionRepository,
            )

            events = InMemoryEventRepository()
            aggregates = InMemoryAggregateRepository(events)
            sessions = InMemorySessionRepository()
            plans = StaticPlanDirectory()
        case _:
            raise ValueError(
                f"Unknown storage backend: '{backend}'.\nValid options are: postgresql, memory"
            )

    for store in (events, aggregates, sessions):
        store.connect()
    return events, aggregates, sessions, plans


def build_engine(settings: Settings | None = None, clock: Clock = utc_now) -> Engine:
    """
    Build the engine from settings.

    Args:
        settings: Application settings. If None, uses get_settings().
        clock: Source of the current time for every service

    Returns:
        Connected Engine; call close() when done
    """
    settings = settings or get_settings()
    events, aggregates, sessions, plans = build_stores(settings)

    cache: Cache | None = None
    notifier: Notifier = NullNotifier()
    if settings.valkey.enabled:
        from pulse.infrastructure.cache.valkey import ValkeyCache, build_valkey_client
        from pulse.infrastructure.notifier import ValkeyNotifier
        from pulse.infrastructure.plans import CachedPlanDirectory

        client = build_valkey_client(settings.valkey.url)
        cache = ValkeyCache(client=client)
        notifier = ValkeyNotifier(client)
        plans = CachedPlanDirectory(plans, cache, settings.valkey.plan_cache_ttl_seconds)

    policy = RetentionPolicy.from_settings(settings)
    throttle = None
    if settings.ingestion.throttle_enabled:
        throttle = EventThrottle(
            ThrottlePolicy.from_settings(settings.ingestion), cache=cache, clock=clock
        )
    recorder = EventRecorder(
        events,
        plans,
        policy,
        cache=cache,
        daily_limit=settings.ingestion.free_daily_event_limit,
        limits=PayloadLimits.from_settings(settings.ingestion),
        throttle=throttle,
        clock=clock,
    )
    tracker = SessionTracker(
        sessions,
        recorder=recorder,
        notifier=notifier,
        idle_threshold=timedelta(minutes=settings.session.idle_gap_minutes),
        resume_window=timedelta(minutes=settings.session.resume_window_minutes),
        reap_after=timedelta(minutes=settings.session.reap_after_minutes),
        clock=clock,
    )
    compactor = Compactor(
        events,
        aggregates,
        policy,
        settlement_days=settings.compaction.settlement_days,
        clock=clock,
    )
    queries = AggregateQueryService(
        events,
        aggregates,
        settlement_days=settings.compaction.settlement_days,
        timeout_seconds=settings.query.timeout_seconds,
        plans=plans,
        policy=policy,
        clock=clock,
    )

    logger.debug(
        "Engine built (backend=%s, valkey=%s)", settings.storage.backend, settings.valkey.enabled
    )
    return Engine(
        events=events,
        aggregates=aggregates,
        sessions=sessions,
        plans=plans,
        policy=policy,
        recorder=recorder,
        tracker=tracker,
        compactor=compactor,
        queries=queries,
        cache=cache,
        notifier=notifier,
    )
