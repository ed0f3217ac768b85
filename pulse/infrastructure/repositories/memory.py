# ==============================================================================
# In-Memory Repository Implementations
# ==============================================================================
"""
In-memory implementations of the repository interfaces.

Used by the `memory` storage backend (single-process deployments, demos)
and throughout the test suite. Each store guards its map with a lock so every
write is one atomic operation, matching the PostgreSQL adapters.
"""

import logging
import threading
from collections import Counter
from collections.abc import Iterable
from datetime import date, datetime

from pulse.base.repositories import (
    AggregateRepository,
    DayWindow,
    EventRepository,
    RawWindow,
    SessionRepository,
)
from pulse.core.models import (
    CompactedAggregate,
    ConversionTotals,
    QueryFilters,
    RawEvent,
    Session,
    StoreStats,
)

logger = logging.getLogger(__name__)


class InMemoryEventRepository(EventRepository):
    """Raw event store backed by a dict keyed by event id."""

    def __init__(self):
        self._events: dict[str, RawEvent] = {}
        self._lock = threading.Lock()

    def connect(self) -> None:
        logger.debug("InMemoryEventRepository ready")

    def save(self, event: RawEvent) -> None:
        with self._lock:
            self._events[event.event_id] = event

    def _select(self, filters: QueryFilters, window: RawWindow) -> list[RawEvent]:
        with self._lock:
            snapshot = list(self._events.values())
        return [e for e in snapshot if window.contains(e.timestamp) and filters.matches(e)]

    def find(self, filters: QueryFilters, window: RawWindow) -> list[RawEvent]:
        return sorted(self._select(filters, window), key=lambda e: e.timestamp)

    def count(self, filters: QueryFilters, window: RawWindow) -> int:
        return len(self._select(filters, window))

    def count_by_type(self, filters: QueryFilters, window: RawWindow) -> dict[str, int]:
        return dict(Counter(e.event_type.value for e in self._select(filters, window)))

    def distinct_users(self, filters: QueryFilters, window: RawWindow) -> set[str]:
        return {e.user_id for e in self._select(filters, window)}

    def conversion_totals(self, filters: QueryFilters, window: RawWindow) -> ConversionTotals:
        conversions = [e for e in self._select(filters, window) if e.is_conversion]
        return ConversionTotals(
            count=len(conversions),
            revenue=sum(e.conversion_value or 0.0 for e in conversions),
        )

    def find_compactable(self, start: datetime, end: datetime) -> list[RawEvent]:
        with self._lock:
            snapshot = list(self._events.values())
        return sorted(
            (
                e
                for e in snapshot
                if start <= e.timestamp < end and not e.is_critical
            ),
            key=lambda e: e.timestamp,
        )

    def compactable_days(self, before: datetime) -> list[date]:
        with self._lock:
            snapshot = list(self._events.values())
        return sorted(
            {
                e.timestamp.date()
                for e in snapshot
                if e.timestamp < before and not e.is_critical
            }
        )

    def delete(self, event_ids: list[str]) -> int:
        deleted = 0
        with self._lock:
            for event_id in event_ids:
                if self._events.pop(event_id, None) is not None:
                    deleted += 1
        return deleted

    def purge_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [
                event_id
                for event_id, e in self._events.items()
                if e.expires_at is not None and e.expires_at <= now
            ]
            for event_id in expired:
                del self._events[event_id]
        return len(expired)

    def stats(self) -> StoreStats:
        with self._lock:
            timestamps = [e.timestamp for e in self._events.values()]
        return StoreStats(rows=len(timestamps), oldest=min(timestamps, default=None))

    def close(self) -> None:
        logger.debug("InMemoryEventRepository closed")


class InMemoryAggregateRepository(AggregateRepository):
    """
    Compacted aggregate store keyed by (day, user, event type, project).

    Holds the raw event store it compacts so replace_group() can retire
    events while the aggregate lock is held.
    """

    def __init__(self, events: InMemoryEventRepository):
        self._events = events
        self._rows: dict[tuple, CompactedAggregate] = {}
        self._lock = threading.Lock()

    def connect(self) -> None:
        logger.debug("InMemoryAggregateRepository ready")

    def upsert(self, aggregates: list[CompactedAggregate]) -> int:
        with self._lock:
            for aggregate in aggregates:
                self._rows[aggregate.key] = aggregate.model_copy()
        return len(aggregates)

    def replace_group(self, aggregate: CompactedAggregate, event_ids: list[str]) -> int:
        row = aggregate.model_copy()
        with self._lock:
            retired = self._events.delete(event_ids)
            self._rows[row.key] = row
        return retired

    def all(self) -> list[CompactedAggregate]:
        """Every stored aggregate, ordered by key."""
        with self._lock:
            rows = list(self._rows.values())
        return sorted(rows, key=lambda a: (a.day, a.user_id, a.event_type.value, a.project_id or ""))

    def _select(self, filters: QueryFilters, window: DayWindow) -> Iterable[CompactedAggregate]:
        with self._lock:
            snapshot = list(self._rows.values())
        return [a for a in snapshot if window.covers(a) and filters.matches(a)]

    def find(self, filters: QueryFilters, window: DayWindow) -> list[CompactedAggregate]:
        return sorted(self._select(filters, window), key=lambda a: a.day)

    def count(self, filters: QueryFilters, window: DayWindow) -> int:
        return sum(a.count for a in self._select(filters, window))

    def count_by_type(self, filters: QueryFilters, window: DayWindow) -> dict[str, int]:
        counts: Counter[str] = Counter()
        for a in self._select(filters, window):
            counts[a.event_type.value] += a.count
        return dict(counts)

    def distinct_users(self, filters: QueryFilters, window: DayWindow) -> set[str]:
        return {a.user_id for a in self._select(filters, window)}

    def conversion_totals(self, filters: QueryFilters, window: DayWindow) -> ConversionTotals:
        rows = list(self._select(filters, window))
        return ConversionTotals(
            count=sum(a.conversion_count for a in rows),
            revenue=sum(a.total_conversion_value for a in rows),
        )

    def purge_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [
                key for key, a in self._rows.items() if a.expires_at is not None and a.expires_at <= now
            ]
            for key in expired:
                del self._rows[key]
        return len(expired)

    def stats(self) -> StoreStats:
        with self._lock:
            rows = list(self._rows.values())
        oldest = min(rows, key=lambda a: a.day).day_start if rows else None
        return StoreStats(rows=len(rows), oldest=oldest)

    def close(self) -> None:
        logger.debug("InMemoryAggregateRepository closed")


class InMemorySessionRepository(SessionRepository):
    """Session store keyed by session token."""

    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def connect(self) -> None:
        logger.debug("InMemorySessionRepository ready")

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            session = self._sessions.get(session_id)
        # Callers mutate what they get; the stored copy only changes on save()
        return session.model_copy(deep=True) if session is not None else None

    def save(self, session: Session) -> None:
        with self._lock:
            self._sessions[session.session_id] = session.model_copy(deep=True)

    def _snapshot(self) -> list[Session]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._sessions.values()]

    def find_active_for_user(self, user_id: str) -> Session | None:
        active = [s for s in self._snapshot() if s.user_id == user_id and s.is_active]
        return max(active, key=lambda s: s.last_activity, default=None)

    def find_active(self, idle_before: datetime | None = None) -> list[Session]:
        return [
            s
            for s in self._snapshot()
            if s.is_active and (idle_before is None or s.last_activity < idle_before)
        ]

    def find_for_user(self, user_id: str, since: datetime) -> list[Session]:
        return sorted(
            (s for s in self._snapshot() if s.user_id == user_id and s.start_time >= since),
            key=lambda s: s.start_time,
        )

    def close(self) -> None:
        logger.debug("InMemorySessionRepository closed")
