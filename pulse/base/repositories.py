# ==============================================================================
# Repository Abstract Base Classes
# ==============================================================================
"""
Repository ABCs for data persistence.

These define the "what" (save, select, aggregate) not the "how" (SQL vs
in-memory). Concrete implementations in infrastructure/ handle the specifics.

Includes:
- EventRepository: Raw behavioral events
- AggregateRepository: Compacted daily aggregates
- SessionRepository: Session state

Note: Cache, PlanDirectory and Notifier are in separate modules since they
are not collections of domain objects.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import NamedTuple

from pulse.core.models import (
    CompactedAggregate,
    ConversionTotals,
    QueryFilters,
    RawEvent,
    Session,
    StoreStats,
)


class RawWindow(NamedTuple):
    """
    Inclusive time selection over the raw store. None leaves a side open.
    """

    start: datetime | None = None
    end: datetime | None = None

    def contains(self, timestamp: datetime) -> bool:
        if self.start is not None and timestamp < self.start:
            return False
        if self.end is not None and timestamp > self.end:
            return False
        return True


class DayWindow(NamedTuple):
    """
    Selection over the aggregate store.

    first_day and last_day bound the UTC day inclusively. earliest and latest,
    when set, keep only buckets whose whole activity span (first_event to
    last_event) lies inside them. None leaves a side open.
    """

    first_day: date | None = None
    last_day: date | None = None
    earliest: datetime | None = None
    latest: datetime | None = None

    def contains(self, day: date) -> bool:
        if self.first_day is not None and day < self.first_day:
            return False
        if self.last_day is not None and day > self.last_day:
            return False
        return True

    def covers(self, aggregate: CompactedAggregate) -> bool:
        """True if the bucket's day and activity span fall inside the window."""
        if not self.contains(aggregate.day):
            return False
        if self.earliest is not None and aggregate.first_event < self.earliest:
            return False
        if self.latest is not None and aggregate.last_event > self.latest:
            return False
        return True


class EventRepository(ABC):
    """Repository for raw behavioral events."""

    @abstractmethod
    def connect(self) -> None:
        """Establish connection to the data store."""
        ...

    @abstractmethod
    def save(self, event: RawEvent) -> None:
        """
        Persist one event.

        Args:
            event: Event to store. Stored events are never mutated.
        """
        ...

    @abstractmethod
    def find(self, filters: QueryFilters, window: RawWindow) -> list[RawEvent]:
        """
        Select events matching filters inside a window.

        Returns:
            Matching events sorted by timestamp ascending
        """
        ...

    @abstractmethod
    def count(self, filters: QueryFilters, window: RawWindow) -> int:
        """Count events matching filters inside a window."""
        ...

    @abstractmethod
    def count_by_type(self, filters: QueryFilters, window: RawWindow) -> dict[str, int]:
        """Count matching events grouped by event type value."""
        ...

    @abstractmethod
    def distinct_users(self, filters: QueryFilters, window: RawWindow) -> set[str]:
        """Distinct user ids among matching events."""
        ...

    @abstractmethod
    def conversion_totals(self, filters: QueryFilters, window: RawWindow) -> ConversionTotals:
        """Count and revenue of matching conversion events."""
        ...

    @abstractmethod
    def find_compactable(self, start: datetime, end: datetime) -> list[RawEvent]:
        """
        Select every non-critical event with start <= timestamp < end.

        Used by the Compactor to read one full day.
        """
        ...

    @abstractmethod
    def compactable_days(self, before: datetime) -> list[date]:
        """Distinct UTC days holding non-critical events older than `before`, oldest first."""
        ...

    @abstractmethod
    def delete(self, event_ids: list[str]) -> int:
        """
        Delete events by id.

        Returns:
            Count of events deleted
        """
        ...

    @abstractmethod
    def purge_expired(self, now: datetime) -> int:
        """Delete events whose expiration has passed. Returns count deleted."""
        ...

    @abstractmethod
    def stats(self) -> StoreStats:
        """Row count and oldest event timestamp."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close connection and release resources."""
        ...


class AggregateRepository(ABC):
    """Repository for compacted daily aggregates."""

    @abstractmethod
    def connect(self) -> None:
        """Establish connection to the data store."""
        ...

    @abstractmethod
    def upsert(self, aggregates: list[CompactedAggregate]) -> int:
        """
        Insert or replace aggregates by key.

        Replacing (not accumulating) counters is what makes compaction safe
        to re-run.

        Returns:
            Count of aggregates written
        """
        ...

    @abstractmethod
    def replace_group(self, aggregate: CompactedAggregate, event_ids: list[str]) -> int:
        """
        Upsert one aggregate and delete the raw events it was built from.

        Both writes commit together or not at all, so readers never see a
        group counted in both stores.

        Returns:
            Count of raw events deleted
        """
        ...

    @abstractmethod
    def find(self, filters: QueryFilters, window: DayWindow) -> list[CompactedAggregate]:
        """Select aggregates matching filters, sorted by day ascending."""
        ...

    @abstractmethod
    def count(self, filters: QueryFilters, window: DayWindow) -> int:
        """Sum of `count` over matching aggregates."""
        ...

    @abstractmethod
    def count_by_type(self, filters: QueryFilters, window: DayWindow) -> dict[str, int]:
        """Sum of `count` grouped by event type value."""
        ...

    @abstractmethod
    def distinct_users(self, filters: QueryFilters, window: DayWindow) -> set[str]:
        """Distinct user ids among matching aggregates."""
        ...

    @abstractmethod
    def conversion_totals(self, filters: QueryFilters, window: DayWindow) -> ConversionTotals:
        """Summed conversion counts and values of matching aggregates."""
        ...

    @abstractmethod
    def purge_expired(self, now: datetime) -> int:
        """Delete aggregates whose expiration has passed. Returns count deleted."""
        ...

    @abstractmethod
    def stats(self) -> StoreStats:
        """Row count and oldest aggregate day (as midnight UTC)."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close connection and release resources."""
        ...


class SessionRepository(ABC):
    """Repository for session state."""

    @abstractmethod
    def connect(self) -> None:
        """Establish connection to the data store."""
        ...

    @abstractmethod
    def get(self, session_id: str) -> Session | None:
        """Fetch a session by token."""
        ...

    @abstractmethod
    def save(self, session: Session) -> None:
        """Insert or replace a session (one atomic write)."""
        ...

    @abstractmethod
    def find_active_for_user(self, user_id: str) -> Session | None:
        """Most recently active open session of a user."""
        ...

    @abstractmethod
    def find_active(self, idle_before: datetime | None = None) -> list[Session]:
        """
        Open sessions.

        Args:
            idle_before: Only sessions whose last activity is older than this
        """
        ...

    @abstractmethod
    def find_for_user(self, user_id: str, since: datetime) -> list[Session]:
        """Sessions of a user started at or after `since`."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close connection and release resources."""
        ...
