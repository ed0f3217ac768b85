# ==============================================================================
# Aggregate Query Service
# ==============================================================================
"""
Read layer that hides the raw/compacted storage seam.

Each call computes the compaction boundary once and reads two sources:
- compacted aggregates for whole UTC days before the boundary
- raw events over the requested range (raw events older than the boundary
  only exist until the Compactor rolls their day up and retires them, so the
  two sources never hold the same occurrence)

Results are merged with order-independent rules:
- counts are summed
- per-type counts are summed key by key
- distinct users are unioned before counting
- conversion rate is conversions / unique users * 100, and 0 with no users

The service never writes. Every call runs under a time budget; exceeding it
raises QueryTimeoutError rather than returning a partial merge.
"""

import logging
import time
from collections import Counter
from datetime import timedelta

from pulse.base.plans import PlanDirectory
from pulse.base.repositories import AggregateRepository, DayWindow, EventRepository, RawWindow
from pulse.core.exceptions import QueryTimeoutError
from pulse.core.models import (
    CompactedAggregate,
    ConversionMetrics,
    MergedEvent,
    QueryFilters,
    RawEvent,
    UserAnalyticsSummary,
)
from pulse.core.retention import RetentionPolicy, compaction_boundary
from pulse.utils.clock import Clock, ensure_utc, utc_now

logger = logging.getLogger(__name__)

DEFAULT_SETTLEMENT_DAYS = 7
DEFAULT_TIMEOUT_SECONDS = 10.0


class _Deadline:
    """Time budget of one query, checked after each source read."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        self._expires = time.monotonic() + timeout_seconds

    def check(self, stage: str) -> None:
        if time.monotonic() > self._expires:
            raise QueryTimeoutError(self.timeout_seconds, stage)


def merge_counts_by_type(*mappings: dict[str, int]) -> dict[str, int]:
    """Sum per-type count mappings key by key."""
    merged: Counter[str] = Counter()
    for mapping in mappings:
        merged.update(mapping)
    return dict(merged)


def conversion_rate(conversions: int, unique_users: int) -> float:
    """Conversions per hundred unique users; 0 when there are no users."""
    if unique_users <= 0:
        return 0.0
    return conversions / unique_users * 100


def _raw_entry(event: RawEvent) -> MergedEvent:
    return MergedEvent(
        timestamp=event.timestamp,
        event_type=event.event_type,
        category=event.category,
        user_id=event.user_id,
        project_id=event.project_id,
        count=1,
        is_compacted=False,
        duration=event.duration,
        conversion_value=event.conversion_value,
    )


def _compacted_entry(aggregate: CompactedAggregate) -> MergedEvent:
    return MergedEvent(
        timestamp=aggregate.day_start,
        event_type=aggregate.event_type,
        category=aggregate.category,
        user_id=aggregate.user_id,
        project_id=aggregate.project_id,
        count=aggregate.count,
        is_compacted=True,
        duration=aggregate.avg_duration,
        conversion_value=aggregate.total_conversion_value,
    )


class AggregateQueryService:
    """
    Merged analytics reads over raw events and compacted aggregates.

    Every operation accepts QueryFilters (user, project, event type,
    category, plan tier, inclusive date range) and an optional `timeout` in
    seconds that overrides the service default.
    """

    def __init__(
        self,
        events: EventRepository,
        aggregates: AggregateRepository,
        settlement_days: int = DEFAULT_SETTLEMENT_DAYS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        plans: PlanDirectory | None = None,
        policy: RetentionPolicy | None = None,
        clock: Clock = utc_now,
    ):
        self._events = events
        self._aggregates = aggregates
        self._settlement_days = settlement_days
        self._timeout_seconds = timeout_seconds
        self._plans = plans
        self._policy = policy
        self._clock = clock

    # ==========================================================================
    # Operations
    # ==========================================================================

    def get_events(
        self,
        filters: QueryFilters | None = None,
        limit: int | None = None,
        timeout: float | None = None,
    ) -> list[MergedEvent]:
        """
        Time-ordered listing of raw events and compacted buckets.

        A compacted bucket appears as one entry dated at its day start, with
        `count` > 1 possible and `is_compacted` set.

        Args:
            filters: Query filters
            limit: Keep only the first `limit` entries after sorting
            timeout: Time budget in seconds

        Returns:
            Entries sorted by timestamp ascending
        """
        filters = filters or QueryFilters()
        deadline = self._deadline(timeout)
        raw_window, day_window = self._windows(filters)

        merged: list[MergedEvent] = []
        if day_window is not None:
            merged.extend(_compacted_entry(a) for a in self._aggregates.find(filters, day_window))
            deadline.check("compacted read")
        merged.extend(_raw_entry(e) for e in self._events.find(filters, raw_window))
        deadline.check("raw read")

        merged.sort(key=lambda entry: (entry.timestamp, not entry.is_compacted))
        if limit is not None:
            merged = merged[:limit]
        return merged

    def get_user_events(
        self,
        user_id: str,
        filters: QueryFilters | None = None,
        limit: int | None = None,
        timeout: float | None = None,
    ) -> list[MergedEvent]:
        """get_events() restricted to one user."""
        base = filters or QueryFilters()
        return self.get_events(base.model_copy(update={"user_id": user_id}), limit, timeout)

    def count_events(self, filters: QueryFilters | None = None, timeout: float | None = None) -> int:
        """Total matching occurrences across both sources."""
        filters = filters or QueryFilters()
        deadline = self._deadline(timeout)
        raw_window, day_window = self._windows(filters)

        compacted = 0
        if day_window is not None:
            compacted = self._aggregates.count(filters, day_window)
            deadline.check("compacted count")
        raw = self._events.count(filters, raw_window)
        deadline.check("raw count")

        logger.debug("count_events: raw=%d compacted=%d", raw, compacted)
        return raw + compacted

    def count_events_by_type(
        self, filters: QueryFilters | None = None, timeout: float | None = None
    ) -> dict[str, int]:
        """Matching occurrences per event type across both sources."""
        filters = filters or QueryFilters()
        deadline = self._deadline(timeout)
        raw_window, day_window = self._windows(filters)

        compacted: dict[str, int] = {}
        if day_window is not None:
            compacted = self._aggregates.count_by_type(filters, day_window)
            deadline.check("compacted count by type")
        raw = self._events.count_by_type(filters, raw_window)
        deadline.check("raw count by type")

        return merge_counts_by_type(raw, compacted)

    def count_unique_users(
        self, filters: QueryFilters | None = None, timeout: float | None = None
    ) -> int:
        """Distinct users across both sources (a user in both counts once)."""
        filters = filters or QueryFilters()
        raw_window, day_window = self._windows(filters)
        return len(self._unique_users(filters, raw_window, day_window, self._deadline(timeout)))

    def get_conversion_metrics(
        self, filters: QueryFilters | None = None, timeout: float | None = None
    ) -> ConversionMetrics:
        """Conversion count, revenue, unique users and conversion rate."""
        filters = filters or QueryFilters()
        deadline = self._deadline(timeout)
        raw_window, day_window = self._windows(filters)

        totals = self._events.conversion_totals(filters, raw_window)
        deadline.check("raw conversions")
        if day_window is not None:
            totals = totals + self._aggregates.conversion_totals(filters, day_window)
            deadline.check("compacted conversions")

        unique_users = len(self._unique_users(filters, raw_window, day_window, deadline))
        return ConversionMetrics(
            total_conversions=totals.count,
            total_revenue=totals.revenue,
            unique_users=unique_users,
            conversion_rate=conversion_rate(totals.count, unique_users),
        )

    def get_user_summary(
        self,
        user_id: str,
        days: int = 30,
        daily_events_remaining: int | None = None,
        timeout: float | None = None,
    ) -> UserAnalyticsSummary:
        """
        Per-user dashboard summary over the last `days` days.

        Args:
            user_id: User to summarize
            days: Look-back window
            daily_events_remaining: Remaining ingestion quota, when known
            timeout: Time budget in seconds

        Raises:
            RuntimeError: If the service was built without a plan directory
                and retention policy
        """
        if self._plans is None or self._policy is None:
            raise RuntimeError("get_user_summary requires a plan directory and retention policy")

        plan_tier = self._plans.current_plan_tier(user_id)
        filters = QueryFilters(user_id=user_id, start_date=self._clock() - timedelta(days=days))
        by_type = self.count_events_by_type(filters, timeout=timeout)
        return UserAnalyticsSummary(
            user_id=user_id,
            plan_tier=plan_tier,
            total_events=sum(by_type.values()),
            events_by_type=by_type,
            retention=self._policy.describe(plan_tier),
            daily_events_remaining=daily_events_remaining,
        )

    # ==========================================================================
    # Internals
    # ==========================================================================

    def _deadline(self, timeout: float | None) -> _Deadline:
        return _Deadline(timeout if timeout is not None else self._timeout_seconds)

    def _windows(self, filters: QueryFilters) -> tuple[RawWindow, DayWindow | None]:
        """
        Split the requested range at the compaction boundary.

        Compacted buckets count only when their whole activity span lies
        inside the range, so a range starting or ending mid-day never picks up
        a bucket whose events all fall outside it.

        Returns:
            Raw window over the full range, and the compacted day window
            (None when the range holds no day before the boundary)
        """
        boundary = compaction_boundary(self._clock(), self._settlement_days)
        start = ensure_utc(filters.start_date) if filters.start_date is not None else None
        end = ensure_utc(filters.end_date) if filters.end_date is not None else None

        last_compacted_day = boundary.date() - timedelta(days=1)
        if end is not None:
            last_compacted_day = min(last_compacted_day, end.date())
        first_day = start.date() if start is not None else None

        day_window = None
        if first_day is None or first_day <= last_compacted_day:
            day_window = DayWindow(
                first_day=first_day, last_day=last_compacted_day, earliest=start, latest=end
            )
        return RawWindow(start=start, end=end), day_window

    def _unique_users(
        self,
        filters: QueryFilters,
        raw_window: RawWindow,
        day_window: DayWindow | None,
        deadline: _Deadline,
    ) -> set[str]:
        users = self._events.distinct_users(filters, raw_window)
        deadline.check("raw distinct users")
        if day_window is not None:
            users |= self._aggregates.distinct_users(filters, day_window)
            deadline.check("compacted distinct users")
        return users
