# ==============================================================================
# Compactor
# ==============================================================================
"""
Rolls settled raw events into daily aggregates, then retires them.

Per (user, event type, project) group, every measure is computed fresh from
the group's full raw set. The aggregate is then upserted (replace, never
accumulate) and exactly the rolled-up raw events are deleted in one store
operation, so a failure leaves the group entirely raw and queries never count
it twice. A group whose raw events are already gone is simply not read
again, so re-running a day never shrinks or double-counts a bucket.

Critical (audit trail) events are never compacted; they stay raw forever.
Only days strictly older than the compaction boundary are touched, so the
Compactor never races the write path.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable
from datetime import date, datetime

from pydantic import BaseModel

from pulse.base.repositories import AggregateRepository, EventRepository
from pulse.core.models import CompactedAggregate, RawEvent, StoreStats
from pulse.core.results import CompactionResult, Outcome
from pulse.core.retention import RecordClass, RetentionPolicy, compaction_boundary
from pulse.utils.clock import Clock, day_bounds, utc_now

logger = logging.getLogger(__name__)

DEFAULT_SETTLEMENT_DAYS = 7

# Rough per-record storage footprint used for the savings estimate
RAW_EVENT_BYTES = 500
AGGREGATE_BYTES = 200

GroupKey = tuple[str, str, str | None]


class StorageEstimate(BaseModel):
    raw_events_bytes: int
    compacted_bytes: int
    savings_percentage: float


class CompactionStats(BaseModel):
    """Row counts and age of both stores."""

    total_raw_events: int
    total_compacted_records: int
    oldest_raw_event: datetime | None = None
    oldest_compacted_record: datetime | None = None
    boundary: datetime
    storage_estimate: StorageEstimate


class PurgeResult(BaseModel):
    raw_events_deleted: int = 0
    aggregates_deleted: int = 0


def group_events(events: Iterable[RawEvent]) -> dict[GroupKey, list[RawEvent]]:
    """Group raw events by (user_id, event_type, project_id)."""
    groups: dict[GroupKey, list[RawEvent]] = defaultdict(list)
    for event in events:
        groups[(event.user_id, event.event_type.value, event.project_id)].append(event)
    return dict(groups)


def build_aggregate(day: date, events: list[RawEvent], policy: RetentionPolicy) -> CompactedAggregate:
    """
    Compute one daily bucket from its complete raw event set.

    Args:
        day: UTC day the events belong to
        events: Every raw event of one group (non-empty)
        policy: Source of the aggregate's expiration

    Returns:
        Aggregate whose measures depend only on `events`, so recomputing it
        from the same set yields an identical row
    """
    ordered = sorted(events, key=lambda e: (e.timestamp, e.event_id))
    first, last = ordered[0], ordered[-1]
    count = len(ordered)
    total_duration = sum(e.duration for e in ordered if e.duration is not None)
    conversions = [e for e in ordered if e.is_conversion]

    aggregate = CompactedAggregate(
        day=day,
        user_id=first.user_id,
        event_type=first.event_type,
        project_id=first.project_id,
        category=first.category,
        count=count,
        total_duration=total_duration,
        avg_duration=total_duration / count if count else 0.0,
        unique_sessions=len({e.session_id for e in ordered if e.session_id is not None}),
        total_conversion_value=sum(e.conversion_value or 0.0 for e in conversions),
        conversion_count=len(conversions),
        plan_tier=last.plan_tier,
        first_event=first.timestamp,
        last_event=last.timestamp,
    )
    aggregate.expires_at = policy.expiration_for(
        aggregate.plan_tier, RecordClass.AGGREGATE, aggregate.day_start
    )
    return aggregate


class Compactor:
    """
    Daily rollup job.

    The scheduler calls compact_pending() once per day; compact_day() can be
    re-run for any settled day at any time.
    """

    def __init__(
        self,
        events: EventRepository,
        aggregates: AggregateRepository,
        policy: RetentionPolicy,
        settlement_days: int = DEFAULT_SETTLEMENT_DAYS,
        clock: Clock = utc_now,
    ):
        self._events = events
        self._aggregates = aggregates
        self._policy = policy
        self._settlement_days = settlement_days
        self._clock = clock

    def boundary(self) -> datetime:
        """Current compaction boundary (midnight UTC, settlement_days ago)."""
        return compaction_boundary(self._clock(), self._settlement_days)

    def is_settled(self, day: date) -> bool:
        """A day is settled once it ends at or before the compaction boundary."""
        _, day_end = day_bounds(day)
        return day_end <= self.boundary()

    def compact_day(self, day: date) -> CompactionResult:
        """
        Compact one UTC day.

        Args:
            day: Day to compact

        Returns:
            CompactionResult; `skipped` for unsettled days or days with no
            remaining raw events. Per-group failures are collected in
            `errors` and repaired by re-running the day.
        """
        if not self.is_settled(day):
            logger.debug("Skipping %s: not older than the compaction boundary", day)
            return CompactionResult(day=day, outcome=Outcome.SKIPPED)

        start, end = day_bounds(day)
        events = self._events.find_compactable(start, end)
        if not events:
            return CompactionResult(day=day, outcome=Outcome.SKIPPED)

        result = CompactionResult(day=day, outcome=Outcome.ACCEPTED, events_processed=len(events))
        for key, group in group_events(events).items():
            aggregate = build_aggregate(day, group, self._policy)
            try:
                event_ids = [e.event_id for e in group]
                result.events_retired += self._aggregates.replace_group(aggregate, event_ids)
                result.aggregates_upserted += 1
            except Exception as e:
                logger.exception("Compaction of %s group %s failed", day, key)
                result.errors.append(f"{'/'.join(str(part) for part in key)}: {e}")

        logger.info(
            "Compacted %s: %d events -> %d aggregates, %d retired, %d errors",
            day,
            result.events_processed,
            result.aggregates_upserted,
            result.events_retired,
            len(result.errors),
        )
        return result

    def compact_pending(self) -> list[CompactionResult]:
        """Compact every settled day that still holds raw events, oldest first."""
        days = self._events.compactable_days(before=self.boundary())
        if not days:
            logger.info("No settled days pending compaction")
        return [self.compact_day(day) for day in days]

    def purge_expired(self) -> PurgeResult:
        """
        Delete raw events and aggregates whose expiration has passed.

        Stands in for a store-native TTL sweep; critical events carry no
        expiration and are never touched.
        """
        now = self._clock()
        result = PurgeResult(
            raw_events_deleted=self._events.purge_expired(now),
            aggregates_deleted=self._aggregates.purge_expired(now),
        )
        logger.info(
            "Purged %d expired raw events and %d expired aggregates",
            result.raw_events_deleted,
            result.aggregates_deleted,
        )
        return result

    def get_stats(self) -> CompactionStats:
        """Store sizes, oldest rows and the estimated storage saving."""
        raw: StoreStats = self._events.stats()
        compacted: StoreStats = self._aggregates.stats()

        raw_bytes = raw.rows * RAW_EVENT_BYTES
        compacted_bytes = compacted.rows * AGGREGATE_BYTES
        savings = (raw_bytes - compacted_bytes) / raw_bytes * 100 if raw_bytes > 0 else 0.0

        return CompactionStats(
            total_raw_events=raw.rows,
            total_compacted_records=compacted.rows,
            oldest_raw_event=raw.oldest,
            oldest_compacted_record=compacted.oldest,
            boundary=self.boundary(),
            storage_estimate=StorageEstimate(
                raw_events_bytes=raw_bytes,
                compacted_bytes=compacted_bytes,
                savings_percentage=round(savings, 2),
            ),
        )
