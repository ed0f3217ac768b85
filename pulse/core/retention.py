# ==============================================================================
# Retention Policy - Pure Domain Logic
# ==============================================================================
"""
Tiered data-lifecycle policy.

Maps (plan tier, record class) to an expiration instant. Critical audit
events never expire. The policy is pure: it reads only its horizons and its
arguments, so concurrent writers can call it without coordination.

Also defines the compaction boundary shared by the Compactor and the query
layer, so both always split history at the same instant.
"""

from collections.abc import Mapping
from datetime import datetime, timedelta
from enum import Enum

from pulse.core.models import CRITICAL_EVENT_TYPES, EventType, PlanTier
from pulse.utils.clock import ensure_utc, start_of_day


class RecordClass(str, Enum):
    """Kinds of stored records with their own retention horizons."""

    RAW_EVENT = "raw_event"
    AGGREGATE = "aggregate"
    CRITICAL = "critical"


def compaction_boundary(now: datetime, settlement_days: int) -> datetime:
    """
    Midnight UTC `settlement_days` before `now`.

    Raw events older than this instant are answered from compacted
    aggregates; newer ones from the raw store.
    """
    return start_of_day(ensure_utc(now)) - timedelta(days=settlement_days)


class RetentionPolicy:
    """
    Expiration calculator for raw events and compacted aggregates.

    Horizons are in days; None keeps the record forever. Tiers missing from a
    mapping fall back to the free tier's horizon.
    """

    def __init__(
        self,
        raw_days: Mapping[PlanTier, int | None],
        aggregate_days: Mapping[PlanTier, int | None],
        minimum_raw_days: int = 0,
    ):
        """
        Initialize the policy.

        Args:
            raw_days: Raw event horizon per tier
            aggregate_days: Compacted aggregate horizon per tier
            minimum_raw_days: Shortest raw horizon allowed (settlement window
                plus retirement margin). Raw events must never expire before
                the Compactor has rolled them up.

        Raises:
            ValueError: If a raw horizon is shorter than minimum_raw_days
        """
        for tier, days in raw_days.items():
            if days is not None and days < minimum_raw_days:
                raise ValueError(
                    f"{tier.value} raw retention ({days} days) is shorter than the "
                    f"compaction settlement window plus margin ({minimum_raw_days} days)"
                )
        self._horizons: dict[RecordClass, dict[PlanTier, int | None]] = {
            RecordClass.RAW_EVENT: dict(raw_days),
            RecordClass.AGGREGATE: dict(aggregate_days),
        }

    @classmethod
    def from_settings(cls, settings) -> "RetentionPolicy":
        """Build the policy from application settings."""
        retention = settings.retention
        compaction = settings.compaction
        return cls(
            raw_days={tier: retention.raw_days(tier) for tier in PlanTier.ordered()},
            aggregate_days={tier: retention.aggregate_days(tier) for tier in PlanTier.ordered()},
            minimum_raw_days=compaction.settlement_days + compaction.retirement_margin_days,
        )

    @staticmethod
    def record_class_for(event_type: EventType) -> RecordClass:
        """Raw events are critical when their type belongs to the audit trail."""
        if event_type in CRITICAL_EVENT_TYPES:
            return RecordClass.CRITICAL
        return RecordClass.RAW_EVENT

    def horizon_days(self, plan_tier: PlanTier, record_class: RecordClass) -> int | None:
        """Retention horizon in days, or None for records kept forever."""
        if record_class is RecordClass.CRITICAL:
            return None
        horizons = self._horizons[record_class]
        if plan_tier in horizons:
            return horizons[plan_tier]
        return horizons.get(PlanTier.FREE)

    def expiration_for(
        self,
        plan_tier: PlanTier,
        record_class: RecordClass,
        reference_time: datetime,
    ) -> datetime | None:
        """
        Compute when a record expires.

        Args:
            plan_tier: Owner's plan tier when the record was written
            record_class: Kind of record being written
            reference_time: Instant the horizon is counted from

        Returns:
            Expiration instant (UTC), or None if the record never expires
        """
        days = self.horizon_days(plan_tier, record_class)
        if days is None:
            return None
        return ensure_utc(reference_time) + timedelta(days=days)

    def describe(self, plan_tier: PlanTier) -> str:
        """Human-readable raw retention for summaries (e.g. '30 days')."""
        days = self.horizon_days(plan_tier, RecordClass.RAW_EVENT)
        return "unlimited" if days is None else f"{days} days"
