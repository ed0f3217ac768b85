# ==============================================================================
# Event Recorder
# ==============================================================================
"""
Validates, classifies, sanitizes and persists behavioral events.

Each accepted event is written exactly once and never mutated afterwards.
Expected failures are returned as RecordResult values:
- rejected: unknown event type or a payload its model cannot accept
- dropped: the free-tier daily ceiling is exhausted, or an identical event
  was recorded inside its throttle window
"""

import logging
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

from pydantic import ValidationError

from pulse.base.cache import Cache
from pulse.base.plans import PlanDirectory
from pulse.base.repositories import EventRepository, RawWindow
from pulse.core.models import (
    CONVERSION_EVENT_TYPES,
    CRITICAL_EVENT_TYPES,
    EVENT_CATEGORIES,
    PAYLOAD_MODELS,
    EventType,
    PlanTier,
    QueryFilters,
    RawEvent,
)
from pulse.core.results import RecordResult
from pulse.core.retention import RetentionPolicy
from pulse.core.sanitizer import PayloadLimits, sanitize_payload, sanitize_value
from pulse.core.throttle import EventThrottle, throttle_key
from pulse.utils.clock import Clock, start_of_day, utc_now

logger = logging.getLogger(__name__)

DEFAULT_DAILY_EVENT_LIMIT = 1000

# Counters outlive their day so late increments near midnight still expire
DAILY_COUNTER_TTL_SECONDS = 2 * 24 * 60 * 60


def daily_counter_key(user_id: str, day: date) -> str:
    """Valkey key holding a user's accepted-event count for one UTC day."""
    return f"pulse:ingest:{user_id}:{day.isoformat()}"


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "payload"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


class EventRecorder:
    """
    Write path for raw behavioral events.

    Collaborators:
    - EventRepository: durable store (one save per accepted event)
    - PlanDirectory: the owner's plan tier at recording time
    - RetentionPolicy: expiration stamped on the event
    - Cache (optional): atomic per-day counters for the ingestion ceiling.
      Without it the ceiling is checked by counting today's stored events.
    - EventThrottle (optional): drops repeats of an identical event inside
      a per-type, per-tier window
    """

    def __init__(
        self,
        events: EventRepository,
        plans: PlanDirectory,
        policy: RetentionPolicy,
        cache: Cache | None = None,
        daily_limit: int = DEFAULT_DAILY_EVENT_LIMIT,
        limits: PayloadLimits = PayloadLimits(),
        throttle: EventThrottle | None = None,
        clock: Clock = utc_now,
    ):
        self._events = events
        self._plans = plans
        self._policy = policy
        self._cache = cache
        self._daily_limit = daily_limit
        self._limits = limits
        self._throttle = throttle
        self._clock = clock

    @property
    def daily_limit(self) -> int:
        return self._daily_limit

    def record(
        self,
        user_id: str,
        event_type: str | EventType,
        payload: Any = None,
        *,
        session_id: str | None = None,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> RecordResult:
        """
        Record one event.

        Args:
            user_id: Owning user
            event_type: Event type value (unknown values are rejected)
            payload: Client payload mapping (None is treated as empty)
            session_id: Session the event belongs to, if any
            user_agent: Client user agent
            ip_address: Client address

        Returns:
            RecordResult with outcome accepted, dropped or rejected
        """
        parsed_type = EventType.parse(event_type)
        if parsed_type is None:
            logger.debug("Rejected event of unknown type %r for user %s", event_type, user_id)
            return RecordResult.reject(f"unknown event type: {event_type}")

        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            return RecordResult.reject("payload must be a mapping")

        try:
            typed = self._build_payload(parsed_type, payload)
        except ValidationError as e:
            reason = _format_validation_error(e)
            logger.debug("Rejected %s event for user %s: %s", parsed_type.value, user_id, reason)
            return RecordResult.reject(reason)

        now = self._clock()
        plan_tier = self._plans.current_plan_tier(user_id)

        stored_payload = typed.model_dump(exclude_none=True)
        allowed, claimed_key = self._claim_throttle(user_id, parsed_type, plan_tier, stored_payload)
        if not allowed:
            logger.debug("Throttled repeated %s event for user %s", parsed_type.value, user_id)
            return RecordResult.drop("identical event throttled")

        counted = False
        if self._is_capped(plan_tier, parsed_type):
            if not self._claim_daily_slot(user_id, now):
                self._release_throttle(claimed_key)
                logger.debug(
                    "Dropped %s event for user %s: daily limit of %d reached",
                    parsed_type.value,
                    user_id,
                    self._daily_limit,
                )
                return RecordResult.drop("daily event limit reached")
            counted = self._cache is not None

        is_conversion = parsed_type in CONVERSION_EVENT_TYPES
        event = RawEvent(
            user_id=user_id,
            session_id=session_id,
            event_type=parsed_type,
            category=EVENT_CATEGORIES[parsed_type],
            payload=stored_payload,
            project_id=typed.project_id,
            duration=typed.duration,
            timestamp=now,
            plan_tier=plan_tier,
            is_conversion=is_conversion,
            conversion_value=getattr(typed, "value", None) if is_conversion else None,
            expires_at=self._policy.expiration_for(
                plan_tier, self._policy.record_class_for(parsed_type), now
            ),
            user_agent=user_agent,
            ip_address=ip_address,
        )

        try:
            self._events.save(event)
        except Exception:
            if counted:
                self._cache.decrement(daily_counter_key(user_id, now.date()))
            self._release_throttle(claimed_key)
            raise

        logger.debug("Recorded %s event %s for user %s", parsed_type.value, event.event_id, user_id)
        return RecordResult.accept(event)

    def daily_events_remaining(self, user_id: str) -> int | None:
        """
        Events the user may still record today.

        Returns:
            Remaining count, or None when the user's tier is uncapped
        """
        if not self._plans.current_plan_tier(user_id).is_lowest:
            return None
        now = self._clock()
        used = self._used_today(user_id, now)
        return max(self._daily_limit - used, 0)

    # ==========================================================================
    # Internals
    # ==========================================================================

    def _build_payload(self, event_type: EventType, payload: Mapping[str, Any]):
        """Sanitize, fold undeclared fields into metadata and validate."""
        model = PAYLOAD_MODELS[event_type]
        declared = set(model.model_fields) - {"metadata"}

        remaining = dict(payload)
        supplied_metadata = remaining.pop("metadata", None)

        metadata: dict[str, Any] = {}
        if isinstance(supplied_metadata, Mapping):
            metadata.update(sanitize_payload(supplied_metadata, self._limits))
        elif supplied_metadata is not None:
            metadata["metadata"] = sanitize_value(supplied_metadata, self._limits)

        fields: dict[str, Any] = {}
        for key, value in sanitize_payload(remaining, self._limits).items():
            if key in declared:
                fields[key] = value
            elif len(metadata) < self._limits.max_payload_keys:
                metadata[key] = value

        return model.model_validate({**fields, "metadata": metadata})

    def _claim_throttle(
        self, user_id: str, event_type: EventType, plan_tier: PlanTier, payload: dict[str, Any]
    ) -> tuple[bool, str | None]:
        """Whether the event may be stored, and the throttle key it claimed."""
        if self._throttle is None:
            return True, None
        window = self._throttle.window_for(event_type, plan_tier)
        if window is None:
            return True, None
        key = throttle_key(user_id, event_type, payload)
        if not self._throttle.claim(key, window):
            return False, None
        return True, key

    def _release_throttle(self, key: str | None) -> None:
        if key is not None:
            self._throttle.release(key)

    def _is_capped(self, plan_tier: PlanTier, event_type: EventType) -> bool:
        # Audit trail events are never dropped
        return plan_tier.is_lowest and event_type not in CRITICAL_EVENT_TYPES

    def _claim_daily_slot(self, user_id: str, now: datetime) -> bool:
        if self._cache is not None:
            count = self._cache.increment(
                daily_counter_key(user_id, now.date()),
                ttl_seconds=DAILY_COUNTER_TTL_SECONDS,
            )
            if count > self._daily_limit:
                # Keep the counter at the limit so the remaining quota reads 0
                self._cache.decrement(daily_counter_key(user_id, now.date()))
                return False
            return True
        return self._used_today(user_id, now) < self._daily_limit

    def _used_today(self, user_id: str, now: datetime) -> int:
        if self._cache is not None:
            cached = self._cache.get_counter(daily_counter_key(user_id, now.date()))
            return cached
        return self._events.count(
            QueryFilters(user_id=user_id),
            RawWindow(start=start_of_day(now), end=now),
        )
