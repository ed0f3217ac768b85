# ==============================================================================
# Event Throttle
# ==============================================================================
"""
Suppresses repeats of an identical event inside a short window.

Two events are identical when they share user, event type and sanitized
payload. The window depends on the event type and shrinks on paid tiers.
Session lifecycle and audit trail events are never throttled.

With a Cache each window is claimed with one SET NX PX, so every process
sharing the Valkey instance sees the same claims. Without one, claims are
held in this process only.
"""

import hashlib
import json
import logging
import threading
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from pulse.base.cache import Cache
from pulse.core.models import CRITICAL_EVENT_TYPES, EventType, PlanTier
from pulse.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 10.0

DEFAULT_TYPE_WINDOWS: dict[EventType, float] = {
    EventType.PROJECT_OPEN: 45.0,
}

DEFAULT_TIER_MULTIPLIERS: dict[PlanTier, float] = {
    PlanTier.FREE: 1.0,
    PlanTier.PRO: 0.7,
    PlanTier.ENTERPRISE: 0.5,
}

EXEMPT_EVENT_TYPES: frozenset[EventType] = (
    frozenset({EventType.SESSION_START, EventType.SESSION_END}) | CRITICAL_EVENT_TYPES
)

# Expired in-process claims are swept once the map grows past this size
LOCAL_SWEEP_THRESHOLD = 10_000


def throttle_key(user_id: str, event_type: EventType, payload: Mapping[str, Any]) -> str:
    """Valkey key identifying one (user, event type, payload) combination."""
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:32]
    return f"pulse:throttle:{user_id}:{event_type.value}:{digest}"


class ThrottlePolicy:
    """
    Throttle window per (event type, plan tier).

    The window is the type's base duration times the tier's multiplier.
    Types without their own duration use the default; tiers without a
    multiplier use 1.0.
    """

    def __init__(
        self,
        default_seconds: float = DEFAULT_WINDOW_SECONDS,
        type_seconds: Mapping[EventType, float] | None = None,
        tier_multipliers: Mapping[PlanTier, float] | None = None,
    ):
        self._default_seconds = default_seconds
        self._type_seconds = dict(DEFAULT_TYPE_WINDOWS if type_seconds is None else type_seconds)
        self._tier_multipliers = dict(
            DEFAULT_TIER_MULTIPLIERS if tier_multipliers is None else tier_multipliers
        )

    @classmethod
    def from_settings(cls, ingestion) -> "ThrottlePolicy":
        """Build the policy from IngestionSettings."""
        return cls(
            default_seconds=ingestion.throttle_default_seconds,
            type_seconds={EventType.PROJECT_OPEN: ingestion.throttle_project_open_seconds},
            tier_multipliers={tier: ingestion.throttle_multiplier(tier) for tier in PlanTier.ordered()},
        )

    def window_for(self, event_type: EventType, plan_tier: PlanTier) -> timedelta | None:
        """
        Throttle window for one event.

        Returns:
            Window length, or None when the event is never throttled
        """
        if event_type in EXEMPT_EVENT_TYPES:
            return None
        seconds = self._type_seconds.get(event_type, self._default_seconds)
        seconds *= self._tier_multipliers.get(plan_tier, 1.0)
        if seconds <= 0:
            return None
        return timedelta(seconds=seconds)


class EventThrottle:
    """Claims throttle windows in Valkey, or in process when no cache is given."""

    def __init__(self, policy: ThrottlePolicy, cache: Cache | None = None, clock: Clock = utc_now):
        self._policy = policy
        self._cache = cache
        self._clock = clock
        self._claims: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def window_for(self, event_type: EventType, plan_tier: PlanTier) -> timedelta | None:
        return self._policy.window_for(event_type, plan_tier)

    def claim(self, key: str, window: timedelta) -> bool:
        """
        Claim `key` for `window`.

        Returns:
            True if no live claim existed, False if the event is a repeat
        """
        if self._cache is not None:
            return self._cache.set_if_absent(key, ttl_seconds=window.total_seconds())

        now = self._clock()
        with self._lock:
            if len(self._claims) > LOCAL_SWEEP_THRESHOLD:
                self._claims = {k: until for k, until in self._claims.items() if until > now}
            until = self._claims.get(key)
            if until is not None and until > now:
                return False
            self._claims[key] = now + window
            return True

    def release(self, key: str) -> None:
        """Drop a claim whose event was not stored."""
        if self._cache is not None:
            self._cache.delete(key)
            return
        with self._lock:
            self._claims.pop(key, None)
