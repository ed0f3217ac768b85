# ==============================================================================
# Tests for Event Throttling
# ==============================================================================
"""
Unit tests for ThrottlePolicy windows and EventThrottle claims.

Tests cover:
- Per-type base windows scaled by the plan tier multiplier
- Session lifecycle and audit trail exemptions
- In-process claims expiring with the clock
- Valkey claims shared between throttles
"""

from datetime import timedelta

from pulse.core.models import EventType, PlanTier
from pulse.core.throttle import EventThrottle, ThrottlePolicy, throttle_key
from pulse.utils.config import IngestionSettings


class TestThrottlePolicy:
    def test_default_window(self):
        policy = ThrottlePolicy()
        assert policy.window_for(EventType.PAGE_VIEW, PlanTier.FREE) == timedelta(seconds=10)

    def test_project_open_has_its_own_window(self):
        policy = ThrottlePolicy()
        assert policy.window_for(EventType.PROJECT_OPEN, PlanTier.FREE) == timedelta(seconds=45)

    def test_paid_tiers_shrink_the_window(self):
        policy = ThrottlePolicy()
        assert policy.window_for(EventType.PAGE_VIEW, PlanTier.PRO) == timedelta(seconds=7)
        assert policy.window_for(EventType.PROJECT_OPEN, PlanTier.ENTERPRISE) == timedelta(seconds=22.5)

    def test_session_and_audit_events_are_exempt(self):
        policy = ThrottlePolicy()
        assert policy.window_for(EventType.SESSION_START, PlanTier.FREE) is None
        assert policy.window_for(EventType.SESSION_END, PlanTier.FREE) is None
        assert policy.window_for(EventType.PROJECT_SHARED, PlanTier.FREE) is None

    def test_zero_window_disables_throttling(self):
        policy = ThrottlePolicy(default_seconds=0)
        assert policy.window_for(EventType.PAGE_VIEW, PlanTier.FREE) is None

    def test_from_settings(self):
        ingestion = IngestionSettings(
            throttle_default_seconds=20, throttle_project_open_seconds=60, throttle_pro_multiplier=0.5
        )
        policy = ThrottlePolicy.from_settings(ingestion)
        assert policy.window_for(EventType.SEARCH, PlanTier.PRO) == timedelta(seconds=10)
        assert policy.window_for(EventType.PROJECT_OPEN, PlanTier.FREE) == timedelta(seconds=60)


class TestThrottleKey:
    def test_payload_order_does_not_matter(self):
        first = throttle_key("u1", EventType.SEARCH, {"search_term": "q", "results_count": 3})
        second = throttle_key("u1", EventType.SEARCH, {"results_count": 3, "search_term": "q"})
        assert first == second

    def test_user_type_and_payload_are_distinguished(self):
        key = throttle_key("u1", EventType.SEARCH, {"search_term": "q"})
        assert key.startswith("pulse:throttle:u1:search:")
        assert key != throttle_key("u2", EventType.SEARCH, {"search_term": "q"})
        assert key != throttle_key("u1", EventType.PAGE_VIEW, {"search_term": "q"})
        assert key != throttle_key("u1", EventType.SEARCH, {"search_term": "r"})


class TestLocalClaims:
    def test_repeat_inside_window_is_refused(self, clock):
        throttle = EventThrottle(ThrottlePolicy(), clock=clock)
        assert throttle.claim("k", timedelta(seconds=10))
        clock.advance(seconds=9)
        assert not throttle.claim("k", timedelta(seconds=10))

    def test_claim_expires(self, clock):
        throttle = EventThrottle(ThrottlePolicy(), clock=clock)
        throttle.claim("k", timedelta(seconds=10))
        clock.advance(seconds=10)
        assert throttle.claim("k", timedelta(seconds=10))

    def test_release(self, clock):
        throttle = EventThrottle(ThrottlePolicy(), clock=clock)
        throttle.claim("k", timedelta(seconds=10))
        throttle.release("k")
        assert throttle.claim("k", timedelta(seconds=10))


class TestValkeyClaims:
    def test_claim_sets_expiring_marker(self, fake_cache, fake_redis):
        throttle = EventThrottle(ThrottlePolicy(), cache=fake_cache)
        assert throttle.claim("k", timedelta(seconds=7))
        assert 0 < fake_redis.pttl("k") <= 7000

    def test_claims_are_shared_between_processes(self, fake_cache):
        first = EventThrottle(ThrottlePolicy(), cache=fake_cache)
        second = EventThrottle(ThrottlePolicy(), cache=fake_cache)
        assert first.claim("k", timedelta(seconds=10))
        assert not second.claim("k", timedelta(seconds=10))

    def test_release_deletes_marker(self, fake_cache, fake_redis):
        throttle = EventThrottle(ThrottlePolicy(), cache=fake_cache)
        throttle.claim("k", timedelta(seconds=10))
        throttle.release("k")
        assert fake_redis.exists("k") == 0
