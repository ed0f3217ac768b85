# ==============================================================================
# Tests for ValkeyCache
# ==============================================================================
"""
Unit tests for the Valkey cache adapter, backed by fakeredis.
"""

from unittest.mock import MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError

from pulse.infrastructure.cache import ValkeyCache


class TestValues:
    def test_set_and_get(self, fake_cache):
        fake_cache.set("k", {"tier": "pro"})
        assert fake_cache.get("k") == {"tier": "pro"}

    def test_missing_key(self, fake_cache):
        assert fake_cache.get("missing") is None

    def test_ttl_is_applied(self, fake_cache, fake_redis):
        fake_cache.set("k", {"a": 1}, ttl_seconds=60)
        assert 0 < fake_redis.ttl("k") <= 60

    def test_invalid_json_reads_as_missing(self, fake_cache, fake_redis):
        fake_redis.set("k", "{not json")
        assert fake_cache.get("k") is None

    def test_delete(self, fake_cache):
        fake_cache.set("k", {"a": 1})
        assert fake_cache.delete("k") is True
        assert fake_cache.delete("k") is False

    def test_delete_pattern(self, fake_cache):
        for user in ("u1", "u2"):
            fake_cache.set(f"pulse:plan:{user}", {"tier": "free"})
        fake_cache.set("other", {"a": 1})

        assert fake_cache.delete_pattern("pulse:plan:*") == 2
        assert fake_cache.get("other") == {"a": 1}
        assert fake_cache.delete_pattern("pulse:plan:*") == 0

    def test_set_if_absent(self, fake_cache, fake_redis):
        assert fake_cache.set_if_absent("m", ttl_seconds=1.5) is True
        assert fake_cache.set_if_absent("m", ttl_seconds=1.5) is False
        assert 0 < fake_redis.pttl("m") <= 1500


class TestCounters:
    def test_increment_creates_counter_with_expiry(self, fake_cache, fake_redis):
        assert fake_cache.increment("c", ttl_seconds=120) == 1
        assert 0 < fake_redis.ttl("c") <= 120

    def test_later_increments_keep_original_expiry(self, fake_cache, fake_redis):
        fake_cache.increment("c", ttl_seconds=120)
        fake_redis.expire("c", 30)
        assert fake_cache.increment("c", ttl_seconds=120) == 2
        assert fake_redis.ttl("c") <= 30

    def test_decrement(self, fake_cache):
        fake_cache.increment("c", amount=5)
        assert fake_cache.decrement("c", 2) == 3
        assert fake_cache.get_counter("c") == 3

    def test_missing_counter_reads_zero(self, fake_cache):
        assert fake_cache.get_counter("missing") == 0


class TestPing:
    def test_reachable(self, fake_cache):
        assert fake_cache.ping() is True

    def test_unreachable(self):
        client = MagicMock()
        client.ping.side_effect = RedisConnectionError("refused")
        assert ValkeyCache(client=client).ping() is False
