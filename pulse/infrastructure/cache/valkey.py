# ==============================================================================
# Valkey Cache Implementation
# ==============================================================================
"""
Valkey/Redis implementation of the Cache interface.

Provides:
- JSON key-value storage with TTL (plan tier lookups)
- Atomic counters with expiry (daily ingestion ceilings)
- Pattern-based deletion
"""

import json
import logging

import redis
from redis.backoff import ExponentialBackoff
from redis.exceptions import RedisError
from redis.retry import Retry

from pulse.base.cache import Cache
from pulse.utils.config import get_settings
from pulse.utils.retry import REDIS_RETRY_EXCEPTIONS, VALKEY_RETRIES

logger = logging.getLogger(__name__)


def build_valkey_client(
    url: str | None = None,
    socket_timeout: int = 10,
    retries: int | None = None,
    health_check_interval: int = 30,
) -> redis.Redis:
    """
    Create a redis-py client configured for Valkey.

    Configured with:
    - Socket timeouts for fast failure detection
    - Automatic retries with exponential backoff for transient failures
    - Health check interval to keep connections alive

    Args:
        url: Valkey/Redis connection URL. If None, uses settings.
        socket_timeout: Socket timeout in seconds (default: 10)
        retries: Number of retries for transient failures (default: VALKEY_RETRIES)
        health_check_interval: Health check interval in seconds (default: 30)
    """
    if url is None:
        url = get_settings().valkey.url

    retry_count = retries if retries is not None else VALKEY_RETRIES
    retry_strategy = Retry(ExponentialBackoff(cap=32, base=1), retries=retry_count)

    return redis.from_url(
        url,
        decode_responses=True,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
        retry=retry_strategy,
        retry_on_error=list(REDIS_RETRY_EXCEPTIONS),
        health_check_interval=health_check_interval,
    )


class ValkeyCache(Cache):
    """
    Valkey/Redis implementation of the Cache interface.

    All dict values are stored as JSON strings and deserialized on retrieval.
    Counters are plain integers manipulated with INCRBY/DECRBY.
    """

    def __init__(self, url: str | None = None, client: redis.Redis | None = None, **client_options):
        """
        Initialize Valkey cache.

        Args:
            url: Valkey/Redis connection URL. If None, uses settings.
            client: Pre-built client (shared with other Valkey adapters)
            **client_options: Passed to build_valkey_client()
        """
        self._client = client if client is not None else build_valkey_client(url, **client_options)

    @property
    def client(self) -> redis.Redis:
        """Get the underlying Redis client for advanced operations."""
        return self._client

    def get(self, key: str) -> dict | None:
        """
        Get a cached value.

        Args:
            key: Cache key

        Returns:
            Cached value as dict, or None if not found
        """
        value = self._client.get(key)
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.warning("Failed to decode JSON for key %s", key)
            return None

    def set(self, key: str, value: dict, ttl_seconds: int | None = None) -> None:
        """
        Set a cached value with optional TTL.

        Args:
            key: Cache key
            value: Value to cache (must be JSON-serializable dict)
            ttl_seconds: Optional time-to-live in seconds
        """
        json_value = json.dumps(value)
        if ttl_seconds is not None:
            self._client.setex(key, ttl_seconds, json_value)
        else:
            self._client.set(key, json_value)

    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it existed."""
        return self._client.delete(key) > 0

    def set_if_absent(self, key: str, ttl_seconds: float) -> bool:
        """Create a marker key with SET NX PX. Returns True if this call created it."""
        ttl_ms = max(int(ttl_seconds * 1000), 1)
        return bool(self._client.set(key, 1, nx=True, px=ttl_ms))

    def increment(self, key: str, amount: int = 1, ttl_seconds: int | None = None) -> int:
        """
        Increment a counter. Creates key with value if it doesn't exist.

        The expiry is only set by the increment that creates the key.

        Args:
            key: Cache key
            amount: Amount to increment by (default: 1)
            ttl_seconds: Expiry for a newly created counter

        Returns:
            New value after increment
        """
        value = self._client.incrby(key, amount)
        if ttl_seconds is not None and value == amount:
            self._client.expire(key, ttl_seconds)
        return value

    def decrement(self, key: str, amount: int = 1) -> int:
        """Decrement a counter. Returns the new value."""
        return self._client.decrby(key, amount)

    def get_counter(self, key: str) -> int:
        """Read a counter; missing keys read as 0."""
        value = self._client.get(key)
        return int(value) if value is not None else 0

    def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching a pattern.

        Args:
            pattern: Pattern to match (e.g., "pulse:plan:*")

        Returns:
            Count of keys deleted
        """
        keys = list(self._client.scan_iter(pattern))
        if keys:
            return self._client.delete(*keys)
        return 0

    def ping(self) -> bool:
        """
        Check if the cache is reachable.

        Returns:
            True if ping succeeds, False otherwise
        """
        try:
            return self._client.ping()
        except RedisError:
            return False

    def close(self) -> None:
        """Close the connection."""
        self._client.close()
