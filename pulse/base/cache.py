# ==============================================================================
# Cache Abstract Base Class
# ==============================================================================
"""
Abstract interface for key-value caching with TTL support.

This is NOT a repository (which represents domain object collections).
Cache is transient storage: plan lookups and per-day ingestion counters.

Implementations: Valkey (production), fakeredis-backed Valkey (tests).
"""

from abc import ABC, abstractmethod


class Cache(ABC):
    """
    Generic cache interface for key-value storage with TTL support.

    All values are stored as dicts (JSON-serializable). Implementations
    handle serialization/deserialization internally.
    """

    @abstractmethod
    def get(self, key: str) -> dict | None:
        """
        Get a cached value.

        Args:
            key: Cache key

        Returns:
            Cached value as dict, or None if not found
        """
        ...

    @abstractmethod
    def set(self, key: str, value: dict, ttl_seconds: int | None = None) -> None:
        """
        Set a cached value with optional TTL.

        Args:
            key: Cache key
            value: Value to cache (must be JSON-serializable dict)
            ttl_seconds: Optional time-to-live in seconds
        """
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        """
        Delete a key.

        Returns:
            True if key was deleted, False if not found
        """
        ...

    @abstractmethod
    def set_if_absent(self, key: str, ttl_seconds: float) -> bool:
        """
        Atomically create a short-lived marker key.

        Args:
            key: Cache key
            ttl_seconds: Expiry of the marker (sub-second precision)

        Returns:
            True if the key was created, False if it already existed
        """
        ...

    @abstractmethod
    def increment(self, key: str, amount: int = 1, ttl_seconds: int | None = None) -> int:
        """
        Atomically increment a counter. Creates the key if it doesn't exist.

        Args:
            key: Cache key
            amount: Amount to increment by (default: 1)
            ttl_seconds: Expiry applied when the increment creates the key

        Returns:
            New value after increment
        """
        ...

    @abstractmethod
    def decrement(self, key: str, amount: int = 1) -> int:
        """Atomically decrement a counter. Returns the new value."""
        ...

    @abstractmethod
    def get_counter(self, key: str) -> int:
        """Read a counter written by increment(); missing keys read as 0."""
        ...

    @abstractmethod
    def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching a pattern.

        Args:
            pattern: Pattern to match (e.g., "pulse:plan:*")

        Returns:
            Count of keys deleted
        """
        ...
