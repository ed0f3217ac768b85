# ==============================================================================
# Cache Infrastructure
# ==============================================================================
"""
Cache implementations for the ports-and-adapters architecture.

Available implementations:
- ValkeyCache: Valkey/Redis-based cache with JSON serialization and counters
"""

from pulse.infrastructure.cache.valkey import (
    ValkeyCache,
    build_valkey_client,
)

__all__ = [
    "ValkeyCache",
    "build_valkey_client",
]
