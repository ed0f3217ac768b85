# ==============================================================================
# Infrastructure Adapters
# ==============================================================================
"""
Adapters for external services (ports-and-adapters architecture).

This module contains concrete implementations of the ports in pulse.base:
- cache/ - Cache adapters (Valkey/Redis)
- repositories/ - Storage adapters (PostgreSQL, in-memory)
- plans.py - Plan directories (static, PostgreSQL, Valkey-cached)
- notifier.py - Session notifications over Valkey pub/sub
"""

from pulse.infrastructure.cache import ValkeyCache, build_valkey_client
from pulse.infrastructure.notifier import ValkeyNotifier
from pulse.infrastructure.plans import (
    CachedPlanDirectory,
    PostgreSQLPlanDirectory,
    StaticPlanDirectory,
)
from pulse.infrastructure.repositories import (
    InMemoryAggregateRepository,
    InMemoryEventRepository,
    InMemorySessionRepository,
    PostgreSQLAggregateRepository,
    PostgreSQLEventRepository,
    PostgreSQLSessionRepository,
    check_postgresql_connection,
)

__all__ = [
    # Cache
    "ValkeyCache",
    "build_valkey_client",
    # Notifications
    "ValkeyNotifier",
    # Plans
    "CachedPlanDirectory",
    "PostgreSQLPlanDirectory",
    "StaticPlanDirectory",
    # Repositories
    "InMemoryAggregateRepository",
    "InMemoryEventRepository",
    "InMemorySessionRepository",
    "PostgreSQLAggregateRepository",
    "PostgreSQLEventRepository",
    "PostgreSQLSessionRepository",
    "check_postgresql_connection",
]
