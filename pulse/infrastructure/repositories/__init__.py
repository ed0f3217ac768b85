# ==============================================================================
# Database Repository Adapters
# ==============================================================================
"""
Database adapters implementing the repository interfaces from base/repositories.py.

Currently supported:
- PostgreSQL (postgresql.py)
- In-memory (memory.py), for the memory backend and tests
"""

from pulse.infrastructure.repositories.memory import (
    InMemoryAggregateRepository,
    InMemoryEventRepository,
    InMemorySessionRepository,
)
from pulse.infrastructure.repositories.postgresql import (
    PostgreSQLAggregateRepository,
    PostgreSQLEventRepository,
    PostgreSQLSessionRepository,
    check_postgresql_connection,
)

__all__ = [
    "InMemoryAggregateRepository",
    "InMemoryEventRepository",
    "InMemorySessionRepository",
    "PostgreSQLAggregateRepository",
    "PostgreSQLEventRepository",
    "PostgreSQLSessionRepository",
    "check_postgresql_connection",
]
