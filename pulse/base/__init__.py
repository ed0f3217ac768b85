# ==============================================================================
# Base Abstract Classes
# ==============================================================================
"""
Abstract base classes defining the ports of the ports-and-adapters architecture.

The core services depend only on these interfaces; infrastructure/ provides
the PostgreSQL, Valkey and in-memory adapters.
"""

from pulse.base.cache import Cache
from pulse.base.notifier import Notifier, NullNotifier
from pulse.base.plans import PlanDirectory
from pulse.base.repositories import (
    AggregateRepository,
    DayWindow,
    EventRepository,
    RawWindow,
    SessionRepository,
)

__all__ = [
    "AggregateRepository",
    "Cache",
    "DayWindow",
    "EventRepository",
    "Notifier",
    "NullNotifier",
    "PlanDirectory",
    "RawWindow",
    "SessionRepository",
]
