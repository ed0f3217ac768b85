# ==============================================================================
# Core Domain Logic
# ==============================================================================
"""
Domain logic of the analytics engine.

This module contains:
- Domain models (RawEvent, Session, CompactedAggregate, PlanTier)
- Retention policy, event throttling and gap-aware active time
- Services: EventRecorder, SessionTracker, Compactor, AggregateQueryService

Services depend only on the ports in pulse.base, so they run unchanged
against PostgreSQL, Valkey or the in-memory stores.
"""

from pulse.core.active_time import calculate_active_time
from pulse.core.compactor import Compactor
from pulse.core.event_recorder import EventRecorder
from pulse.core.exceptions import PulseError, QueryTimeoutError, StorageNotConnectedError
from pulse.core.models import (
    CompactedAggregate,
    EventCategory,
    EventType,
    PlanTier,
    QueryFilters,
    RawEvent,
    Session,
)
from pulse.core.query_service import AggregateQueryService
from pulse.core.results import CompactionResult, Outcome, RecordResult, SessionResult
from pulse.core.retention import RecordClass, RetentionPolicy, compaction_boundary
from pulse.core.session_tracker import SessionTracker
from pulse.core.throttle import EventThrottle, ThrottlePolicy

__all__ = [
    "AggregateQueryService",
    "CompactedAggregate",
    "CompactionResult",
    "Compactor",
    "EventCategory",
    "EventRecorder",
    "EventThrottle",
    "EventType",
    "Outcome",
    "PlanTier",
    "PulseError",
    "QueryFilters",
    "QueryTimeoutError",
    "RawEvent",
    "RecordClass",
    "RecordResult",
    "RetentionPolicy",
    "Session",
    "SessionResult",
    "SessionTracker",
    "StorageNotConnectedError",
    "ThrottlePolicy",
    "calculate_active_time",
    "compaction_boundary",
]
