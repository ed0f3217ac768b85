# ==============================================================================
# Operation Results
# ==============================================================================
"""
Explicit result variants for write operations.

Capacity drops and stale session operations are expected outcomes, not
failures, so they are returned as values instead of raised. Callers branch
on `outcome` and can never mistake a no-op for a crash.
"""

from datetime import date
from enum import Enum

from pydantic import BaseModel, Field

from pulse.core.models import RawEvent


class Outcome(str, Enum):
    ACCEPTED = "accepted"
    DROPPED = "dropped"
    REJECTED = "rejected"
    NOT_FOUND = "not_found"
    SKIPPED = "skipped"


class RecordResult(BaseModel):
    """Result of EventRecorder.record()."""

    outcome: Outcome
    event: RawEvent | None = None
    reason: str | None = None

    @property
    def accepted(self) -> bool:
        return self.outcome is Outcome.ACCEPTED

    @classmethod
    def accept(cls, event: RawEvent) -> "RecordResult":
        return cls(outcome=Outcome.ACCEPTED, event=event)

    @classmethod
    def drop(cls, reason: str) -> "RecordResult":
        return cls(outcome=Outcome.DROPPED, reason=reason)

    @classmethod
    def reject(cls, reason: str) -> "RecordResult":
        return cls(outcome=Outcome.REJECTED, reason=reason)


class SessionResult(BaseModel):
    """Result of a SessionTracker mutation."""

    outcome: Outcome
    session_id: str

    @property
    def accepted(self) -> bool:
        return self.outcome is Outcome.ACCEPTED


class CompactionResult(BaseModel):
    """Result of compacting one UTC day."""

    day: date
    outcome: Outcome
    events_processed: int = 0
    aggregates_upserted: int = 0
    events_retired: int = 0
    errors: list[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors
