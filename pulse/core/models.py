# ==============================================================================
# Pulse Domain Models
# ==============================================================================
"""
Pydantic models for behavioral events, sessions and compacted aggregates.

These models are used for:
- Validating event payloads at ingestion
- Mapping rows to and from the raw, aggregate and session stores
- Type safety throughout the engine

This module is part of the core domain layer and has no external dependencies
beyond Pydantic.
"""

from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class PlanTier(str, Enum):
    """Subscription tiers, lowest first."""

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"

    @classmethod
    def _missing_(cls, value):
        # Billing still emits the legacy name for the top tier
        if isinstance(value, str) and value.lower() == "premium":
            return cls.ENTERPRISE
        return None

    @classmethod
    def ordered(cls) -> list["PlanTier"]:
        """All tiers from lowest to highest."""
        return [cls.FREE, cls.PRO, cls.ENTERPRISE]

    @property
    def rank(self) -> int:
        """Position in the tier hierarchy (free = 0)."""
        return PlanTier.ordered().index(self)

    @property
    def is_lowest(self) -> bool:
        return self.rank == 0


class EventCategory(str, Enum):
    """Coarse classification used for filtering and retention reporting."""

    ENGAGEMENT = "engagement"
    BUSINESS = "business"
    ERROR = "error"


class EventType(str, Enum):
    """Known behavioral event types."""

    # Session lifecycle
    SESSION_START = "session_start"
    SESSION_END = "session_end"

    # Navigation and usage
    PAGE_VIEW = "page_view"
    NAVIGATION = "navigation"
    PROJECT_OPEN = "project_open"
    FIELD_EDIT = "field_edit"
    FEATURE_USED = "feature_used"
    ACTION = "action"
    UI_INTERACTION = "ui_interaction"
    SEARCH = "search"
    PERFORMANCE = "performance"

    # Errors
    ERROR = "error"

    # Business
    USER_SIGNUP = "user_signup"
    CHECKOUT_COMPLETED = "checkout_completed"
    USER_UPGRADED = "user_upgraded"
    USER_DOWNGRADED = "user_downgraded"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    SUBSCRIPTION_REACTIVATED = "subscription_reactivated"

    # Membership, sharing and archival (audit trail)
    MEMBER_INVITED = "invited_member"
    MEMBER_REMOVED = "removed_member"
    ROLE_UPDATED = "updated_role"
    PROJECT_SHARED = "shared_project"
    PROJECT_UNSHARED = "unshared_project"
    PROJECT_ARCHIVED = "archived_project"
    PROJECT_UNARCHIVED = "unarchived_project"

    @classmethod
    def parse(cls, value: "str | EventType") -> "EventType | None":
        """Return the matching event type, or None for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return None


EVENT_CATEGORIES: dict[EventType, EventCategory] = {
    EventType.SESSION_START: EventCategory.ENGAGEMENT,
    EventType.SESSION_END: EventCategory.ENGAGEMENT,
    EventType.PAGE_VIEW: EventCategory.ENGAGEMENT,
    EventType.NAVIGATION: EventCategory.ENGAGEMENT,
    EventType.PROJECT_OPEN: EventCategory.ENGAGEMENT,
    EventType.FIELD_EDIT: EventCategory.ENGAGEMENT,
    EventType.FEATURE_USED: EventCategory.ENGAGEMENT,
    EventType.ACTION: EventCategory.ENGAGEMENT,
    EventType.UI_INTERACTION: EventCategory.ENGAGEMENT,
    EventType.SEARCH: EventCategory.ENGAGEMENT,
    EventType.PERFORMANCE: EventCategory.ENGAGEMENT,
    EventType.ERROR: EventCategory.ERROR,
    EventType.USER_SIGNUP: EventCategory.BUSINESS,
    EventType.CHECKOUT_COMPLETED: EventCategory.BUSINESS,
    EventType.USER_UPGRADED: EventCategory.BUSINESS,
    EventType.USER_DOWNGRADED: EventCategory.BUSINESS,
    EventType.SUBSCRIPTION_CANCELLED: EventCategory.BUSINESS,
    EventType.SUBSCRIPTION_REACTIVATED: EventCategory.BUSINESS,
    EventType.MEMBER_INVITED: EventCategory.ENGAGEMENT,
    EventType.MEMBER_REMOVED: EventCategory.ENGAGEMENT,
    EventType.ROLE_UPDATED: EventCategory.ENGAGEMENT,
    EventType.PROJECT_SHARED: EventCategory.ENGAGEMENT,
    EventType.PROJECT_UNSHARED: EventCategory.ENGAGEMENT,
    EventType.PROJECT_ARCHIVED: EventCategory.ENGAGEMENT,
    EventType.PROJECT_UNARCHIVED: EventCategory.ENGAGEMENT,
}

# Never expire and never compacted
CRITICAL_EVENT_TYPES: frozenset[EventType] = frozenset(
    {
        EventType.MEMBER_INVITED,
        EventType.MEMBER_REMOVED,
        EventType.ROLE_UPDATED,
        EventType.PROJECT_SHARED,
        EventType.PROJECT_UNSHARED,
        EventType.PROJECT_ARCHIVED,
        EventType.PROJECT_UNARCHIVED,
    }
)

# Revenue-bearing events; their payload must carry a monetary value
CONVERSION_EVENT_TYPES: frozenset[EventType] = frozenset(
    {
        EventType.CHECKOUT_COMPLETED,
        EventType.USER_UPGRADED,
        EventType.SUBSCRIPTION_REACTIVATED,
    }
)


# ==============================================================================
# Event Payloads
# ==============================================================================

Scalar = str | int | float | bool | None


class EventPayload(BaseModel):
    """
    Base payload shared by every event type.

    `metadata` is the bounded escape hatch for free-form client telemetry;
    fields a payload model does not declare are folded into it during
    sanitization.
    """

    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)

    project_id: str | None = None
    duration: float | None = Field(default=None, ge=0, description="Seconds")
    metadata: dict[str, Scalar] = Field(default_factory=dict)


class SessionPayload(EventPayload):
    session_id: str | None = None
    raw_duration: float | None = Field(default=None, ge=0)
    current_project_time: float | None = Field(default=None, ge=0)


class ProjectPayload(EventPayload):
    project_name: str | None = None
    endpoint: str | None = None
    method: str | None = None


class FieldEditPayload(EventPayload):
    field_name: str | None = None
    field_type: str | None = None
    old_value: Scalar = None
    new_value: Scalar = None


class NavigationPayload(EventPayload):
    page_name: str | None = None
    navigation_source: str | None = None
    navigation_target: str | None = None


class FeaturePayload(EventPayload):
    feature_name: str | None = None
    component_name: str | None = None
    action_name: str | None = None
    interaction_type: str | None = None
    element_id: str | None = None


class SearchPayload(EventPayload):
    search_term: str | None = None
    search_results_count: int | None = Field(default=None, ge=0)


class ErrorPayload(EventPayload):
    error_type: str | None = None
    error_message: str | None = None


class PerformancePayload(EventPayload):
    metric_name: str | None = None
    metric_value: float | None = None


class ConversionPayload(EventPayload):
    value: float = Field(..., ge=0, description="Monetary value of the conversion")
    currency: str = "usd"
    plan: str | None = None


class SubscriptionPayload(EventPayload):
    from_tier: str | None = None
    to_tier: str | None = None
    reason: str | None = None


class AuditPayload(EventPayload):
    target_user_id: str | None = None
    role: str | None = None


PAYLOAD_MODELS: dict[EventType, type[EventPayload]] = {
    EventType.SESSION_START: SessionPayload,
    EventType.SESSION_END: SessionPayload,
    EventType.PAGE_VIEW: NavigationPayload,
    EventType.NAVIGATION: NavigationPayload,
    EventType.PROJECT_OPEN: ProjectPayload,
    EventType.FIELD_EDIT: FieldEditPayload,
    EventType.FEATURE_USED: FeaturePayload,
    EventType.ACTION: FeaturePayload,
    EventType.UI_INTERACTION: FeaturePayload,
    EventType.SEARCH: SearchPayload,
    EventType.PERFORMANCE: PerformancePayload,
    EventType.ERROR: ErrorPayload,
    EventType.USER_SIGNUP: EventPayload,
    EventType.CHECKOUT_COMPLETED: ConversionPayload,
    EventType.USER_UPGRADED: ConversionPayload,
    EventType.USER_DOWNGRADED: SubscriptionPayload,
    EventType.SUBSCRIPTION_CANCELLED: SubscriptionPayload,
    EventType.SUBSCRIPTION_REACTIVATED: ConversionPayload,
    EventType.MEMBER_INVITED: AuditPayload,
    EventType.MEMBER_REMOVED: AuditPayload,
    EventType.ROLE_UPDATED: AuditPayload,
    EventType.PROJECT_SHARED: AuditPayload,
    EventType.PROJECT_UNSHARED: AuditPayload,
    EventType.PROJECT_ARCHIVED: AuditPayload,
    EventType.PROJECT_UNARCHIVED: AuditPayload,
}


# ==============================================================================
# Stored Records
# ==============================================================================


def _new_id() -> str:
    return uuid4().hex


class RawEvent(BaseModel):
    """
    One stored behavioral occurrence.

    Frozen: category and plan tier are snapshots taken at recording time and
    never change afterwards.

    Attributes:
        event_id: Unique identifier of the stored event
        user_id: Owning user
        session_id: Session the event was recorded in, if any
        event_type: Type of the event
        category: Category derived from the event type
        payload: Sanitized payload (validated against PAYLOAD_MODELS)
        project_id: Project the event refers to, lifted out of the payload
        duration: Duration in seconds carried by the payload, if any
        timestamp: When the event was recorded (UTC)
        plan_tier: Owner's plan tier at recording time
        is_conversion: True for revenue-bearing events
        conversion_value: Monetary value for conversions
        expires_at: Expiration instant, or None when retention-exempt
    """

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=_new_id)
    user_id: str
    session_id: str | None = None
    event_type: EventType
    category: EventCategory
    payload: dict[str, Any] = Field(default_factory=dict)
    project_id: str | None = None
    duration: float | None = None
    timestamp: datetime
    plan_tier: PlanTier
    is_conversion: bool = False
    conversion_value: float | None = None
    expires_at: datetime | None = None
    user_agent: str | None = None
    ip_address: str | None = None

    @property
    def is_critical(self) -> bool:
        return self.event_type in CRITICAL_EVENT_TYPES

    def typed_payload(self) -> EventPayload:
        """Re-validate the stored payload into its event-type specific model."""
        return PAYLOAD_MODELS[self.event_type].model_validate(self.payload)


class ProjectTime(BaseModel):
    """Per-project entry of a session's time ledger."""

    project_id: str
    active_seconds: float = 0.0
    last_switch_time: datetime


class SessionState(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"


class Session(BaseModel):
    """
    One continuous presence window for a user.

    The session id is the opaque token handed to clients. `heartbeats` is kept
    in non-decreasing order; `project_time` holds at most one entry per project.
    """

    session_id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    start_time: datetime
    end_time: datetime | None = None
    last_activity: datetime
    heartbeats: list[datetime] = Field(default_factory=list)

    is_active: bool = True
    is_visible: bool = True

    current_project_id: str | None = None
    current_project_since: datetime | None = None
    current_page: str | None = None
    projects_viewed: list[str] = Field(default_factory=list)
    pages_visited: list[str] = Field(default_factory=list)
    project_time: list[ProjectTime] = Field(default_factory=list)

    duration_seconds: float | None = None
    raw_duration_seconds: float | None = None

    user_agent: str | None = None
    ip_address: str | None = None

    @property
    def state(self) -> SessionState:
        return SessionState.ACTIVE if self.is_active else SessionState.ENDED

    def ledger_entry(self, project_id: str) -> ProjectTime | None:
        """Return the ledger entry for a project, if one exists."""
        for entry in self.project_time:
            if entry.project_id == project_id:
                return entry
        return None


class Heartbeat(BaseModel):
    """A client presence ping."""

    at: datetime | None = None
    is_visible: bool | None = None
    current_project_id: str | None = None
    current_page: str | None = None


class CompactedAggregate(BaseModel):
    """
    One daily rollup bucket keyed by (day, user_id, event_type, project_id).

    Durations are in seconds.
    """

    day: date
    user_id: str
    event_type: EventType
    project_id: str | None = None
    category: EventCategory
    count: int = Field(..., ge=0)
    total_duration: float = 0.0
    avg_duration: float = 0.0
    unique_sessions: int = 0
    total_conversion_value: float = 0.0
    conversion_count: int = 0
    plan_tier: PlanTier
    first_event: datetime
    last_event: datetime
    expires_at: datetime | None = None

    @property
    def key(self) -> tuple[date, str, EventType, str | None]:
        return (self.day, self.user_id, self.event_type, self.project_id)

    @property
    def day_start(self) -> datetime:
        return datetime.combine(self.day, time.min, tzinfo=timezone.utc)


# ==============================================================================
# Query Models
# ==============================================================================


class QueryFilters(BaseModel):
    """
    Filters accepted by every read operation.

    `start_date` and `end_date` are inclusive. Either may be omitted to leave
    that side of the range open.
    """

    user_id: str | None = None
    project_id: str | None = None
    event_type: EventType | None = None
    category: EventCategory | None = None
    plan_tier: PlanTier | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None

    def matches(self, record: "RawEvent | CompactedAggregate") -> bool:
        """Check the non-temporal filters against a raw event or aggregate."""
        if self.user_id is not None and record.user_id != self.user_id:
            return False
        if self.project_id is not None and record.project_id != self.project_id:
            return False
        if self.event_type is not None and record.event_type != self.event_type:
            return False
        if self.category is not None and record.category != self.category:
            return False
        if self.plan_tier is not None and record.plan_tier != self.plan_tier:
            return False
        return True


class MergedEvent(BaseModel):
    """An entry of a merged listing: a raw event or a compacted bucket."""

    timestamp: datetime
    event_type: EventType
    category: EventCategory
    user_id: str
    project_id: str | None = None
    count: int = 1
    is_compacted: bool = False
    duration: float | None = None
    conversion_value: float | None = None


class ConversionTotals(BaseModel):
    """Conversion count and revenue read from one store."""

    count: int = 0
    revenue: float = 0.0

    def __add__(self, other: "ConversionTotals") -> "ConversionTotals":
        return ConversionTotals(count=self.count + other.count, revenue=self.revenue + other.revenue)


class ConversionMetrics(BaseModel):
    total_conversions: int
    total_revenue: float
    unique_users: int
    conversion_rate: float


class UserAnalyticsSummary(BaseModel):
    user_id: str
    plan_tier: PlanTier
    total_events: int
    events_by_type: dict[str, int]
    retention: str
    daily_events_remaining: int | None = None


class ProjectTimeSummary(BaseModel):
    project_id: str
    total_seconds: float
    sessions: int
    last_used: datetime | None = None


class StoreStats(BaseModel):
    """Row count and oldest timestamp of a store."""

    rows: int = 0
    oldest: datetime | None = None
