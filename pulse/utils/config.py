# ==============================================================================
# Application Configuration
# ==============================================================================
"""
Configuration management using pydantic-settings.

All configuration is loaded from environment variables, with support for
.env files via python-dotenv.
"""

from functools import lru_cache
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pulse.core.models import PlanTier

# Load .env file before any settings are instantiated
load_dotenv()


class PostgresSettings(BaseSettings):
    """PostgreSQL connection settings."""

    model_config = SettingsConfigDict(env_prefix="PG_")

    host: str = Field(default="localhost", description="PostgreSQL host")
    port: int = Field(default=5432, description="PostgreSQL port")
    user: str = Field(default="postgres", description="PostgreSQL username")
    password: str = Field(default="postgres", description="PostgreSQL password")
    database: str = Field(default="pulse", description="Database name")
    schema_name: str = Field(default="pulse", description="Schema name")
    sslmode: str = Field(default="prefer", description="SSL mode")

    @property
    def connection_string(self) -> str:
        """Build PostgreSQL connection string."""
        return (
            f"postgresql://{self.user}:{self.password}@"
            f"{self.host}:{self.port}/{self.database}?sslmode={self.sslmode}"
        )


class ValkeySettings(BaseSettings):
    """Valkey (Redis-compatible) settings for ingestion counters, plan cache and notifications."""

    model_config = SettingsConfigDict(env_prefix="VALKEY_")

    enabled: bool = Field(default=False, description="Use Valkey for counters and caching")
    host: str = Field(default="localhost", description="Valkey host")
    port: int = Field(default=6379, description="Valkey port")
    password: Optional[str] = Field(default=None, description="Valkey password")
    db: int = Field(default=0, description="Valkey database number")
    ssl: bool = Field(default=False, description="Use SSL/TLS connection")

    plan_cache_ttl_seconds: int = Field(
        default=300, description="How long a user's plan tier is cached"
    )

    @property
    def url(self) -> str:
        """Build Valkey connection URL."""
        scheme = "rediss" if self.ssl else "redis"
        if self.password:
            return f"{scheme}://:{self.password}@{self.host}:{self.port}/{self.db}"
        return f"{scheme}://{self.host}:{self.port}/{self.db}"


class StorageSettings(BaseSettings):
    """Selects the persistence backend for raw events, aggregates and sessions."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    backend: Literal["postgresql", "memory"] = Field(
        default="postgresql",
        description="Storage backend (postgresql, memory)",
    )


class SessionSettings(BaseSettings):
    """Session tracking settings."""

    model_config = SettingsConfigDict(env_prefix="SESSION_")

    idle_gap_minutes: int = Field(
        default=15,
        description="Gaps between activity points longer than this count as away time",
    )
    resume_window_minutes: int = Field(
        default=15,
        description="A session touched within this window is resumed instead of replaced",
    )
    reap_after_minutes: int = Field(
        default=60,
        description="Active sessions idle for longer than this are force-ended by the reaper",
    )


class IngestionSettings(BaseSettings):
    """Event ingestion limits."""

    model_config = SettingsConfigDict(env_prefix="INGESTION_")

    free_daily_event_limit: int = Field(
        default=1000,
        description="Maximum accepted events per user per UTC day on the free tier",
    )
    max_key_length: int = Field(default=100, description="Payload keys longer than this are dropped")
    max_string_length: int = Field(default=1000, description="Payload strings are cut to this length")
    max_nested_length: int = Field(
        default=500, description="Nested payload values are flattened to JSON of this length"
    )
    max_payload_keys: int = Field(default=50, description="Payload keys beyond this count are dropped")
    throttle_enabled: bool = Field(
        default=True, description="Drop repeats of an identical event inside the throttle window"
    )
    throttle_default_seconds: float = Field(
        default=10.0, description="Base throttle window for event types without their own"
    )
    throttle_project_open_seconds: float = Field(
        default=45.0, description="Base throttle window for project_open events"
    )
    throttle_free_multiplier: float = Field(default=1.0, description="Free tier window multiplier")
    throttle_pro_multiplier: float = Field(default=0.7, description="Pro tier window multiplier")
    throttle_enterprise_multiplier: float = Field(
        default=0.5, description="Enterprise tier window multiplier"
    )

    def throttle_multiplier(self, tier: PlanTier) -> float:
        """Throttle window multiplier for a plan tier."""
        return getattr(self, f"throttle_{tier.value}_multiplier")


class RetentionSettings(BaseSettings):
    """Tiered retention horizons in days. None keeps records forever."""

    # RETENTION_ENTERPRISE_RAW_DAYS=none keeps enterprise raw events forever
    model_config = SettingsConfigDict(env_prefix="RETENTION_", env_parse_none_str="none")

    free_raw_days: Optional[int] = Field(default=30, description="Free tier raw event horizon")
    pro_raw_days: Optional[int] = Field(default=90, description="Pro tier raw event horizon")
    enterprise_raw_days: Optional[int] = Field(
        default=180, description="Enterprise tier raw event horizon"
    )
    free_aggregate_days: Optional[int] = Field(
        default=90, description="Free tier compacted aggregate horizon"
    )
    pro_aggregate_days: Optional[int] = Field(
        default=365, description="Pro tier compacted aggregate horizon"
    )
    enterprise_aggregate_days: Optional[int] = Field(
        default=None, description="Enterprise tier compacted aggregate horizon"
    )

    def raw_days(self, tier: PlanTier) -> int | None:
        """Raw event horizon for a plan tier."""
        return getattr(self, f"{tier.value}_raw_days")

    def aggregate_days(self, tier: PlanTier) -> int | None:
        """Compacted aggregate horizon for a plan tier."""
        return getattr(self, f"{tier.value}_aggregate_days")


class CompactionSettings(BaseSettings):
    """Compaction job settings."""

    model_config = SettingsConfigDict(env_prefix="COMPACTION_")

    settlement_days: int = Field(
        default=7,
        description="Days a UTC day must age before its raw events are rolled up",
    )
    retirement_margin_days: int = Field(
        default=7,
        description="Extra days raw events must outlive the settlement window",
    )


class QuerySettings(BaseSettings):
    """Read path settings."""

    model_config = SettingsConfigDict(env_prefix="QUERY_")

    timeout_seconds: float = Field(
        default=10.0, description="Default time budget for a merged analytics query"
    )


def _longer_or_equal(candidate: int | None, floor: int | None) -> bool:
    """Compare two horizons where None means forever."""
    if candidate is None:
        return True
    if floor is None:
        return False
    return candidate >= floor


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        extra="ignore",
    )

    # Nested settings
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    valkey: ValkeySettings = Field(default_factory=ValkeySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    compaction: CompactionSettings = Field(default_factory=CompactionSettings)
    query: QuerySettings = Field(default_factory=QuerySettings)

    # General settings
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    @model_validator(mode="after")
    def check_retention_ordering(self) -> "Settings":
        """
        Refuse retention horizons that could expire raw events before rollup.

        Raw events must outlive the settlement window plus the retirement
        margin, aggregates must outlive the raw events they summarize, and a
        higher plan tier never retains less than a lower one.
        """
        minimum_raw = self.compaction.settlement_days + self.compaction.retirement_margin_days
        previous: PlanTier | None = None
        for tier in PlanTier.ordered():
            raw = self.retention.raw_days(tier)
            aggregate = self.retention.aggregate_days(tier)
            if not _longer_or_equal(raw, minimum_raw):
                raise ValueError(
                    f"{tier.value} raw retention ({raw} days) must be at least "
                    f"settlement + margin ({minimum_raw} days)"
                )
            if not _longer_or_equal(aggregate, raw):
                raise ValueError(
                    f"{tier.value} aggregate retention ({aggregate} days) must not be "
                    f"shorter than raw retention ({raw} days)"
                )
            if previous is not None:
                if not _longer_or_equal(raw, self.retention.raw_days(previous)) or not (
                    _longer_or_equal(aggregate, self.retention.aggregate_days(previous))
                ):
                    raise ValueError(
                        f"{tier.value} retention must not be shorter than {previous.value}"
                    )
            previous = tier
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and cached for subsequent calls.
    """
    return Settings()
