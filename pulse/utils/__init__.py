# ==============================================================================
# Pulse Utilities
# ==============================================================================
"""
Shared utilities: settings, clock helpers and retry policies.

Schema management lives in pulse.utils.db and is imported from there
directly, since it pulls in psycopg2 and jinja2.
"""

from pulse.utils.clock import Clock, day_bounds, ensure_utc, start_of_day, utc_now
from pulse.utils.config import (
    CompactionSettings,
    IngestionSettings,
    PostgresSettings,
    QuerySettings,
    RetentionSettings,
    SessionSettings,
    Settings,
    StorageSettings,
    ValkeySettings,
    get_settings,
)

__all__ = [
    # Clock
    "Clock",
    "day_bounds",
    "ensure_utc",
    "start_of_day",
    "utc_now",
    # Config
    "CompactionSettings",
    "IngestionSettings",
    "PostgresSettings",
    "QuerySettings",
    "RetentionSettings",
    "SessionSettings",
    "Settings",
    "StorageSettings",
    "ValkeySettings",
    "get_settings",
]
