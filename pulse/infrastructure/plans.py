# ==============================================================================
# Plan Directory Implementations
# ==============================================================================
"""
Implementations of the PlanDirectory port.

- StaticPlanDirectory: fixed mapping (tests, memory backend, demos)
- PostgreSQLPlanDirectory: reads users.plan_tier
- CachedPlanDirectory: Valkey-backed read-through cache in front of another
  directory, so the write path does not hit the database for every event
"""

import logging
from collections.abc import Mapping

import psycopg2
from psycopg2.extras import RealDictCursor

from pulse.base.cache import Cache
from pulse.base.plans import PlanDirectory
from pulse.core.exceptions import StorageNotConnectedError
from pulse.core.models import PlanTier
from pulse.utils.config import Settings, get_settings
from pulse.utils.retry import POSTGRES_RETRY_EXCEPTIONS, retry_light

logger = logging.getLogger(__name__)

PLAN_CACHE_PREFIX = "pulse:plan:"
DEFAULT_PLAN_CACHE_TTL = 300


def _parse_tier(value: str | None, user_id: str) -> PlanTier:
    if value is None:
        return PlanTier.FREE
    try:
        return PlanTier(value)
    except ValueError:
        logger.warning("Unknown plan tier %r for user %s, treating as free", value, user_id)
        return PlanTier.FREE


class StaticPlanDirectory(PlanDirectory):
    """Plan tiers from an in-process mapping; unknown users are free."""

    def __init__(self, tiers: Mapping[str, PlanTier | str] | None = None):
        self._tiers: dict[str, PlanTier] = {
            user_id: PlanTier(tier) for user_id, tier in (tiers or {}).items()
        }

    def set_tier(self, user_id: str, tier: PlanTier | str) -> None:
        self._tiers[user_id] = PlanTier(tier)

    def current_plan_tier(self, user_id: str) -> PlanTier:
        return self._tiers.get(user_id, PlanTier.FREE)


class PostgreSQLPlanDirectory(PlanDirectory):
    """Reads a user's tier from the `users` table."""

    def __init__(self, settings: Settings | None = None):
        self._settings = settings or get_settings()
        self._schema = self._settings.postgres.schema_name
        self._conn: psycopg2.extensions.connection | None = None

    def connect(self) -> None:
        self._conn = psycopg2.connect(self._settings.postgres.connection_string)
        logger.info("PostgreSQLPlanDirectory connected (schema=%s)", self._schema)

    @retry_light(POSTGRES_RETRY_EXCEPTIONS, logger)
    def current_plan_tier(self, user_id: str) -> PlanTier:
        if self._conn is None:
            raise StorageNotConnectedError("PostgreSQLPlanDirectory")
        with self._conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"SELECT plan_tier FROM {self._schema}.users WHERE user_id = %(user_id)s",
                {"user_id": user_id},
            )
            row = cur.fetchone()
        self._conn.commit()
        return _parse_tier(row["plan_tier"] if row else None, user_id)

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None


class CachedPlanDirectory(PlanDirectory):
    """
    Read-through cache in front of another PlanDirectory.

    Tiers are cached for `ttl_seconds`; a tier change becomes visible after
    the TTL or immediately after invalidate().
    """

    def __init__(self, inner: PlanDirectory, cache: Cache, ttl_seconds: int = DEFAULT_PLAN_CACHE_TTL):
        self._inner = inner
        self._cache = cache
        self._ttl_seconds = ttl_seconds

    def current_plan_tier(self, user_id: str) -> PlanTier:
        key = f"{PLAN_CACHE_PREFIX}{user_id}"
        cached = self._cache.get(key)
        if cached is not None:
            return _parse_tier(cached.get("tier"), user_id)

        tier = self._inner.current_plan_tier(user_id)
        self._cache.set(key, {"tier": tier.value}, ttl_seconds=self._ttl_seconds)
        return tier

    def invalidate(self, user_id: str) -> None:
        self._cache.delete(f"{PLAN_CACHE_PREFIX}{user_id}")
        self._inner.invalidate(user_id)

    def close(self) -> None:
        close_inner = getattr(self._inner, "close", None)
        if close_inner is not None:
            close_inner()
