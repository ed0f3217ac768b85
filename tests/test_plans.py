# ==============================================================================
# Tests for Plan Directories
# ==============================================================================
"""
Unit tests for the plan directory adapters.

Tests cover:
- StaticPlanDirectory defaults and the premium alias
- CachedPlanDirectory read-through, invalidation and close passthrough
- PostgreSQLPlanDirectory lookups with a mocked connection
"""

from unittest.mock import MagicMock

import pytest

from pulse.base.plans import PlanDirectory
from pulse.core.exceptions import StorageNotConnectedError
from pulse.core.models import PlanTier
from pulse.infrastructure import plans as plans_module
from pulse.infrastructure.plans import (
    PLAN_CACHE_PREFIX,
    CachedPlanDirectory,
    PostgreSQLPlanDirectory,
    StaticPlanDirectory,
)
from pulse.utils.config import PostgresSettings, Settings


class TestStaticPlanDirectory:
    def test_unknown_user_is_free(self):
        assert StaticPlanDirectory().current_plan_tier("anyone") is PlanTier.FREE

    def test_premium_is_enterprise(self):
        directory = StaticPlanDirectory({"u1": "premium"})
        assert directory.current_plan_tier("u1") is PlanTier.ENTERPRISE

    def test_set_tier(self):
        directory = StaticPlanDirectory()
        directory.set_tier("u1", "pro")
        assert directory.current_plan_tier("u1") is PlanTier.PRO


class TestCachedPlanDirectory:
    @pytest.fixture()
    def inner(self):
        inner = MagicMock(spec=PlanDirectory)
        inner.current_plan_tier.return_value = PlanTier.PRO
        return inner

    def test_inner_is_read_once(self, inner, fake_cache, fake_redis):
        directory = CachedPlanDirectory(inner, fake_cache, ttl_seconds=60)

        assert directory.current_plan_tier("u1") is PlanTier.PRO
        assert directory.current_plan_tier("u1") is PlanTier.PRO

        inner.current_plan_tier.assert_called_once_with("u1")
        assert fake_cache.get(f"{PLAN_CACHE_PREFIX}u1") == {"tier": "pro"}
        assert fake_redis.ttl(f"{PLAN_CACHE_PREFIX}u1") > 0

    def test_invalidate_forces_a_fresh_read(self, inner, fake_cache):
        directory = CachedPlanDirectory(inner, fake_cache)
        directory.current_plan_tier("u1")
        inner.current_plan_tier.return_value = PlanTier.ENTERPRISE

        directory.invalidate("u1")

        assert directory.current_plan_tier("u1") is PlanTier.ENTERPRISE
        inner.invalidate.assert_called_once_with("u1")

    def test_unknown_cached_tier_is_free(self, inner, fake_cache):
        fake_cache.set(f"{PLAN_CACHE_PREFIX}u1", {"tier": "platinum"})
        directory = CachedPlanDirectory(inner, fake_cache)
        assert directory.current_plan_tier("u1") is PlanTier.FREE
        inner.current_plan_tier.assert_not_called()

    def test_close_closes_inner_directory(self, fake_cache):
        inner = MagicMock()
        CachedPlanDirectory(inner, fake_cache).close()
        inner.close.assert_called_once()

    def test_close_without_inner_close(self, fake_cache):
        CachedPlanDirectory(StaticPlanDirectory(), fake_cache).close()


class TestPostgreSQLPlanDirectory:
    @pytest.fixture()
    def cursor(self):
        return MagicMock()

    @pytest.fixture()
    def directory(self, cursor, monkeypatch):
        conn = MagicMock()
        conn.cursor.return_value.__enter__.return_value = cursor
        monkeypatch.setattr(plans_module.psycopg2, "connect", MagicMock(return_value=conn))
        directory = PostgreSQLPlanDirectory(Settings(postgres=PostgresSettings(schema_name="analytics")))
        directory.connect()
        return directory

    def test_reads_users_table(self, directory, cursor):
        cursor.fetchone.return_value = {"plan_tier": "enterprise"}
        assert directory.current_plan_tier("u1") is PlanTier.ENTERPRISE
        sql, params = cursor.execute.call_args.args
        assert "analytics.users" in sql
        assert params == {"user_id": "u1"}

    def test_missing_user_is_free(self, directory, cursor):
        cursor.fetchone.return_value = None
        assert directory.current_plan_tier("u1") is PlanTier.FREE

    def test_requires_connect(self):
        directory = PostgreSQLPlanDirectory(Settings())
        with pytest.raises(StorageNotConnectedError):
            directory.current_plan_tier("u1")
