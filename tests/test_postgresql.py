# ==============================================================================
# Tests for PostgreSQL Repositories
# ==============================================================================
"""
Unit tests for the PostgreSQL repositories with a mocked psycopg2 connection.

Tests cover:
- Connection lifecycle (connect, not connected, close)
- Commit on success, rollback and propagation on statement errors
- WHERE clause builders for raw and day windows
- Row mapping for events, aggregates and sessions
- Aggregate upsert and raw retirement sharing one transaction
- check_postgresql_connection()
"""

from datetime import UTC, date, datetime
from unittest.mock import MagicMock

import psycopg2
import pytest
from psycopg2.extras import Json

from pulse.base.repositories import DayWindow, RawWindow
from pulse.core.exceptions import StorageNotConnectedError
from pulse.core.models import (
    CompactedAggregate,
    EventCategory,
    EventType,
    PlanTier,
    ProjectTime,
    QueryFilters,
    RawEvent,
    Session,
)
from pulse.infrastructure.repositories import postgresql
from pulse.infrastructure.repositories.postgresql import (
    NO_PROJECT,
    PostgreSQLAggregateRepository,
    PostgreSQLEventRepository,
    PostgreSQLSessionRepository,
    _add_connect_timeout,
    _aggregate_from_row,
    _aggregate_row,
    _day_where,
    _event_from_row,
    _event_row,
    _raw_where,
    _session_from_row,
    _session_row,
    check_postgresql_connection,
)
from pulse.utils.config import PostgresSettings, Settings

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=UTC)


@pytest.fixture()
def settings():
    return Settings(postgres=PostgresSettings(schema_name="analytics"))


@pytest.fixture()
def cursor():
    return MagicMock()


@pytest.fixture()
def connection(cursor, monkeypatch):
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    connect = MagicMock(return_value=conn)
    monkeypatch.setattr(postgresql.psycopg2, "connect", connect)
    return conn


def make_event(**overrides) -> RawEvent:
    fields = {
        "event_id": "e1",
        "user_id": "u1",
        "event_type": EventType.PAGE_VIEW,
        "category": EventCategory.ENGAGEMENT,
        "payload": {"page_name": "home"},
        "timestamp": NOW,
        "plan_tier": PlanTier.FREE,
    }
    fields.update(overrides)
    return RawEvent(**fields)


def make_aggregate() -> CompactedAggregate:
    return CompactedAggregate(
        day=date(2024, 3, 1),
        user_id="u1",
        event_type=EventType.PAGE_VIEW,
        category=EventCategory.ENGAGEMENT,
        count=2,
        plan_tier=PlanTier.FREE,
        first_event=NOW,
        last_event=NOW,
    )


# ==============================================================================
# Connection Handling
# ==============================================================================


class TestConnection:
    def test_operations_require_connect(self, settings):
        repo = PostgreSQLEventRepository(settings)
        with pytest.raises(StorageNotConnectedError, match="PostgreSQLEventRepository"):
            repo.count(QueryFilters(), RawWindow())

    def test_connect_adds_timeout(self, settings, connection):
        repo = PostgreSQLEventRepository(settings)
        repo.connect()
        conn_string = postgresql.psycopg2.connect.call_args.args[0]
        assert "connect_timeout=10" in conn_string
        assert repo.schema == "analytics"

    def test_close_releases_connection(self, settings, connection):
        repo = PostgreSQLEventRepository(settings)
        repo.connect()
        repo.close()
        connection.close.assert_called_once()
        with pytest.raises(StorageNotConnectedError):
            repo.stats()

    def test_success_commits(self, settings, connection, cursor):
        cursor.fetchone.return_value = {"n": 4}
        repo = PostgreSQLEventRepository(settings)
        repo.connect()

        assert repo.count(QueryFilters(user_id="u1"), RawWindow()) == 4
        connection.commit.assert_called_once()
        sql, params = cursor.execute.call_args.args
        assert "analytics.events" in sql
        assert params == {"user_id": "u1"}

    def test_statement_error_rolls_back_and_propagates(self, settings, connection, cursor):
        cursor.execute.side_effect = psycopg2.ProgrammingError("syntax error")
        repo = PostgreSQLEventRepository(settings)
        repo.connect()

        with pytest.raises(psycopg2.ProgrammingError):
            repo.save(make_event())
        connection.rollback.assert_called_once()
        connection.commit.assert_not_called()

    def test_reconnect_replaces_connection(self, settings, connection):
        repo = PostgreSQLEventRepository(settings)
        repo.connect()
        repo.reconnect()
        connection.close.assert_called_once()
        assert postgresql.psycopg2.connect.call_count == 2


class TestConnectTimeout:
    def test_appended_with_question_mark(self):
        assert _add_connect_timeout("postgresql://h/db") == "postgresql://h/db?connect_timeout=10"

    def test_appended_with_ampersand(self):
        assert _add_connect_timeout("postgresql://h/db?sslmode=prefer").endswith(
            "&connect_timeout=10"
        )

    def test_existing_timeout_is_kept(self):
        conn_string = "postgresql://h/db?connect_timeout=3"
        assert _add_connect_timeout(conn_string) == conn_string


# ==============================================================================
# WHERE Clauses
# ==============================================================================


class TestWhereClauses:
    def test_no_filters(self):
        assert _raw_where(QueryFilters(), RawWindow()) == ("TRUE", {})
        assert _day_where(QueryFilters(), DayWindow()) == ("TRUE", {})

    def test_raw_window_uses_event_time(self):
        where, params = _raw_where(
            QueryFilters(event_type=EventType.SEARCH, plan_tier=PlanTier.PRO),
            RawWindow(start=NOW, end=NOW),
        )
        assert where == (
            "event_type = %(event_type)s AND plan_tier = %(plan_tier)s"
            " AND event_time >= %(window_start)s AND event_time <= %(window_end)s"
        )
        assert params["event_type"] == "search"
        assert params["plan_tier"] == "pro"

    def test_day_window(self):
        where, params = _day_where(
            QueryFilters(category=EventCategory.BUSINESS),
            DayWindow(first_day=date(2024, 3, 1), last_day=date(2024, 3, 2)),
        )
        assert where == "category = %(category)s AND day >= %(first_day)s AND day <= %(last_day)s"
        assert params == {
            "category": "business",
            "first_day": date(2024, 3, 1),
            "last_day": date(2024, 3, 2),
        }

    def test_day_window_with_activity_span(self):
        earliest = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)
        where, params = _day_where(
            QueryFilters(), DayWindow(first_day=date(2024, 3, 1), earliest=earliest, latest=NOW)
        )
        assert where == "day >= %(first_day)s AND first_event >= %(earliest)s AND last_event <= %(latest)s"
        assert params["earliest"] == earliest
        assert params["latest"] == NOW


# ==============================================================================
# Row Mapping
# ==============================================================================


class TestEventRows:
    def test_round_trip(self):
        event = make_event(project_id="p1", session_id="s1", expires_at=NOW)
        row = _event_row(event)
        assert row["event_time"] == NOW
        assert row["event_type"] == "page_view"
        assert isinstance(row["payload"], Json)

        row["payload"] = row["payload"].adapted
        assert _event_from_row(row) == event

    def test_null_payload_becomes_empty(self):
        row = _event_row(make_event())
        row["payload"] = None
        assert _event_from_row(row).payload == {}


class TestAggregateRows:
    def test_missing_project_is_stored_as_sentinel(self):
        aggregate = CompactedAggregate(
            day=date(2024, 3, 1),
            user_id="u1",
            event_type=EventType.PAGE_VIEW,
            category=EventCategory.ENGAGEMENT,
            count=2,
            plan_tier=PlanTier.FREE,
            first_event=NOW,
            last_event=NOW,
        )
        row = _aggregate_row(aggregate)
        assert row["project_id"] == NO_PROJECT
        assert row["event_type"] == "page_view"
        assert _aggregate_from_row(row) == aggregate

    def test_replace_group_is_one_transaction(self, settings, connection, cursor):
        cursor.rowcount = 2
        repo = PostgreSQLAggregateRepository(settings)
        repo.connect()
        aggregate = make_aggregate()

        assert repo.replace_group(aggregate, ["a", "b"]) == 2
        upsert, delete = [c.args for c in cursor.execute.call_args_list]
        assert "INSERT INTO analytics.compacted_aggregates" in upsert[0]
        assert "DELETE FROM analytics.events" in delete[0]
        assert delete[1] == {"ids": ["a", "b"]}
        connection.commit.assert_called_once()

    def test_failed_retirement_rolls_back_the_upsert(self, settings, connection, cursor):
        cursor.execute.side_effect = [None, psycopg2.ProgrammingError("permission denied for table events")]
        repo = PostgreSQLAggregateRepository(settings)
        repo.connect()
        aggregate = make_aggregate()

        with pytest.raises(psycopg2.ProgrammingError):
            repo.replace_group(aggregate, ["a", "b"])
        connection.rollback.assert_called_once()
        connection.commit.assert_not_called()

    def test_upsert_empty_list_skips_database(self, settings):
        repo = PostgreSQLAggregateRepository(settings)
        assert repo.upsert([]) == 0

    def test_count_sums_bucket_counts(self, settings, connection, cursor):
        cursor.fetchone.return_value = {"n": 12}
        repo = PostgreSQLAggregateRepository(settings)
        repo.connect()
        assert repo.count(QueryFilters(), DayWindow(last_day=date(2024, 3, 2))) == 12
        sql = cursor.execute.call_args.args[0]
        assert "SUM(count)" in sql
        assert "analytics.compacted_aggregates" in sql


class TestSessionRows:
    def test_round_trip(self):
        session = Session(
            session_id="s1",
            user_id="u1",
            start_time=NOW,
            last_activity=NOW,
            heartbeats=[NOW],
            projects_viewed=["p1"],
            project_time=[ProjectTime(project_id="p1", active_seconds=30, last_switch_time=NOW)],
        )
        row = _session_row(session)
        assert isinstance(row["project_time"], Json)

        row["project_time"] = row["project_time"].adapted
        assert _session_from_row(row) == session

    def test_get_missing_session(self, settings, connection, cursor):
        cursor.fetchone.return_value = None
        repo = PostgreSQLSessionRepository(settings)
        repo.connect()
        assert repo.get("missing") is None


class TestEventRepository:
    def test_delete_nothing_skips_database(self, settings):
        repo = PostgreSQLEventRepository(settings)
        assert repo.delete([]) == 0

    def test_delete_returns_rowcount(self, settings, connection, cursor):
        cursor.rowcount = 3
        repo = PostgreSQLEventRepository(settings)
        repo.connect()
        assert repo.delete(["a", "b", "c"]) == 3
        assert cursor.execute.call_args.args[1] == {"ids": ["a", "b", "c"]}

    def test_compactable_days_exclude_audit_events(self, settings, connection, cursor):
        cursor.fetchall.return_value = [{"day": date(2024, 3, 1)}]
        repo = PostgreSQLEventRepository(settings)
        repo.connect()
        assert repo.compactable_days(NOW) == [date(2024, 3, 1)]
        params = cursor.execute.call_args.args[1]
        assert "shared_project" in params["critical"]
        assert "page_view" not in params["critical"]


# ==============================================================================
# Connection Check
# ==============================================================================


class TestCheckConnection:
    def test_reachable(self, settings, connection):
        assert check_postgresql_connection(settings) is True
        connection.close.assert_called_once()

    def test_unreachable(self, settings, monkeypatch):
        monkeypatch.setattr(
            postgresql.psycopg2,
            "connect",
            MagicMock(side_effect=psycopg2.OperationalError("refused")),
        )
        assert check_postgresql_connection(settings) is False
