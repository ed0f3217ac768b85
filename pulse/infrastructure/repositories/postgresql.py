# ==============================================================================
# PostgreSQL Repository Implementations
# ==============================================================================
"""
PostgreSQL implementations of the repository interfaces.

Provides:
- PostgreSQLEventRepository: Raw events, filtered reads and retirement
- PostgreSQLAggregateRepository: Upserted daily aggregates
- PostgreSQLSessionRepository: Upserted session records

Every public operation runs in its own transaction. Transient connection
errors trigger a reconnect and a light retry; any other error rolls the
transaction back and propagates.
"""

import logging
from collections.abc import Callable
from datetime import date, datetime
from typing import Any, TypeVar

import psycopg2
from psycopg2.extras import Json, RealDictCursor, execute_batch

from pulse.base.repositories import (
    AggregateRepository,
    DayWindow,
    EventRepository,
    RawWindow,
    SessionRepository,
)
from pulse.core.exceptions import StorageNotConnectedError
from pulse.core.models import (
    CRITICAL_EVENT_TYPES,
    CompactedAggregate,
    ConversionTotals,
    ProjectTime,
    QueryFilters,
    RawEvent,
    Session,
    StoreStats,
)
from pulse.utils.clock import day_bounds
from pulse.utils.config import Settings, get_settings
from pulse.utils.retry import POSTGRES_RETRY_EXCEPTIONS, retry_light

logger = logging.getLogger(__name__)

# Batch size for execute_batch
PAGE_SIZE = 1000

# Connection timeout
CONNECT_TIMEOUT = 10

# Aggregate key column value for events without a project
NO_PROJECT = ""

CRITICAL_TYPE_VALUES = sorted(t.value for t in CRITICAL_EVENT_TYPES)

T = TypeVar("T")


def _add_connect_timeout(conn_string: str) -> str:
    """Add connect_timeout to connection string if not present."""
    if "connect_timeout" not in conn_string:
        separator = "&" if "?" in conn_string else "?"
        return f"{conn_string}{separator}connect_timeout={CONNECT_TIMEOUT}"
    return conn_string


def _filter_clauses(filters: QueryFilters) -> tuple[list[str], dict]:
    """
    Build WHERE clauses for the non-temporal filters.

    Returns:
        (clauses, params) to be joined with AND
    """
    clauses: list[str] = []
    params: dict[str, Any] = {}
    if filters.user_id is not None:
        clauses.append("user_id = %(user_id)s")
        params["user_id"] = filters.user_id
    if filters.project_id is not None:
        clauses.append("project_id = %(project_id)s")
        params["project_id"] = filters.project_id
    if filters.event_type is not None:
        clauses.append("event_type = %(event_type)s")
        params["event_type"] = filters.event_type.value
    if filters.category is not None:
        clauses.append("category = %(category)s")
        params["category"] = filters.category.value
    if filters.plan_tier is not None:
        clauses.append("plan_tier = %(plan_tier)s")
        params["plan_tier"] = filters.plan_tier.value
    return clauses, params


def _raw_where(filters: QueryFilters, window: RawWindow) -> tuple[str, dict]:
    clauses, params = _filter_clauses(filters)
    if window.start is not None:
        clauses.append("event_time >= %(window_start)s")
        params["window_start"] = window.start
    if window.end is not None:
        clauses.append("event_time <= %(window_end)s")
        params["window_end"] = window.end
    return " AND ".join(clauses) or "TRUE", params


def _day_where(filters: QueryFilters, window: DayWindow) -> tuple[str, dict]:
    clauses, params = _filter_clauses(filters)
    if window.first_day is not None:
        clauses.append("day >= %(first_day)s")
        params["first_day"] = window.first_day
    if window.last_day is not None:
        clauses.append("day <= %(last_day)s")
        params["last_day"] = window.last_day
    if window.earliest is not None:
        clauses.append("first_event >= %(earliest)s")
        params["earliest"] = window.earliest
    if window.latest is not None:
        clauses.append("last_event <= %(latest)s")
        params["latest"] = window.latest
    return " AND ".join(clauses) or "TRUE", params


class _PostgreSQLStore:
    """
    Connection handling shared by the PostgreSQL repositories.

    Subclasses run their SQL through _run(), which commits on success, rolls
    back on failure and reconnects on transient connection errors.
    """

    def __init__(self, settings: Settings | None = None):
        """
        Initialize the repository.

        Args:
            settings: Application settings. If None, uses get_settings().
        """
        self._settings = settings or get_settings()
        self._conn: psycopg2.extensions.connection | None = None
        self._schema = self._settings.postgres.schema_name
        self._needs_reconnect = False

    @property
    def schema(self) -> str:
        """Get the database schema name."""
        return self._schema

    def connect(self) -> None:
        """Establish connection to PostgreSQL."""
        conn_string = _add_connect_timeout(self._settings.postgres.connection_string)
        self._conn = psycopg2.connect(conn_string)
        self._needs_reconnect = False
        logger.info("%s connected (schema=%s)", type(self).__name__, self._schema)

    def rollback(self) -> None:
        """Rollback current transaction."""
        if self._conn:
            try:
                self._conn.rollback()
            except psycopg2.Error as e:
                logger.warning("Rollback failed: %s", e)

    def reconnect(self) -> None:
        """Attempt to reconnect to the database."""
        if self._conn:
            try:
                self._conn.close()
            except psycopg2.Error as e:
                logger.debug("Error closing stale connection: %s", e)
        self._conn = None
        self._needs_reconnect = True
        self.connect()
        logger.info("%s reconnected", type(self).__name__)

    def close(self) -> None:
        """Close connection and release resources."""
        if self._conn:
            try:
                self._conn.close()
                logger.info("%s connection closed", type(self).__name__)
            except psycopg2.Error as e:
                logger.warning("Error closing connection: %s", e)
            finally:
                self._conn = None

    def _run(self, work: Callable[[Any], T]) -> T:
        """Run `work(cursor)` in one committed transaction."""
        if self._conn is None and not self._needs_reconnect:
            raise StorageNotConnectedError(type(self).__name__)

        @retry_light(POSTGRES_RETRY_EXCEPTIONS, logger)
        def attempt() -> T:
            if self._needs_reconnect:
                self.reconnect()
            try:
                with self._conn.cursor(cursor_factory=RealDictCursor) as cur:
                    result = work(cur)
                self._conn.commit()
                return result
            except POSTGRES_RETRY_EXCEPTIONS:
                self._needs_reconnect = True
                raise
            except Exception:
                self.rollback()
                raise

        return attempt()


# ==============================================================================
# Raw Events
# ==============================================================================


def _event_row(event: RawEvent) -> dict:
    return {
        "event_id": event.event_id,
        "user_id": event.user_id,
        "session_id": event.session_id,
        "event_type": event.event_type.value,
        "category": event.category.value,
        "payload": Json(event.payload),
        "project_id": event.project_id,
        "duration": event.duration,
        "event_time": event.timestamp,
        "plan_tier": event.plan_tier.value,
        "is_conversion": event.is_conversion,
        "conversion_value": event.conversion_value,
        "expires_at": event.expires_at,
        "user_agent": event.user_agent,
        "ip_address": event.ip_address,
    }


def _event_from_row(row: dict) -> RawEvent:
    return RawEvent(
        event_id=row["event_id"],
        user_id=row["user_id"],
        session_id=row["session_id"],
        event_type=row["event_type"],
        category=row["category"],
        payload=row["payload"] or {},
        project_id=row["project_id"],
        duration=row["duration"],
        timestamp=row["event_time"],
        plan_tier=row["plan_tier"],
        is_conversion=row["is_conversion"],
        conversion_value=row["conversion_value"],
        expires_at=row["expires_at"],
        user_agent=row["user_agent"],
        ip_address=row["ip_address"],
    )


class PostgreSQLEventRepository(_PostgreSQLStore, EventRepository):
    """
    PostgreSQL implementation of EventRepository.

    Events are inserted with ON CONFLICT (event_id) DO NOTHING, so a retried
    save never duplicates an event.
    """

    def save(self, event: RawEvent) -> None:
        def work(cur) -> None:
            cur.execute(
                f"""
                INSERT INTO {self._schema}.events (
                    event_id, user_id, session_id, event_type, category, payload,
                    project_id, duration, event_time, plan_tier, is_conversion,
                    conversion_value, expires_at, user_agent, ip_address
                ) VALUES (
                    %(event_id)s, %(user_id)s, %(session_id)s, %(event_type)s, %(category)s,
                    %(payload)s, %(project_id)s, %(duration)s, %(event_time)s, %(plan_tier)s,
                    %(is_conversion)s, %(conversion_value)s, %(expires_at)s, %(user_agent)s,
                    %(ip_address)s
                )
                ON CONFLICT (event_id) DO NOTHING
                """,
                _event_row(event),
            )

        self._run(work)

    def find(self, filters: QueryFilters, window: RawWindow) -> list[RawEvent]:
        where, params = _raw_where(filters, window)

        def work(cur) -> list[RawEvent]:
            cur.execute(
                f"SELECT * FROM {self._schema}.events WHERE {where} ORDER BY event_time, event_id",
                params,
            )
            return [_event_from_row(row) for row in cur.fetchall()]

        return self._run(work)

    def count(self, filters: QueryFilters, window: RawWindow) -> int:
        where, params = _raw_where(filters, window)

        def work(cur) -> int:
            cur.execute(f"SELECT COUNT(*) AS n FROM {self._schema}.events WHERE {where}", params)
            return cur.fetchone()["n"]

        return self._run(work)

    def count_by_type(self, filters: QueryFilters, window: RawWindow) -> dict[str, int]:
        where, params = _raw_where(filters, window)

        def work(cur) -> dict[str, int]:
            cur.execute(
                f"""
                SELECT event_type, COUNT(*) AS n
                FROM {self._schema}.events
                WHERE {where}
                GROUP BY event_type
                """,
                params,
            )
            return {row["event_type"]: row["n"] for row in cur.fetchall()}

        return self._run(work)

    def distinct_users(self, filters: QueryFilters, window: RawWindow) -> set[str]:
        where, params = _raw_where(filters, window)

        def work(cur) -> set[str]:
            cur.execute(f"SELECT DISTINCT user_id FROM {self._schema}.events WHERE {where}", params)
            return {row["user_id"] for row in cur.fetchall()}

        return self._run(work)

    def conversion_totals(self, filters: QueryFilters, window: RawWindow) -> ConversionTotals:
        where, params = _raw_where(filters, window)

        def work(cur) -> ConversionTotals:
            cur.execute(
                f"""
                SELECT COUNT(*) AS n, COALESCE(SUM(conversion_value), 0) AS revenue
                FROM {self._schema}.events
                WHERE {where} AND is_conversion
                """,
                params,
            )
            row = cur.fetchone()
            return ConversionTotals(count=row["n"], revenue=float(row["revenue"]))

        return self._run(work)

    def find_compactable(self, start: datetime, end: datetime) -> list[RawEvent]:
        def work(cur) -> list[RawEvent]:
            cur.execute(
                f"""
                SELECT * FROM {self._schema}.events
                WHERE event_time >= %(start)s AND event_time < %(end)s
                  AND NOT (event_type = ANY(%(critical)s))
                ORDER BY event_time, event_id
                """,
                {"start": start, "end": end, "critical": CRITICAL_TYPE_VALUES},
            )
            return [_event_from_row(row) for row in cur.fetchall()]

        return self._run(work)

    def compactable_days(self, before: datetime) -> list[date]:
        def work(cur) -> list[date]:
            cur.execute(
                f"""
                SELECT DISTINCT (event_time AT TIME ZONE 'UTC')::date AS day
                FROM {self._schema}.events
                WHERE event_time < %(before)s AND NOT (event_type = ANY(%(critical)s))
                ORDER BY day
                """,
                {"before": before, "critical": CRITICAL_TYPE_VALUES},
            )
            return [row["day"] for row in cur.fetchall()]

        return self._run(work)

    def delete(self, event_ids: list[str]) -> int:
        if not event_ids:
            return 0

        def work(cur) -> int:
            cur.execute(
                f"DELETE FROM {self._schema}.events WHERE event_id = ANY(%(ids)s)",
                {"ids": list(event_ids)},
            )
            return cur.rowcount

        deleted = self._run(work)
        logger.debug("Deleted %d raw events", deleted)
        return deleted

    def purge_expired(self, now: datetime) -> int:
        def work(cur) -> int:
            cur.execute(
                f"DELETE FROM {self._schema}.events WHERE expires_at IS NOT NULL AND expires_at <= %(now)s",
                {"now": now},
            )
            return cur.rowcount

        return self._run(work)

    def stats(self) -> StoreStats:
        def work(cur) -> StoreStats:
            cur.execute(
                f"SELECT COUNT(*) AS n, MIN(event_time) AS oldest FROM {self._schema}.events"
            )
            row = cur.fetchone()
            return StoreStats(rows=row["n"], oldest=row["oldest"])

        return self._run(work)


# ==============================================================================
# Compacted Aggregates
# ==============================================================================


def _aggregate_row(aggregate: CompactedAggregate) -> dict:
    row = aggregate.model_dump()
    row["event_type"] = aggregate.event_type.value
    row["category"] = aggregate.category.value
    row["plan_tier"] = aggregate.plan_tier.value
    row["project_id"] = aggregate.project_id if aggregate.project_id is not None else NO_PROJECT
    return row


def _aggregate_from_row(row: dict) -> CompactedAggregate:
    data = dict(row)
    if data["project_id"] == NO_PROJECT:
        data["project_id"] = None
    return CompactedAggregate.model_validate(data)


class PostgreSQLAggregateRepository(_PostgreSQLStore, AggregateRepository):
    """
    PostgreSQL implementation of AggregateRepository.

    Uses execute_batch with ON CONFLICT ... DO UPDATE so every measure of an
    existing bucket is replaced by the freshly computed one.
    """

    def _upsert_sql(self) -> str:
        return f"""
                INSERT INTO {self._schema}.compacted_aggregates (
                    day, user_id, event_type, project_id, category, count,
                    total_duration, avg_duration, unique_sessions,
                    total_conversion_value, conversion_count, plan_tier,
                    first_event, last_event, expires_at
                ) VALUES (
                    %(day)s, %(user_id)s, %(event_type)s, %(project_id)s, %(category)s, %(count)s,
                    %(total_duration)s, %(avg_duration)s, %(unique_sessions)s,
                    %(total_conversion_value)s, %(conversion_count)s, %(plan_tier)s,
                    %(first_event)s, %(last_event)s, %(expires_at)s
                )
                ON CONFLICT (day, user_id, event_type, project_id) DO UPDATE SET
                    category = EXCLUDED.category,
                    count = EXCLUDED.count,
                    total_duration = EXCLUDED.total_duration,
                    avg_duration = EXCLUDED.avg_duration,
                    unique_sessions = EXCLUDED.unique_sessions,
                    total_conversion_value = EXCLUDED.total_conversion_value,
                    conversion_count = EXCLUDED.conversion_count,
                    plan_tier = EXCLUDED.plan_tier,
                    first_event = EXCLUDED.first_event,
                    last_event = EXCLUDED.last_event,
                    expires_at = EXCLUDED.expires_at
            """

    def upsert(self, aggregates: list[CompactedAggregate]) -> int:
        if not aggregates:
            return 0
        rows = [_aggregate_row(a) for a in aggregates]

        def work(cur) -> int:
            execute_batch(cur, self._upsert_sql(), rows, page_size=PAGE_SIZE)
            return len(rows)

        upserted = self._run(work)
        logger.debug("Upserted %d aggregates", upserted)
        return upserted

    def replace_group(self, aggregate: CompactedAggregate, event_ids: list[str]) -> int:
        row = _aggregate_row(aggregate)

        def work(cur) -> int:
            cur.execute(self._upsert_sql(), row)
            cur.execute(
                f"DELETE FROM {self._schema}.events WHERE event_id = ANY(%(ids)s)",
                {"ids": list(event_ids)},
            )
            return cur.rowcount

        retired = self._run(work)
        logger.debug("Replaced %d raw events with aggregate %s", retired, aggregate.key)
        return retired

    def find(self, filters: QueryFilters, window: DayWindow) -> list[CompactedAggregate]:
        where, params = _day_where(filters, window)

        def work(cur) -> list[CompactedAggregate]:
            cur.execute(
                f"""
                SELECT * FROM {self._schema}.compacted_aggregates
                WHERE {where}
                ORDER BY day, user_id, event_type, project_id
                """,
                params,
            )
            return [_aggregate_from_row(row) for row in cur.fetchall()]

        return self._run(work)

    def count(self, filters: QueryFilters, window: DayWindow) -> int:
        where, params = _day_where(filters, window)

        def work(cur) -> int:
            cur.execute(
                f"SELECT COALESCE(SUM(count), 0) AS n FROM {self._schema}.compacted_aggregates WHERE {where}",
                params,
            )
            return int(cur.fetchone()["n"])

        return self._run(work)

    def count_by_type(self, filters: QueryFilters, window: DayWindow) -> dict[str, int]:
        where, params = _day_where(filters, window)

        def work(cur) -> dict[str, int]:
            cur.execute(
                f"""
                SELECT event_type, SUM(count) AS n
                FROM {self._schema}.compacted_aggregates
                WHERE {where}
                GROUP BY event_type
                """,
                params,
            )
            return {row["event_type"]: int(row["n"]) for row in cur.fetchall()}

        return self._run(work)

    def distinct_users(self, filters: QueryFilters, window: DayWindow) -> set[str]:
        where, params = _day_where(filters, window)

        def work(cur) -> set[str]:
            cur.execute(
                f"SELECT DISTINCT user_id FROM {self._schema}.compacted_aggregates WHERE {where}",
                params,
            )
            return {row["user_id"] for row in cur.fetchall()}

        return self._run(work)

    def conversion_totals(self, filters: QueryFilters, window: DayWindow) -> ConversionTotals:
        where, params = _day_where(filters, window)

        def work(cur) -> ConversionTotals:
            cur.execute(
                f"""
                SELECT COALESCE(SUM(conversion_count), 0) AS n,
                       COALESCE(SUM(total_conversion_value), 0) AS revenue
                FROM {self._schema}.compacted_aggregates
                WHERE {where}
                """,
                params,
            )
            row = cur.fetchone()
            return ConversionTotals(count=int(row["n"]), revenue=float(row["revenue"]))

        return self._run(work)

    def purge_expired(self, now: datetime) -> int:
        def work(cur) -> int:
            cur.execute(
                f"""
                DELETE FROM {self._schema}.compacted_aggregates
                WHERE expires_at IS NOT NULL AND expires_at <= %(now)s
                """,
                {"now": now},
            )
            return cur.rowcount

        return self._run(work)

    def stats(self) -> StoreStats:
        def work(cur) -> StoreStats:
            cur.execute(
                f"SELECT COUNT(*) AS n, MIN(day) AS oldest FROM {self._schema}.compacted_aggregates"
            )
            row = cur.fetchone()
            oldest = row["oldest"]
            return StoreStats(
                rows=row["n"],
                oldest=day_bounds(oldest)[0] if oldest else None,
            )

        return self._run(work)


# ==============================================================================
# Sessions
# ==============================================================================


def _session_row(session: Session) -> dict:
    row = session.model_dump(exclude={"project_time"})
    row["project_time"] = Json([entry.model_dump(mode="json") for entry in session.project_time])
    return row


def _session_from_row(row: dict) -> Session:
    data = dict(row)
    data["heartbeats"] = list(data.get("heartbeats") or [])
    data["projects_viewed"] = list(data.get("projects_viewed") or [])
    data["pages_visited"] = list(data.get("pages_visited") or [])
    data["project_time"] = [ProjectTime.model_validate(e) for e in data.get("project_time") or []]
    return Session.model_validate(data)


class PostgreSQLSessionRepository(_PostgreSQLStore, SessionRepository):
    """
    PostgreSQL implementation of SessionRepository.

    A session is written as one upsert of the whole record, so concurrent
    readers never see a half-applied heartbeat or switch.
    """

    _COLUMNS = (
        "session_id, user_id, start_time, end_time, last_activity, heartbeats, "
        "is_active, is_visible, current_project_id, current_project_since, current_page, "
        "projects_viewed, pages_visited, project_time, duration_seconds, "
        "raw_duration_seconds, user_agent, ip_address"
    )

    def get(self, session_id: str) -> Session | None:
        def work(cur) -> Session | None:
            cur.execute(
                f"SELECT {self._COLUMNS} FROM {self._schema}.sessions WHERE session_id = %(id)s",
                {"id": session_id},
            )
            row = cur.fetchone()
            return _session_from_row(row) if row else None

        return self._run(work)

    def save(self, session: Session) -> None:
        def work(cur) -> None:
            cur.execute(
                f"""
                INSERT INTO {self._schema}.sessions ({self._COLUMNS})
                VALUES (
                    %(session_id)s, %(user_id)s, %(start_time)s, %(end_time)s,
                    %(last_activity)s, %(heartbeats)s::timestamptz[], %(is_active)s,
                    %(is_visible)s, %(current_project_id)s, %(current_project_since)s,
                    %(current_page)s, %(projects_viewed)s::text[], %(pages_visited)s::text[],
                    %(project_time)s, %(duration_seconds)s, %(raw_duration_seconds)s,
                    %(user_agent)s, %(ip_address)s
                )
                ON CONFLICT (session_id) DO UPDATE SET
                    end_time = EXCLUDED.end_time,
                    last_activity = EXCLUDED.last_activity,
                    heartbeats = EXCLUDED.heartbeats,
                    is_active = EXCLUDED.is_active,
                    is_visible = EXCLUDED.is_visible,
                    current_project_id = EXCLUDED.current_project_id,
                    current_project_since = EXCLUDED.current_project_since,
                    current_page = EXCLUDED.current_page,
                    projects_viewed = EXCLUDED.projects_viewed,
                    pages_visited = EXCLUDED.pages_visited,
                    project_time = EXCLUDED.project_time,
                    duration_seconds = EXCLUDED.duration_seconds,
                    raw_duration_seconds = EXCLUDED.raw_duration_seconds
                """,
                _session_row(session),
            )

        self._run(work)

    def find_active_for_user(self, user_id: str) -> Session | None:
        def work(cur) -> Session | None:
            cur.execute(
                f"""
                SELECT {self._COLUMNS} FROM {self._schema}.sessions
                WHERE user_id = %(user_id)s AND is_active
                ORDER BY last_activity DESC
                LIMIT 1
                """,
                {"user_id": user_id},
            )
            row = cur.fetchone()
            return _session_from_row(row) if row else None

        return self._run(work)

    def find_active(self, idle_before: datetime | None = None) -> list[Session]:
        clause = "AND last_activity < %(idle_before)s" if idle_before is not None else ""

        def work(cur) -> list[Session]:
            cur.execute(
                f"""
                SELECT {self._COLUMNS} FROM {self._schema}.sessions
                WHERE is_active {clause}
                ORDER BY last_activity
                """,
                {"idle_before": idle_before},
            )
            return [_session_from_row(row) for row in cur.fetchall()]

        return self._run(work)

    def find_for_user(self, user_id: str, since: datetime) -> list[Session]:
        def work(cur) -> list[Session]:
            cur.execute(
                f"""
                SELECT {self._COLUMNS} FROM {self._schema}.sessions
                WHERE user_id = %(user_id)s AND start_time >= %(since)s
                ORDER BY start_time
                """,
                {"user_id": user_id, "since": since},
            )
            return [_session_from_row(row) for row in cur.fetchall()]

        return self._run(work)


def check_postgresql_connection(settings: Settings | None = None) -> bool:
    """
    Check if PostgreSQL is reachable.

    Args:
        settings: Application settings. If None, uses get_settings().

    Returns:
        True if connection successful, False otherwise
    """
    try:
        settings = settings or get_settings()
        conn_string = _add_connect_timeout(settings.postgres.connection_string)
        conn = psycopg2.connect(conn_string)
        conn.close()
        return True
    except psycopg2.Error:
        return False
