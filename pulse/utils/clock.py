# ==============================================================================
# Time Helpers
# ==============================================================================
"""
UTC time helpers shared by the engine.

Services take a `Clock` (a zero-argument callable returning an aware UTC
datetime) so tests can freeze and advance time.
"""

from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def start_of_day(moment: datetime) -> datetime:
    """Midnight UTC of the day containing `moment`."""
    return datetime.combine(moment.astimezone(UTC).date(), time.min, tzinfo=UTC)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Half-open UTC interval [day 00:00, day+1 00:00)."""
    start = datetime.combine(day, time.min, tzinfo=UTC)
    return start, start + timedelta(days=1)


def ensure_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)
