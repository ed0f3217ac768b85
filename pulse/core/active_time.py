# ==============================================================================
# Active Time - Pure Domain Logic
# ==============================================================================
"""
Gap-aware active time computation.

Given a window [start, end] and the heartbeats received inside it, the active
time is the sum of the deltas between consecutive points of
[start, h1, ..., hn, end], where any single delta longer than the idle
threshold counts as away-from-keyboard and contributes zero.

- No heartbeats: the active time is simply end - start.
- Dense heartbeats: the active time approaches end - start.
- One long gap: that gap is excluded, so active time < end - start.
"""

from collections.abc import Iterable
from datetime import datetime, timedelta

DEFAULT_IDLE_THRESHOLD = timedelta(minutes=15)


def calculate_active_time(
    start: datetime,
    end: datetime,
    heartbeats: Iterable[datetime] = (),
    idle_threshold: timedelta = DEFAULT_IDLE_THRESHOLD,
) -> timedelta:
    """
    Compute active time for a window.

    Args:
        start: Start of the window
        end: End of the window
        heartbeats: Heartbeat timestamps; ones outside [start, end] are ignored
        idle_threshold: Deltas strictly longer than this are excluded

    Returns:
        Active time (never negative)
    """
    if end <= start:
        return timedelta(0)

    inside = sorted(hb for hb in heartbeats if start <= hb <= end)
    if not inside:
        return end - start

    points = [start, *inside, end]

    active = timedelta(0)
    for previous, current in zip(points, points[1:]):
        delta = current - previous
        if delta <= idle_threshold:
            active += delta
    return active


def split_idle_gaps(
    start: datetime,
    end: datetime,
    heartbeats: Iterable[datetime] = (),
    idle_threshold: timedelta = DEFAULT_IDLE_THRESHOLD,
) -> list[tuple[datetime, datetime]]:
    """Return the excluded (idle) intervals of a window, oldest first."""
    inside = sorted(hb for hb in heartbeats if start <= hb <= end)
    if end <= start or not inside:
        return []
    points = [start, *inside, end]
    return [
        (previous, current)
        for previous, current in zip(points, points[1:])
        if current - previous > idle_threshold
    ]
