# ==============================================================================
# Tests for SessionTracker
# ==============================================================================
"""
Unit tests for the session lifecycle.

Tests cover:
- Start, resume within the window and replacement of stale sessions
- Heartbeats (clamping, pages, project changes)
- Per-project ledger on project switches
- Idempotent end with gap-aware duration
- Reaper and shutdown
- session_start / session_end events and notifications
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from pulse.base.repositories import RawWindow
from pulse.core.models import EventType, Heartbeat, QueryFilters
from pulse.core.results import Outcome
from pulse.core.session_tracker import SESSION_ENDED, SESSION_STARTED, SessionTracker


# ==============================================================================
# Start / Resume
# ==============================================================================


class TestStart:
    def test_start_creates_active_session(self, tracker, clock):
        token = tracker.start("u1", user_agent="agent", ip_address="10.0.0.1")
        session = tracker.get_session(token)
        assert session.is_active
        assert session.user_id == "u1"
        assert session.start_time == clock()
        assert session.last_activity == clock()
        assert session.user_agent == "agent"

    def test_start_within_resume_window_returns_same_session(self, tracker, clock):
        first = tracker.start("u1")
        clock.advance(minutes=10)
        second = tracker.start("u1")
        assert second == first
        assert tracker.get_session(first).last_activity == clock()

    def test_start_after_resume_window_replaces_stale_session(self, tracker, clock):
        started_at = clock()
        first = tracker.start("u1")
        clock.advance(minutes=20)
        second = tracker.start("u1")

        assert second != first
        stale = tracker.get_session(first)
        assert not stale.is_active
        assert stale.end_time == started_at
        assert tracker.get_active_session("u1").session_id == second

    def test_users_get_separate_sessions(self, tracker):
        assert tracker.start("u1") != tracker.start("u2")


# ==============================================================================
# Heartbeats
# ==============================================================================


class TestHeartbeat:
    def test_unknown_session_is_not_found(self, tracker):
        assert tracker.heartbeat("missing").outcome is Outcome.NOT_FOUND

    def test_ended_session_is_skipped(self, tracker):
        token = tracker.start("u1")
        tracker.end(token)
        assert tracker.heartbeat(token).outcome is Outcome.SKIPPED

    def test_heartbeat_refreshes_last_activity(self, tracker, clock):
        token = tracker.start("u1")
        clock.advance(minutes=3)
        assert tracker.heartbeat(token).accepted
        session = tracker.get_session(token)
        assert session.heartbeats == [clock()]
        assert session.last_activity == clock()

    def test_out_of_order_heartbeat_is_clamped(self, tracker, clock):
        token = tracker.start("u1")
        clock.advance(minutes=5)
        tracker.heartbeat(token)
        tracker.heartbeat(token, Heartbeat(at=clock() - timedelta(minutes=2)))
        heartbeats = tracker.get_session(token).heartbeats
        assert heartbeats == sorted(heartbeats)
        assert heartbeats[-1] == clock()

    def test_pages_are_recorded_once(self, tracker):
        token = tracker.start("u1")
        tracker.heartbeat(token, Heartbeat(current_page="/home", is_visible=False))
        tracker.heartbeat(token, Heartbeat(current_page="/home"))
        session = tracker.get_session(token)
        assert session.pages_visited == ["/home"]
        assert session.current_page == "/home"
        assert session.is_visible is False

    def test_project_change_in_heartbeat_updates_ledger(self, tracker, clock):
        token = tracker.start("u1")
        clock.advance(minutes=1)
        tracker.heartbeat(token, Heartbeat(current_project_id="A"))
        clock.advance(minutes=4)
        tracker.heartbeat(token, Heartbeat(current_project_id="B"))

        session = tracker.get_session(token)
        assert session.current_project_id == "B"
        assert session.projects_viewed == ["A", "B"]
        assert session.ledger_entry("A").active_seconds == 240


# ==============================================================================
# Project Switching
# ==============================================================================


class TestSwitchProject:
    def test_outgoing_project_is_credited(self, tracker, clock):
        token = tracker.start("u1")
        tracker.switch_project("u1", token, "A")
        clock.advance(minutes=5)
        tracker.switch_project("u1", token, "B")

        session = tracker.get_session(token)
        assert session.ledger_entry("A").active_seconds == 300
        assert session.ledger_entry("B").active_seconds == 0
        assert session.current_project_since == clock()

    def test_stint_without_heartbeats_is_credited_wall_time(self, tracker, clock):
        token = tracker.start("u1")
        tracker.switch_project("u1", token, "A")
        clock.advance(minutes=20)
        tracker.switch_project("u1", token, "B")
        assert tracker.get_session(token).ledger_entry("A").active_seconds == 1200

    def test_one_ledger_entry_per_project(self, tracker, clock):
        token = tracker.start("u1")
        for project in ("A", "B", "A"):
            tracker.switch_project("u1", token, project)
            clock.advance(minutes=2)
        session = tracker.get_session(token)
        assert sorted(entry.project_id for entry in session.project_time) == ["A", "B"]
        assert session.ledger_entry("A").active_seconds == 120

    def test_clearing_project_stops_the_timer(self, tracker, clock):
        token = tracker.start("u1")
        tracker.switch_project("u1", token, "A")
        clock.advance(minutes=5)
        tracker.switch_project("u1", token, None)
        clock.advance(minutes=5)
        tracker.end(token)

        session = tracker.get_session(token)
        assert session.current_project_id is None
        assert session.ledger_entry("A").active_seconds == 300

    def test_wrong_user_is_not_found(self, tracker):
        token = tracker.start("u1")
        assert tracker.switch_project("u2", token, "A").outcome is Outcome.NOT_FOUND

    def test_ended_session_is_skipped(self, tracker):
        token = tracker.start("u1")
        tracker.end(token)
        assert tracker.switch_project("u1", token, "A").outcome is Outcome.SKIPPED


# ==============================================================================
# Ending
# ==============================================================================


class TestEnd:
    def test_duration_with_regular_heartbeats(self, tracker, clock):
        token = tracker.start("u1")
        for _ in range(5):
            clock.advance(minutes=5)
            tracker.heartbeat(token)
        clock.advance(minutes=5)
        assert tracker.end(token).accepted

        session = tracker.get_session(token)
        assert not session.is_active
        assert session.end_time == clock()
        assert session.duration_seconds == 1800
        assert session.raw_duration_seconds == 1800

    def test_idle_gap_is_excluded(self, tracker, clock):
        token = tracker.start("u1")
        clock.advance(minutes=5)
        tracker.heartbeat(token)
        clock.advance(minutes=90)
        tracker.heartbeat(token)
        clock.advance(minutes=5)
        tracker.end(token)

        session = tracker.get_session(token)
        assert session.duration_seconds == 600
        assert session.raw_duration_seconds == 6000

    def test_session_without_heartbeats_lasts_wall_time(self, tracker, clock):
        token = tracker.start("u1")
        clock.advance(minutes=30)
        tracker.end(token)

        session = tracker.get_session(token)
        assert session.duration_seconds == 1800
        assert session.raw_duration_seconds == 1800

    def test_end_is_idempotent(self, tracker, clock):
        token = tracker.start("u1")
        clock.advance(minutes=5)
        tracker.end(token)
        ended = tracker.get_session(token)

        clock.advance(minutes=5)
        assert tracker.end(token).outcome is Outcome.SKIPPED
        assert tracker.get_session(token) == ended

    def test_end_unknown_session_is_not_found(self, tracker):
        assert tracker.end("missing").outcome is Outcome.NOT_FOUND

    def test_end_closes_current_project(self, tracker, clock):
        token = tracker.start("u1")
        tracker.switch_project("u1", token, "A")
        clock.advance(minutes=10)
        tracker.end(token)
        assert tracker.get_session(token).ledger_entry("A").active_seconds == 600


# ==============================================================================
# Reaper / Shutdown
# ==============================================================================


class TestReaper:
    def test_reaped_session_ends_at_last_activity(self, tracker, clock):
        token = tracker.start("u1")
        clock.advance(minutes=5)
        tracker.heartbeat(token)
        last_activity = clock()
        clock.advance(hours=2)

        assert tracker.reap_inactive() == 1
        session = tracker.get_session(token)
        assert not session.is_active
        assert session.end_time == last_activity
        assert session.duration_seconds == 300

    def test_recent_sessions_are_not_reaped(self, tracker, clock):
        tracker.start("u1")
        clock.advance(minutes=30)
        assert tracker.reap_inactive() == 0

    def test_explicit_threshold(self, tracker, clock):
        tracker.start("u1")
        clock.advance(minutes=30)
        assert tracker.reap_inactive(timedelta(minutes=10)) == 1

    def test_end_all(self, tracker):
        tokens = [tracker.start(user) for user in ("u1", "u2", "u3")]
        tracker.end(tokens[0])
        assert tracker.end_all() == 2
        assert all(not tracker.get_session(t).is_active for t in tokens)


# ==============================================================================
# Events and Notifications
# ==============================================================================


class TestLifecycleEvents:
    @pytest.fixture()
    def notifier(self):
        return MagicMock()

    @pytest.fixture()
    def wired_tracker(self, sessions, recorder, notifier, clock):
        return SessionTracker(sessions, recorder=recorder, notifier=notifier, clock=clock)

    def test_start_records_event_and_notifies(self, wired_tracker, events, notifier):
        token = wired_tracker.start("u1")

        started = events.find(
            QueryFilters(user_id="u1", event_type=EventType.SESSION_START), RawWindow()
        )
        assert len(started) == 1
        assert started[0].session_id == token
        user_id, event, data = notifier.publish.call_args.args
        assert (user_id, event, data["session_id"]) == ("u1", SESSION_STARTED, token)

    def test_resume_does_not_record_or_notify(self, wired_tracker, events, notifier):
        wired_tracker.start("u1")
        wired_tracker.start("u1")
        assert notifier.publish.call_count == 1
        assert events.count(QueryFilters(event_type=EventType.SESSION_START), RawWindow()) == 1

    def test_end_records_duration_and_notifies(self, wired_tracker, events, notifier, clock):
        token = wired_tracker.start("u1")
        clock.advance(minutes=10)
        wired_tracker.end(token)

        ended = events.find(
            QueryFilters(user_id="u1", event_type=EventType.SESSION_END), RawWindow()
        )
        assert len(ended) == 1
        assert ended[0].duration == 600
        assert ended[0].payload["raw_duration"] == 600
        _, event, data = notifier.publish.call_args.args
        assert event == SESSION_ENDED
        assert data["duration_seconds"] == 600

    def test_idempotent_end_notifies_once(self, wired_tracker, notifier):
        token = wired_tracker.start("u1")
        wired_tracker.end(token)
        wired_tracker.end(token)
        events = [call.args[1] for call in notifier.publish.call_args_list]
        assert events.count(SESSION_ENDED) == 1


# ==============================================================================
# Project Time Summary
# ==============================================================================


class TestProjectTimeSummary:
    def test_totals_across_sessions(self, tracker, clock):
        token = tracker.start("u1")
        tracker.switch_project("u1", token, "A")
        clock.advance(minutes=10)
        tracker.switch_project("u1", token, "B")
        clock.advance(minutes=5)
        tracker.end(token)

        clock.advance(hours=1)
        token = tracker.start("u1")
        tracker.switch_project("u1", token, "A")
        clock.advance(minutes=5)

        summary = tracker.project_time_summary("u1")
        assert [s.project_id for s in summary] == ["A", "B"]
        assert summary[0].total_seconds == 900
        assert summary[0].sessions == 2
        assert summary[1].total_seconds == 300

    def test_empty_for_unknown_user(self, tracker):
        assert tracker.project_time_summary("nobody") == []
