# ==============================================================================
# Session Tracker
# ==============================================================================
"""
Session lifecycle and per-project time ledger.

State machine per session token:

    NONE --start()--> ACTIVE --end() / end_all() / reap_inactive()--> ENDED

There is no transition back into ACTIVE for the same token. Operations on an
unknown or ended session are no-ops reported through SessionResult, since
clients may retry after the reaper has already finalized a session.

Durations are gap-aware (see core/active_time.py): any single silence longer
than the idle threshold is excluded, both for the whole session and for the
time credited to each project.
"""

import logging
from datetime import datetime, timedelta

from pulse.base.notifier import Notifier, NullNotifier
from pulse.base.repositories import SessionRepository
from pulse.core.active_time import DEFAULT_IDLE_THRESHOLD, calculate_active_time, split_idle_gaps
from pulse.core.event_recorder import EventRecorder
from pulse.core.models import EventType, Heartbeat, ProjectTime, ProjectTimeSummary, Session
from pulse.core.results import Outcome, SessionResult
from pulse.utils.clock import Clock, ensure_utc, utc_now

logger = logging.getLogger(__name__)

DEFAULT_RESUME_WINDOW = timedelta(minutes=15)
DEFAULT_REAP_AFTER = timedelta(minutes=60)

SESSION_STARTED = "session.started"
SESSION_ENDED = "session.ended"


class SessionTracker:
    """
    Tracks presence sessions.

    Every mutation is a single save() of the whole session record, so a
    concurrent reader never observes a half-applied update.
    """

    def __init__(
        self,
        sessions: SessionRepository,
        recorder: EventRecorder | None = None,
        notifier: Notifier | None = None,
        idle_threshold: timedelta = DEFAULT_IDLE_THRESHOLD,
        resume_window: timedelta = DEFAULT_RESUME_WINDOW,
        reap_after: timedelta = DEFAULT_REAP_AFTER,
        clock: Clock = utc_now,
    ):
        """
        Initialize the tracker.

        Args:
            sessions: Session store
            recorder: Records session_start / session_end events when given
            notifier: Receives session.started / session.ended notifications
            idle_threshold: Silences longer than this are not active time
            resume_window: start() resumes a session touched within this window
            reap_after: Default inactivity threshold for reap_inactive()
            clock: Source of the current time
        """
        self._sessions = sessions
        self._recorder = recorder
        self._notifier = notifier or NullNotifier()
        self._idle_threshold = idle_threshold
        self._resume_window = resume_window
        self._reap_after = reap_after
        self._clock = clock

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    def start(
        self,
        user_id: str,
        *,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> str:
        """
        Start or resume a session.

        An ACTIVE session last touched within the resume window is returned
        instead of a new one, so reloads and reconnects do not fragment one
        sitting. An older ACTIVE session is ended at its last activity first.

        Returns:
            Session token
        """
        now = self._clock()
        existing = self._sessions.find_active_for_user(user_id)
        if existing is not None:
            if now - existing.last_activity <= self._resume_window:
                existing.last_activity = max(existing.last_activity, now)
                self._sessions.save(existing)
                logger.debug("Resumed session %s for user %s", existing.session_id, user_id)
                return existing.session_id
            self._finalize(existing, existing.last_activity)

        session = Session(
            user_id=user_id,
            start_time=now,
            last_activity=now,
            user_agent=user_agent,
            ip_address=ip_address,
        )
        self._sessions.save(session)
        logger.info("Started session %s for user %s", session.session_id, user_id)

        if self._recorder is not None:
            self._recorder.record(
                user_id,
                EventType.SESSION_START,
                {"session_id": session.session_id},
                session_id=session.session_id,
                user_agent=user_agent,
                ip_address=ip_address,
            )
        self._notifier.publish(
            user_id,
            SESSION_STARTED,
            {"session_id": session.session_id, "start_time": now.isoformat()},
        )
        return session.session_id

    def heartbeat(self, session_id: str, beat: Heartbeat | None = None) -> SessionResult:
        """
        Register client presence.

        The heartbeat time defaults to now and is clamped so the heartbeat
        list stays non-decreasing. A heartbeat naming a different current
        project goes through the same ledger logic as switch_project().
        """
        beat = beat or Heartbeat()
        session, result = self._load_active(session_id)
        if session is None:
            return result

        at = ensure_utc(beat.at) if beat.at is not None else self._clock()
        floor = session.heartbeats[-1] if session.heartbeats else session.start_time
        at = max(at, floor)

        session.heartbeats.append(at)
        session.last_activity = max(session.last_activity, at)
        if beat.is_visible is not None:
            session.is_visible = beat.is_visible
        if beat.current_page:
            session.current_page = beat.current_page
            if beat.current_page not in session.pages_visited:
                session.pages_visited.append(beat.current_page)
        if beat.current_project_id is not None and beat.current_project_id != session.current_project_id:
            self._apply_switch(session, beat.current_project_id, at)

        self._sessions.save(session)
        return SessionResult(outcome=Outcome.ACCEPTED, session_id=session_id)

    def switch_project(
        self, user_id: str, session_id: str, project_id: str | None
    ) -> SessionResult:
        """
        Make `project_id` the current project (None clears it).

        The outgoing project is credited with the active time since it became
        current; the incoming project's timer starts now.
        """
        session, result = self._load_active(session_id, user_id)
        if session is None:
            return result

        now = max(self._clock(), session.current_project_since or session.start_time)
        self._apply_switch(session, project_id, now)
        session.last_activity = max(session.last_activity, now)
        self._sessions.save(session)
        logger.debug(
            "Session %s switched to project %s", session_id, project_id if project_id else "<none>"
        )
        return SessionResult(outcome=Outcome.ACCEPTED, session_id=session_id)

    def end(self, session_id: str, user_id: str | None = None) -> SessionResult:
        """
        End a session. Ending an ended or unknown session is a no-op.
        """
        session, result = self._load_active(session_id, user_id)
        if session is None:
            return result
        self._finalize(session, self._clock())
        return SessionResult(outcome=Outcome.ACCEPTED, session_id=session_id)

    def end_all(self) -> int:
        """
        Force-end every open session (process shutdown).

        Returns:
            Count of sessions ended
        """
        now = self._clock()
        ended = 0
        for session in self._sessions.find_active():
            self._finalize(session, now)
            ended += 1
        if ended:
            logger.info("Ended %d open sessions", ended)
        return ended

    def reap_inactive(self, threshold: timedelta | None = None) -> int:
        """
        Force-end sessions idle for longer than `threshold`.

        Reaped sessions end at their last activity, not at reap time, so the
        unattended tail is never counted.

        Returns:
            Count of sessions reaped
        """
        cutoff = self._clock() - (threshold if threshold is not None else self._reap_after)
        reaped = 0
        for session in self._sessions.find_active(idle_before=cutoff):
            self._finalize(session, session.last_activity)
            reaped += 1
        if reaped:
            logger.info("Reaped %d inactive sessions (idle since before %s)", reaped, cutoff.isoformat())
        return reaped

    # ==========================================================================
    # Reads
    # ==========================================================================

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def get_active_session(self, user_id: str) -> Session | None:
        """The user's open session, if any."""
        return self._sessions.find_active_for_user(user_id)

    def project_time_summary(self, user_id: str, days: int = 30) -> list[ProjectTimeSummary]:
        """
        Per-project active time across the user's recent sessions.

        Open sessions contribute the running time of their current project.

        Args:
            user_id: User to summarize
            days: How far back to look

        Returns:
            One summary per project, most used first
        """
        now = self._clock()
        totals: dict[str, ProjectTimeSummary] = {}

        for session in self._sessions.find_for_user(user_id, since=now - timedelta(days=days)):
            credited: dict[str, tuple[float, datetime]] = {
                entry.project_id: (entry.active_seconds, entry.last_switch_time)
                for entry in session.project_time
            }
            if session.is_active and session.current_project_id and session.current_project_since:
                running = calculate_active_time(
                    session.current_project_since, now, session.heartbeats, self._idle_threshold
                ).total_seconds()
                seconds, _ = credited.get(session.current_project_id, (0.0, now))
                credited[session.current_project_id] = (seconds + running, now)

            for project_id, (seconds, last_used) in credited.items():
                summary = totals.get(project_id)
                if summary is None:
                    totals[project_id] = ProjectTimeSummary(
                        project_id=project_id, total_seconds=seconds, sessions=1, last_used=last_used
                    )
                else:
                    summary.total_seconds += seconds
                    summary.sessions += 1
                    if summary.last_used is None or last_used > summary.last_used:
                        summary.last_used = last_used

        return sorted(totals.values(), key=lambda s: s.total_seconds, reverse=True)

    # ==========================================================================
    # Internals
    # ==========================================================================

    def _load_active(
        self, session_id: str, user_id: str | None = None
    ) -> tuple[Session | None, SessionResult]:
        session = self._sessions.get(session_id)
        if session is None or (user_id is not None and session.user_id != user_id):
            return None, SessionResult(outcome=Outcome.NOT_FOUND, session_id=session_id)
        if not session.is_active:
            return None, SessionResult(outcome=Outcome.SKIPPED, session_id=session_id)
        return session, SessionResult(outcome=Outcome.ACCEPTED, session_id=session_id)

    def _credit_current_project(self, session: Session, until: datetime) -> None:
        """Add the current project's active time up to `until` to its ledger entry."""
        project_id = session.current_project_id
        since = session.current_project_since
        if project_id is None or since is None:
            return
        active = calculate_active_time(since, until, session.heartbeats, self._idle_threshold)
        entry = session.ledger_entry(project_id)
        if entry is None:
            entry = ProjectTime(project_id=project_id, last_switch_time=until)
            session.project_time.append(entry)
        entry.active_seconds += active.total_seconds()
        entry.last_switch_time = until

    def _apply_switch(self, session: Session, project_id: str | None, at: datetime) -> None:
        self._credit_current_project(session, at)
        session.current_project_id = project_id
        session.current_project_since = at if project_id is not None else None
        if project_id is None:
            return
        if project_id not in session.projects_viewed:
            session.projects_viewed.append(project_id)
        entry = session.ledger_entry(project_id)
        if entry is None:
            session.project_time.append(ProjectTime(project_id=project_id, last_switch_time=at))
        else:
            entry.last_switch_time = at

    def _finalize(self, session: Session, end_time: datetime) -> None:
        end_time = max(ensure_utc(end_time), session.start_time)
        self._credit_current_project(session, end_time)

        active = calculate_active_time(
            session.start_time, end_time, session.heartbeats, self._idle_threshold
        )
        raw = end_time - session.start_time
        idle_gaps = split_idle_gaps(
            session.start_time, end_time, session.heartbeats, self._idle_threshold
        )

        session.end_time = end_time
        session.duration_seconds = active.total_seconds()
        session.raw_duration_seconds = raw.total_seconds()
        session.is_active = False
        session.current_project_since = None
        self._sessions.save(session)

        logger.info(
            "Ended session %s for user %s: %.0fs active of %.0fs (%d idle gaps excluded)",
            session.session_id,
            session.user_id,
            session.duration_seconds,
            session.raw_duration_seconds,
            len(idle_gaps),
        )

        if self._recorder is not None:
            self._recorder.record(
                session.user_id,
                EventType.SESSION_END,
                {
                    "session_id": session.session_id,
                    "duration": session.duration_seconds,
                    "raw_duration": session.raw_duration_seconds,
                    "project_id": session.current_project_id,
                },
                session_id=session.session_id,
                user_agent=session.user_agent,
                ip_address=session.ip_address,
            )
        self._notifier.publish(
            session.user_id,
            SESSION_ENDED,
            {
                "session_id": session.session_id,
                "end_time": end_time.isoformat(),
                "duration_seconds": session.duration_seconds,
                "raw_duration_seconds": session.raw_duration_seconds,
            },
        )
