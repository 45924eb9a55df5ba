"""Service holding live student sessions as reported by student clients."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
import logging
from typing import Iterable, Sequence

from quizguard.core.models import CheatAttempt, LiveStudentSession, SessionStatus
from quizguard.core.services.session_aggregator import SessionEvent, transition

logger = logging.getLogger(__name__)


class InMemoryLiveFeed:
    """Per-quiz live sessions, updated by pings and read as snapshots."""

    def __init__(self) -> None:
        self._sessions: dict[str, dict[str, LiveStudentSession]] = {}

    def record_progress(
        self,
        quiz_id: str,
        student_id: str,
        student_name: str,
        questions_answered: int,
        at: datetime,
        prior_attempts: Sequence[CheatAttempt] = (),
    ) -> LiveStudentSession:
        """Apply a progress ping.

        ``prior_attempts`` seeds a session seen for the first time with attempts
        recorded before its first ping.
        """
        sessions = self._sessions.setdefault(quiz_id, {})
        session = sessions.get(student_id)
        if session is None:
            session = LiveStudentSession(
                student_id=student_id,
                student_name=student_name,
                status=transition(None, SessionEvent.PROGRESS),
                questions_answered=questions_answered,
                started_at=at,
                last_active=at,
                cheating_attempts=list(prior_attempts),
            )
            if prior_attempts:
                session.status = transition(session.status, SessionEvent.ATTEMPT_RECORDED)
            sessions[student_id] = session
            logger.info("Student %s started quiz %s", student_id, quiz_id)
            return session

        session.status = transition(session.status, SessionEvent.PROGRESS)
        session.questions_answered = questions_answered
        session.last_active = max(session.last_active, at)
        if student_name:
            session.student_name = student_name
        return session

    def record_attempt(self, quiz_id: str, student_id: str, attempt: CheatAttempt) -> LiveStudentSession | None:
        session = self._sessions.get(quiz_id, {}).get(student_id)
        if session is None:
            return None
        session.cheating_attempts.append(attempt)
        session.status = transition(session.status, SessionEvent.ATTEMPT_RECORDED)
        return session

    def mark_idle(self, quiz_id: str, student_id: str) -> LiveStudentSession | None:
        session = self._sessions.get(quiz_id, {}).get(student_id)
        if session is None:
            return None
        session.status = transition(session.status, SessionEvent.IDLE_REPORTED)
        return session

    def mark_submitted(self, quiz_id: str, student_id: str) -> None:
        session = self._sessions.get(quiz_id, {}).pop(student_id, None)
        if session is not None:
            logger.info("Student %s submitted quiz %s", student_id, quiz_id)

    def snapshot(self, quiz_id: str) -> list[LiveStudentSession]:
        """Copies of the active sessions for a quiz; callers may keep them."""
        return [
            replace(session, cheating_attempts=list(session.cheating_attempts))
            for session in self._sessions.get(quiz_id, {}).values()
            if session.status is not SessionStatus.SUBMITTED
        ]

    def load_snapshot(self, quiz_id: str, sessions: Iterable[LiveStudentSession]) -> int:
        """Replace a quiz's sessions with an externally produced snapshot.

        Submitted sessions are dropped. Returns the number of sessions kept.
        """
        loaded = {
            session.student_id: replace(session, cheating_attempts=list(session.cheating_attempts))
            for session in sessions
            if session.status is not SessionStatus.SUBMITTED
        }
        self._sessions[quiz_id] = loaded
        logger.info("Loaded %d live sessions for quiz %s", len(loaded), quiz_id)
        return len(loaded)
