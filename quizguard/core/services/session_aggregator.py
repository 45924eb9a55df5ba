"""Service reconciling live-session snapshots into a monitoring read model.

Snapshots arrive from a polling or push feed and are treated as partial: a
flagged student can be missing from one refresh and back in the next with a
shorter attempt list. The per-quiz cheaters cache keeps the richest attempt
history seen for each flagged student, while the displayed list only contains
students the current snapshot still flags.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
import logging
from typing import Iterable, Sequence

from quizguard.constants.quiz_constants import STALE_ACTIVITY_WINDOW
from quizguard.core.models import LiveStudentSession, QuizResult, SessionStatus

logger = logging.getLogger(__name__)


class SessionEvent(str, Enum):
    """Inputs driving the per-student session state machine."""

    PROGRESS = "progress"
    ATTEMPT_RECORDED = "attempt_recorded"
    IDLE_REPORTED = "idle_reported"
    RESULT_COMPLETED = "result_completed"


def transition(current: SessionStatus | None, event: SessionEvent) -> SessionStatus:
    """Next status for a session; ``None`` means the session is not yet known."""
    if current is SessionStatus.SUBMITTED:
        return current
    if event is SessionEvent.RESULT_COMPLETED:
        return SessionStatus.SUBMITTED
    if event is SessionEvent.ATTEMPT_RECORDED:
        return SessionStatus.SUSPECTED_CHEATING
    if current is None:
        return SessionStatus.ACTIVE
    if current is SessionStatus.SUSPECTED_CHEATING:
        return current
    if event is SessionEvent.IDLE_REPORTED:
        return SessionStatus.IDLE
    return SessionStatus.ACTIVE


def progress_percent(questions_answered: int, total_questions: int) -> int:
    if total_questions <= 0:
        return 0
    return max(0, min(100, round(100 * questions_answered / total_questions)))


def latest_result(results: Iterable[QuizResult]) -> QuizResult | None:
    """Most recent snapshot; used by the historical detail lookup."""
    return max(results, key=lambda result: result.timestamp, default=None)


def best_results(results: Iterable[QuizResult]) -> list[QuizResult]:
    """One record per student, keeping the higher score; used by live aggregation."""
    best: dict[str, QuizResult] = {}
    for result in results:
        existing = best.get(result.user_id)
        if existing is None or existing.score < result.score:
            best[result.user_id] = result
    return list(best.values())


def has_recent_activity(
    last_active: datetime | None,
    now: datetime,
    window: timedelta = STALE_ACTIVITY_WINDOW,
) -> bool:
    if last_active is None:
        return False
    return now - last_active < window


def merge_cheater(cached: LiveStudentSession | None, incoming: LiveStudentSession) -> LiveStudentSession:
    """Combine a cached flagged session with the newest copy of it."""
    if cached is None or incoming.attempt_count >= cached.attempt_count:
        return replace(incoming, cheating_attempts=list(incoming.cheating_attempts))
    return replace(incoming, cheating_attempts=list(cached.cheating_attempts))


@dataclass(slots=True, frozen=True)
class StudentProgress:
    session: LiveStudentSession
    progress: int


@dataclass(slots=True, frozen=True)
class MonitorStats:
    started: int
    completed: int
    in_progress: int


@dataclass(slots=True, frozen=True)
class MonitorView:
    """Immutable read model handed to the monitoring screen."""

    quiz_id: str
    refreshed_at: datetime
    active_students: tuple[StudentProgress, ...]
    suspected_cheaters: tuple[LiveStudentSession, ...]
    results: tuple[QuizResult, ...]
    stats: MonitorStats


@dataclass(slots=True)
class MonitoringState:
    """Per-quiz reconciliation state, owned by the aggregator while monitoring."""

    quiz_id: str
    total_questions: int
    started_at: datetime
    cheaters_cache: dict[str, LiveStudentSession] = field(default_factory=dict)
    refresh_count: int = 0


class LiveSessionAggregator:
    """Owns one MonitoringState per monitored quiz."""

    def __init__(self) -> None:
        self._states: dict[str, MonitoringState] = {}

    def start(self, quiz_id: str, total_questions: int, now: datetime | None = None) -> MonitoringState:
        state = self._states.get(quiz_id)
        if state is None:
            state = MonitoringState(
                quiz_id=quiz_id,
                total_questions=total_questions,
                started_at=now or datetime.now(timezone.utc),
            )
            self._states[quiz_id] = state
            logger.info("Monitoring started for quiz %s", quiz_id)
        else:
            state.total_questions = total_questions
        return state

    def stop(self, quiz_id: str) -> bool:
        removed = self._states.pop(quiz_id, None)
        if removed is not None:
            logger.info("Monitoring stopped for quiz %s after %d refreshes", quiz_id, removed.refresh_count)
        return removed is not None

    def is_monitoring(self, quiz_id: str) -> bool:
        return quiz_id in self._states

    def get_state(self, quiz_id: str) -> MonitoringState:
        state = self._states.get(quiz_id)
        if state is None:
            raise RuntimeError(f"Quiz {quiz_id} is not being monitored.")
        return state

    def refresh(
        self,
        quiz_id: str,
        active_students: Sequence[LiveStudentSession],
        results: Sequence[QuizResult],
        now: datetime | None = None,
    ) -> MonitorView:
        """Merge one snapshot into the quiz's cache and build the read model.

        The cache is only replaced after the whole snapshot has been merged,
        so a failure mid-merge leaves the previous cycle's state intact.
        """
        state = self.get_state(quiz_id)
        refreshed_at = now or datetime.now(timezone.utc)

        deduped = best_results(results)
        # A completed record is terminal even when a partial snapshot scored higher.
        completed_ids = {result.user_id for result in results if result.completed}

        live = [
            session
            for session in active_students
            if session.status is not SessionStatus.SUBMITTED and session.student_id not in completed_ids
        ]

        cache = dict(state.cheaters_cache)
        current_suspects: list[str] = []
        for session in live:
            if not session.is_suspected:
                continue
            cache[session.student_id] = merge_cheater(cache.get(session.student_id), session)
            current_suspects.append(session.student_id)

        completed = len(completed_ids)
        view = MonitorView(
            quiz_id=quiz_id,
            refreshed_at=refreshed_at,
            active_students=tuple(
                StudentProgress(session=session, progress=progress_percent(session.questions_answered, state.total_questions))
                for session in live
            ),
            suspected_cheaters=tuple(cache[student_id] for student_id in current_suspects),
            results=tuple(deduped),
            stats=MonitorStats(
                started=len(deduped),
                completed=completed,
                in_progress=len(deduped) - completed,
            ),
        )

        state.cheaters_cache = cache
        state.refresh_count += 1
        logger.debug(
            "Quiz %s refresh %d: %d active, %d suspected",
            quiz_id,
            state.refresh_count,
            len(view.active_students),
            len(view.suspected_cheaters),
        )
        return view
