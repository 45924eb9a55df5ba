"""Business logic for grading, integrity tracking and live monitoring shared with the API."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from threading import Lock
from typing import Any, Iterable, Mapping

from quizguard.core.grading import apply_manual_grades, score_submission
from quizguard.core.models import AnswerValue, AvailabilityStatus, CheatAttempt, LiveStudentSession, Quiz, QuizResult
from quizguard.core.quiz_loader import quiz_from_document
from quizguard.core.services.availability import availability_status, check_submission
from quizguard.core.services.integrity_log import IntegrityLog
from quizguard.core.services.live_feed import InMemoryLiveFeed
from quizguard.core.services.review import (
    FILTER_ALL,
    SORT_DATE,
    QuizSummary,
    StudentReview,
    SubmissionRow,
    filter_submissions,
    resolve_student_name,
    review_student,
    review_submissions,
    sort_submissions,
    summarize_quiz,
)
from quizguard.core.services.security_policy import FocusEvent, PolicyDecision, TabSwitchTracker, records_attempts
from quizguard.core.services.session_aggregator import (
    LiveSessionAggregator,
    MonitorView,
    has_recent_activity,
    latest_result,
)
from quizguard.core.stores import (
    InMemoryQuizStore,
    InMemoryResultStore,
    InMemoryStudentDirectory,
    LiveFeed,
    QuizStore,
    ResultStore,
    StudentDirectory,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuizMonitor:
    """Facade over the stores, IntegrityLog, live feed and LiveSessionAggregator."""

    def __init__(
        self,
        quiz_store: QuizStore | None = None,
        result_store: ResultStore | None = None,
        directory: StudentDirectory | None = None,
        live_feed: LiveFeed | None = None,
    ) -> None:
        self._lock = Lock()

        # Collaborators
        self._quizzes = quiz_store or InMemoryQuizStore()
        self._results = result_store or InMemoryResultStore()
        self._directory = directory or InMemoryStudentDirectory()
        self._feed = live_feed or InMemoryLiveFeed()

        # Services
        self._integrity = IntegrityLog()
        self._aggregator = LiveSessionAggregator()
        self._trackers: dict[str, TabSwitchTracker] = {}

        self._monitored_quiz_id: str | None = None

    # --- Quiz Store Delegation ---

    def load_quiz_document(self, document: Mapping[str, Any]) -> Quiz:
        quiz = quiz_from_document(document)
        with self._lock:
            self._store_quiz_locked(quiz)
        logger.info("Loaded quiz %s with %d questions (%d points)", quiz.quiz_id, len(quiz.questions), quiz.points)
        return quiz

    def add_quiz(self, quiz: Quiz) -> None:
        if not quiz.points_consistent():
            raise ValueError(
                f"Quiz {quiz.quiz_id} points {quiz.points} do not match question total {quiz.total_question_points()}."
            )
        with self._lock:
            self._store_quiz_locked(quiz)

    def get_quiz(self, quiz_id: str) -> Quiz:
        with self._lock:
            return self._require_quiz(quiz_id)

    def quiz_availability(self, quiz_id: str, at: datetime | None = None) -> AvailabilityStatus:
        with self._lock:
            return availability_status(self._require_quiz(quiz_id), at or _utcnow())

    # --- Student Activity ---

    def record_progress(
        self,
        quiz_id: str,
        student_id: str,
        questions_answered: int,
        at: datetime | None = None,
    ) -> LiveStudentSession:
        with self._lock:
            quiz = self._require_quiz(quiz_id)
            name = resolve_student_name(self._directory, student_id)
            return self._feed.record_progress(
                quiz_id,
                student_id,
                name,
                questions_answered,
                at or _utcnow(),
                prior_attempts=IntegrityLog.attempts_for(quiz, student_id),
            )

    def mark_idle(self, quiz_id: str, student_id: str) -> LiveStudentSession | None:
        with self._lock:
            return self._feed.mark_idle(quiz_id, student_id)

    def load_live_sessions(self, quiz_id: str, sessions: Iterable[LiveStudentSession]) -> int:
        """Replace the live sessions of a quiz with a snapshot from an external feed."""
        with self._lock:
            self._require_quiz(quiz_id)
            return self._feed.load_snapshot(quiz_id, sessions)

    def record_attempt(self, quiz_id: str, student_id: str, attempt: CheatAttempt) -> int:
        with self._lock:
            quiz = self._require_quiz(quiz_id)
            return self._record_attempt_locked(quiz, student_id, attempt)

    def report_focus_event(
        self,
        quiz_id: str,
        student_id: str,
        event: FocusEvent,
        at: datetime | None = None,
    ) -> PolicyDecision:
        with self._lock:
            quiz = self._require_quiz(quiz_id)
            at = at or _utcnow()
            if records_attempts(quiz.security_level):
                # Reject before the tracker counts the event.
                self._integrity.ensure_in_order(quiz, student_id, at)
            tracker = self._trackers.get(quiz_id)
            if tracker is None:
                tracker = TabSwitchTracker(quiz.security_level)
                self._trackers[quiz_id] = tracker
            decision = tracker.observe(student_id, event, at)
            for attempt in decision.attempts:
                self._record_attempt_locked(quiz, student_id, attempt)
            if decision.auto_submit:
                logger.warning("Quiz %s: auto-submitting for student %s after flagged activity", quiz_id, student_id)
            return decision

    def submit_answers(
        self,
        quiz_id: str,
        student_id: str,
        answers: Mapping[str, AnswerValue],
        completed: bool = True,
        total_time_spent: int | None = None,
        at: datetime | None = None,
    ) -> QuizResult:
        with self._lock:
            quiz = self._require_quiz(quiz_id)
            timestamp = at or _utcnow()
            check_submission(quiz, self._results.for_student(quiz_id, student_id), timestamp)
            scored = score_submission(quiz, answers)
            result = QuizResult(
                user_id=student_id,
                quiz_id=quiz_id,
                answers=dict(answers),
                score=scored.score,
                total_points=scored.total_points,
                completed=completed,
                timestamp=timestamp,
                total_time_spent=total_time_spent,
            )
            self._results.insert(result)
            if completed:
                self._feed.mark_submitted(quiz_id, student_id)
            logger.info(
                "Stored %s result for student %s on quiz %s: %s/%s",
                "completed" if completed else "partial",
                student_id,
                quiz_id,
                result.score,
                result.total_points,
            )
            return result

    def grade_manually(
        self,
        quiz_id: str,
        student_id: str,
        manual_points: Mapping[str, float],
        at: datetime | None = None,
    ) -> QuizResult:
        """Insert a graded copy of the student's latest result."""
        with self._lock:
            quiz = self._require_quiz(quiz_id)
            current = latest_result(self._results.for_student(quiz_id, student_id))
            if current is None:
                raise KeyError(f"No result for student {student_id} on quiz {quiz_id}.")
            scored = apply_manual_grades(quiz, current.answers, {**current.manual_points, **manual_points})
            timestamp = at or _utcnow()
            if timestamp <= current.timestamp:
                timestamp = current.timestamp + timedelta(microseconds=1)
            graded = QuizResult(
                user_id=current.user_id,
                quiz_id=current.quiz_id,
                answers=dict(current.answers),
                score=scored.score,
                total_points=scored.total_points,
                completed=current.completed,
                timestamp=timestamp,
                total_time_spent=current.total_time_spent,
                manual_points=scored.manual_points,
                graded_from=current.graded_from or current.timestamp,
            )
            self._results.insert(graded)
            logger.info("Regraded student %s on quiz %s: %s/%s", student_id, quiz_id, graded.score, graded.total_points)
            return graded

    # --- Monitoring ---

    def monitor_quiz(self, quiz_id: str, at: datetime | None = None) -> None:
        with self._lock:
            quiz = self._require_quiz(quiz_id)
            previous = self._monitored_quiz_id
            if previous is not None and previous != quiz_id:
                self._aggregator.stop(previous)
            self._aggregator.start(quiz_id, len(quiz.questions), now=at)
            self._monitored_quiz_id = quiz_id

    def stop_monitoring(self, quiz_id: str | None = None) -> bool:
        with self._lock:
            target = quiz_id or self._monitored_quiz_id
            if target is None:
                return False
            stopped = self._aggregator.stop(target)
            if target == self._monitored_quiz_id:
                self._monitored_quiz_id = None
            return stopped

    def get_monitored_quiz_id(self) -> str | None:
        with self._lock:
            return self._monitored_quiz_id

    def refresh_monitor(self, quiz_id: str, at: datetime | None = None) -> MonitorView:
        with self._lock:
            if quiz_id != self._monitored_quiz_id:
                raise RuntimeError(f"Quiz {quiz_id} is not being monitored.")
            now = at or _utcnow()
            snapshot = self._feed.snapshot(quiz_id)
            newest = max((s.last_active for s in snapshot), default=None)
            if snapshot and not has_recent_activity(newest, now):
                logger.warning("Quiz %s live snapshot is stale (last activity %s); ignoring it", quiz_id, newest)
                snapshot = []
            return self._aggregator.refresh(quiz_id, snapshot, self._results.for_quiz(quiz_id), now=now)

    # --- Review ---

    def summarize(self, quiz_id: str) -> QuizSummary:
        with self._lock:
            quiz = self._require_quiz(quiz_id)
            return summarize_quiz(quiz, self._results.for_quiz(quiz_id))

    def review_quiz(self, quiz_id: str, mode: str = FILTER_ALL, sort_key: str = SORT_DATE) -> list[SubmissionRow]:
        with self._lock:
            quiz = self._require_quiz(quiz_id)
            rows = review_submissions(quiz, self._results.for_quiz(quiz_id), self._directory)
        return sort_submissions(filter_submissions(rows, mode), sort_key)

    def review_student(self, quiz_id: str, student_id: str) -> StudentReview:
        with self._lock:
            quiz = self._require_quiz(quiz_id)
            return review_student(quiz, self._results.for_student(quiz_id, student_id), student_id, self._directory)

    # --- Internal ---

    def _require_quiz(self, quiz_id: str) -> Quiz:
        quiz = self._quizzes.get(quiz_id)
        if quiz is None:
            raise KeyError(f"Quiz {quiz_id} not found.")
        return quiz

    def _store_quiz_locked(self, quiz: Quiz) -> None:
        existing = self._quizzes.get(quiz.quiz_id)
        if existing is not None:
            quiz.cheating_attempts = IntegrityLog.merge_histories(existing.cheating_attempts, quiz.cheating_attempts)
            logger.info("Replacing quiz %s; kept %d recorded attempts", quiz.quiz_id, IntegrityLog.incident_count(quiz))
        tracker = self._trackers.get(quiz.quiz_id)
        if tracker is not None and tracker.level is not quiz.security_level:
            del self._trackers[quiz.quiz_id]
        self._quizzes.save(quiz)

    def _record_attempt_locked(self, quiz: Quiz, student_id: str, attempt: CheatAttempt) -> int:
        count = self._integrity.record_attempt(quiz, student_id, attempt)
        self._quizzes.save(quiz)
        self._feed.record_attempt(quiz.quiz_id, student_id, attempt)
        return count
