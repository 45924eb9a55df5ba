"""Service gating submissions by availability window, attempt limit and time limit."""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Iterable

from quizguard.core.models import AvailabilityStatus, Quiz, QuizResult

logger = logging.getLogger(__name__)


class SubmissionRejected(RuntimeError):
    """Raised when a quiz does not accept a submission from the student right now."""


def availability_status(quiz: Quiz, now: datetime) -> AvailabilityStatus:
    if quiz.available_from is not None and now < quiz.available_from:
        return AvailabilityStatus.UPCOMING
    if quiz.available_to is not None and now > quiz.available_to:
        return AvailabilityStatus.CLOSED
    return AvailabilityStatus.ACTIVE


def attempts_used(results: Iterable[QuizResult]) -> int:
    """Completed submissions, not counting regraded copies."""
    return sum(1 for result in results if result.completed and result.graded_from is None)


def time_remaining(quiz: Quiz, started_at: datetime, now: datetime) -> int | None:
    """Seconds left on the quiz clock, or ``None`` when there is no time limit."""
    if not quiz.time_limit:
        return None
    elapsed = (now - started_at).total_seconds()
    return max(0, int(quiz.time_limit * 60 - elapsed))


def check_submission(quiz: Quiz, previous_results: Iterable[QuizResult], now: datetime) -> None:
    status = availability_status(quiz, now)
    if status is AvailabilityStatus.UPCOMING:
        raise SubmissionRejected(f"Quiz {quiz.quiz_id} opens at {quiz.available_from.isoformat()}.")
    if status is AvailabilityStatus.CLOSED:
        raise SubmissionRejected(f"Quiz {quiz.quiz_id} closed at {quiz.available_to.isoformat()}.")

    if quiz.max_attempts:
        used = attempts_used(previous_results)
        if used >= quiz.max_attempts:
            logger.info("Quiz %s: attempt limit %d reached (%d used)", quiz.quiz_id, quiz.max_attempts, used)
            raise SubmissionRejected(f"Quiz {quiz.quiz_id} allows {quiz.max_attempts} attempt(s).")
