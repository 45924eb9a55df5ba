"""Service for recording and classifying suspicious quiz activity."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging

from quizguard.constants.quiz_constants import UNKNOWN_ISSUE_LABEL
from quizguard.core.models import CheatAttempt, CheatAttemptType, Quiz

logger = logging.getLogger(__name__)

SEVERITY_SOFT = "soft"
SEVERITY_HARD = "hard"
SEVERITY_UNKNOWN = "unknown"

_LABELS: dict[CheatAttemptType, str] = {
    CheatAttemptType.TAB_SWITCH: "Tab switch",
    CheatAttemptType.WINDOW_BLUR: "Left the quiz window",
    CheatAttemptType.COPY_DETECTED: "Copy attempt",
    CheatAttemptType.BROWSER_CLOSE: "Browser closed",
    CheatAttemptType.MULTIPLE_DEVICES: "Multiple devices",
    CheatAttemptType.TIME_ANOMALY: "Time anomaly",
    CheatAttemptType.QUIZ_ABANDONED: "Quiz abandoned",
}

_SEVERITIES: dict[CheatAttemptType, str] = {
    CheatAttemptType.TAB_SWITCH: SEVERITY_SOFT,
    CheatAttemptType.WINDOW_BLUR: SEVERITY_SOFT,
    CheatAttemptType.BROWSER_CLOSE: SEVERITY_SOFT,
    CheatAttemptType.QUIZ_ABANDONED: SEVERITY_SOFT,
    CheatAttemptType.COPY_DETECTED: SEVERITY_HARD,
    CheatAttemptType.MULTIPLE_DEVICES: SEVERITY_HARD,
    CheatAttemptType.TIME_ANOMALY: SEVERITY_HARD,
}

SEVERITY_COLORS: dict[str, str] = {
    SEVERITY_SOFT: "amber",
    SEVERITY_HARD: "red",
    SEVERITY_UNKNOWN: "gray",
}


@dataclass(slots=True, frozen=True)
class AttemptDetails:
    """A recorded attempt decorated for review screens."""

    attempt: CheatAttempt
    label: str
    severity: str
    color: str


def _as_known_type(attempt_type: CheatAttemptType | str) -> CheatAttemptType | None:
    try:
        return CheatAttemptType(attempt_type)
    except ValueError:
        return None


def label(attempt_type: CheatAttemptType | str) -> str:
    known = _as_known_type(attempt_type)
    if known is None:
        return UNKNOWN_ISSUE_LABEL
    return _LABELS[known]


def severity(attempt_type: CheatAttemptType | str) -> str:
    known = _as_known_type(attempt_type)
    if known is None:
        return SEVERITY_UNKNOWN
    return _SEVERITIES[known]


class IntegrityLog:
    """Append-only per-student attempt history stored on the quiz itself."""

    def record_attempt(self, quiz: Quiz, student_id: str, attempt: CheatAttempt) -> int:
        """Append an attempt and return the student's new attempt count."""
        self.ensure_in_order(quiz, student_id, attempt.timestamp)
        if quiz.cheating_attempts is None:
            quiz.cheating_attempts = {}
        attempts = quiz.cheating_attempts.setdefault(student_id, [])
        attempts.append(attempt)
        logger.info(
            "Recorded %s for student %s on quiz %s (%d total)",
            getattr(attempt.type, "value", attempt.type),
            student_id,
            quiz.quiz_id,
            len(attempts),
        )
        return len(attempts)

    @staticmethod
    def ensure_in_order(quiz: Quiz, student_id: str, at: datetime) -> None:
        """Raise ValueError if ``at`` precedes the student's last recorded attempt."""
        attempts = (quiz.cheating_attempts or {}).get(student_id)
        if attempts and at < attempts[-1].timestamp:
            raise ValueError(
                f"Attempt at {at.isoformat()} precedes the last recorded attempt for student {student_id}."
            )

    @staticmethod
    def merge_histories(
        stored: dict[str, list[CheatAttempt]] | None,
        incoming: dict[str, list[CheatAttempt]] | None,
    ) -> dict[str, list[CheatAttempt]]:
        """Union of two attempt maps that never drops a stored attempt.

        Attempts only present in ``incoming`` are added and each list is kept
        in timestamp order.
        """
        merged = {student_id: list(attempts) for student_id, attempts in (stored or {}).items()}
        for student_id, attempts in (incoming or {}).items():
            current = merged.setdefault(student_id, [])
            known = set(current)
            additions = [attempt for attempt in attempts if attempt not in known]
            if additions:
                current.extend(additions)
                current.sort(key=lambda attempt: attempt.timestamp)
        return merged

    @staticmethod
    def attempts_for(quiz: Quiz, student_id: str) -> tuple[CheatAttempt, ...]:
        return tuple((quiz.cheating_attempts or {}).get(student_id, ()))

    def has_cheating(self, quiz: Quiz, student_id: str) -> bool:
        return bool(self.attempts_for(quiz, student_id))

    @staticmethod
    def incident_count(quiz: Quiz) -> int:
        return sum(len(attempts) for attempts in (quiz.cheating_attempts or {}).values())

    @staticmethod
    def flagged_students(quiz: Quiz) -> list[str]:
        return sorted(student for student, attempts in (quiz.cheating_attempts or {}).items() if attempts)

    def describe_attempts(self, quiz: Quiz, student_id: str) -> list[AttemptDetails]:
        details = []
        for attempt in self.attempts_for(quiz, student_id):
            level = severity(attempt.type)
            details.append(
                AttemptDetails(
                    attempt=attempt,
                    label=label(attempt.type),
                    severity=level,
                    color=SEVERITY_COLORS[level],
                )
            )
        return details
