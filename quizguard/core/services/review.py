"""Service building post-hoc review read models for quizzes and students."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Sequence

from quizguard.constants.quiz_constants import (
    LOW_SCORE_THRESHOLD,
    NOT_AVAILABLE,
    UNKNOWN_STUDENT_PLACEHOLDER,
)
from quizguard.core.grading import (
    is_correct,
    percentage,
    render_answer,
    render_correct_answer,
    score_band,
)
from quizguard.core.markdown_renderer import renderer
from quizguard.core.models import CheatAttempt, Quiz, QuizResult
from quizguard.core.services.integrity_log import AttemptDetails, IntegrityLog
from quizguard.core.services.session_aggregator import best_results, latest_result
from quizguard.core.stores import StudentDirectory

logger = logging.getLogger(__name__)

FILTER_ALL = "all"
FILTER_CHEATING = "cheating"
FILTER_LOW_SCORE = "low_score"

SORT_DATE = "date"
SORT_SCORE = "score"
SORT_CHEATING = "cheating"


@dataclass(slots=True, frozen=True)
class QuizSummary:
    quiz_id: str
    title: str
    total_points: int
    submissions: int
    average_score: float
    cheating_incidents: int


@dataclass(slots=True, frozen=True)
class SubmissionRow:
    user_id: str
    student_name: str
    result: QuizResult
    cheating_attempts: tuple[CheatAttempt, ...]
    percentage: float | None
    band: str


@dataclass(slots=True, frozen=True)
class QuestionReview:
    question_id: str
    prompt_html: str
    points: int
    answer_display: str
    correct_answer_display: str | None
    correct: bool | None
    # None while an open-ended answer awaits manual grading.
    points_awarded: float | None


@dataclass(slots=True, frozen=True)
class StudentReview:
    quiz_id: str
    student_id: str
    student_name: str
    result: QuizResult | None
    questions: tuple[QuestionReview, ...]
    attempts: tuple[AttemptDetails, ...]
    percentage: float | None


def resolve_student_name(directory: StudentDirectory, user_id: str) -> str:
    record = directory.get(user_id)
    if record is None or not record.display_name:
        return UNKNOWN_STUDENT_PLACEHOLDER
    return record.display_name


def summarize_quiz(quiz: Quiz, results: Sequence[QuizResult]) -> QuizSummary:
    submissions = best_results(results)
    average = sum(r.score for r in submissions) / len(submissions) if submissions else 0.0
    return QuizSummary(
        quiz_id=quiz.quiz_id,
        title=quiz.title,
        total_points=quiz.points,
        submissions=len(submissions),
        average_score=average,
        cheating_incidents=IntegrityLog.incident_count(quiz),
    )


def review_submissions(
    quiz: Quiz,
    results: Sequence[QuizResult],
    directory: StudentDirectory,
) -> list[SubmissionRow]:
    """One row per student built from that student's most recent result."""
    by_student: dict[str, list[QuizResult]] = {}
    for result in results:
        by_student.setdefault(result.user_id, []).append(result)

    rows = []
    for user_id, student_results in by_student.items():
        result = latest_result(student_results)
        value = percentage(result.score, result.total_points)
        rows.append(
            SubmissionRow(
                user_id=user_id,
                student_name=resolve_student_name(directory, user_id),
                result=result,
                cheating_attempts=IntegrityLog.attempts_for(quiz, user_id),
                percentage=value,
                band=score_band(value),
            )
        )
    return rows


def filter_submissions(rows: Sequence[SubmissionRow], mode: str = FILTER_ALL) -> list[SubmissionRow]:
    if mode == FILTER_CHEATING:
        return [row for row in rows if row.cheating_attempts]
    if mode == FILTER_LOW_SCORE:
        return [row for row in rows if row.percentage is None or row.percentage < LOW_SCORE_THRESHOLD]
    if mode != FILTER_ALL:
        raise ValueError(f"Unknown submission filter '{mode}'.")
    return list(rows)


def sort_submissions(rows: Sequence[SubmissionRow], key: str = SORT_DATE) -> list[SubmissionRow]:
    if key == SORT_DATE:
        return sorted(rows, key=lambda row: row.result.timestamp, reverse=True)
    if key == SORT_SCORE:
        return sorted(rows, key=lambda row: row.percentage if row.percentage is not None else -1, reverse=True)
    if key == SORT_CHEATING:
        return sorted(rows, key=lambda row: len(row.cheating_attempts), reverse=True)
    raise ValueError(f"Unknown submission sort key '{key}'.")


def review_student(
    quiz: Quiz,
    results: Sequence[QuizResult],
    student_id: str,
    directory: StudentDirectory,
) -> StudentReview:
    student_results = [r for r in results if r.user_id == student_id]
    result = latest_result(student_results)
    if len(student_results) > 1:
        logger.debug(
            "Student %s has %d results for quiz %s; using the latest",
            student_id,
            len(student_results),
            quiz.quiz_id,
        )
    answers = result.answers if result is not None else {}
    manual_points = result.manual_points if result is not None else {}

    questions = []
    for question in quiz.questions:
        answer = answers.get(question.question_id)
        verdict = is_correct(question, answer)
        questions.append(
            QuestionReview(
                question_id=question.question_id,
                prompt_html=renderer.render_fragment(question.text),
                points=question.points,
                answer_display=render_answer(question, answer),
                correct_answer_display=render_correct_answer(question),
                correct=verdict,
                points_awarded=_points_awarded(question.points, verdict, manual_points.get(question.question_id)),
            )
        )

    return StudentReview(
        quiz_id=quiz.quiz_id,
        student_id=student_id,
        student_name=resolve_student_name(directory, student_id),
        result=result,
        questions=tuple(questions),
        attempts=tuple(IntegrityLog().describe_attempts(quiz, student_id)),
        percentage=percentage(result.score, result.total_points) if result is not None else None,
    )


def _points_awarded(points: int, verdict: bool | None, manual: float | None) -> float | None:
    if verdict is None:
        return manual
    return points if verdict else 0


def format_duration(seconds: int | None) -> str:
    if not seconds:
        return NOT_AVAILABLE
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes:02d}:{secs:02d}"


def format_timestamp(value: datetime | None) -> str:
    if value is None:
        return NOT_AVAILABLE
    return value.strftime("%d.%m.%Y %H:%M:%S")
