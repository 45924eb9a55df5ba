"""Answer correctness, score aggregation and answer display."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Mapping

from quizguard.constants.quiz_constants import (
    EXCELLENT_SCORE_THRESHOLD,
    FALSE_LABEL,
    GOOD_SCORE_THRESHOLD,
    LOW_SCORE_THRESHOLD,
    NO_ANSWER_PLACEHOLDER,
    NOT_AVAILABLE,
    TRUE_LABEL,
    UNKNOWN_CHOICE_PLACEHOLDER,
)
from quizguard.core.models import AnswerValue, Question, QuestionType, Quiz

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SubmissionScore:
    """Outcome of grading one answer map against a quiz."""

    score: float
    total_points: int
    ungraded_question_ids: tuple[str, ...] = ()
    manual_points: dict[str, float] = field(default_factory=dict)

    @property
    def percentage(self) -> float | None:
        return percentage(self.score, self.total_points)


def is_correct(question: Question, submitted_answer: AnswerValue | None) -> bool | None:
    """Judge one answer.

    Returns ``True``/``False`` for auto-gradable questions and ``None`` for
    open-ended questions, which always need a human grader. Unknown question
    types are judged incorrect.
    """
    question_type = question.type

    if question_type is QuestionType.OPEN_ENDED:
        return None

    if question_type in (QuestionType.TRUE_FALSE, QuestionType.SINGLE_CHOICE):
        if not isinstance(submitted_answer, str) or not submitted_answer:
            return False
        return submitted_answer == question.correct_answer

    if question_type is QuestionType.MULTIPLE_CHOICE:
        if not isinstance(submitted_answer, frozenset) or not isinstance(question.correct_answer, frozenset):
            return False
        if len(submitted_answer) != len(question.correct_answer):
            return False
        return submitted_answer == question.correct_answer

    logger.debug("Question %s has unsupported type %r; judged incorrect", question.question_id, question_type)
    return False


def score_submission(quiz: Quiz, answers: Mapping[str, AnswerValue]) -> SubmissionScore:
    score = 0
    ungraded: list[str] = []
    for question in quiz.questions:
        verdict = is_correct(question, answers.get(question.question_id))
        if verdict is None:
            ungraded.append(question.question_id)
        elif verdict:
            score += question.points
    return SubmissionScore(
        score=score,
        total_points=quiz.total_question_points(),
        ungraded_question_ids=tuple(ungraded),
    )


def apply_manual_grades(
    quiz: Quiz,
    answers: Mapping[str, AnswerValue],
    manual_points: Mapping[str, float],
) -> SubmissionScore:
    """Add teacher-assigned points for ungraded questions to the automatic score."""
    automatic = score_submission(quiz, answers)
    pending = set(automatic.ungraded_question_ids)
    score = automatic.score
    awarded_points: dict[str, float] = {}

    for question_id, awarded in manual_points.items():
        if question_id not in pending:
            logger.debug("Ignoring manual grade for auto-graded or unknown question %s", question_id)
            continue
        question = quiz.question_by_id(question_id)
        points = min(max(awarded, 0), question.points)
        awarded_points[question_id] = points
        score += points
        pending.discard(question_id)

    return SubmissionScore(
        score=score,
        total_points=automatic.total_points,
        ungraded_question_ids=tuple(q for q in automatic.ungraded_question_ids if q in pending),
        manual_points=awarded_points,
    )


def percentage(score: float, total_points: int) -> float | None:
    if total_points <= 0:
        return None
    return 100 * score / total_points


def format_percentage(value: float | None) -> str:
    if value is None:
        return NOT_AVAILABLE
    return f"{value:.1f}%"


def score_band(value: float | None) -> str:
    if value is None or value < LOW_SCORE_THRESHOLD:
        return "low"
    if value >= EXCELLENT_SCORE_THRESHOLD:
        return "excellent"
    if value >= GOOD_SCORE_THRESHOLD:
        return "good"
    return "fair"


def render_answer(question: Question, answer: AnswerValue | None) -> str:
    """Human-readable form of a stored answer; never raises on bad references."""
    if answer is None or answer == "" or answer == frozenset():
        return NO_ANSWER_PLACEHOLDER

    question_type = question.type
    if question_type is QuestionType.TRUE_FALSE:
        if answer == "true":
            return TRUE_LABEL
        if answer == "false":
            return FALSE_LABEL
        return NO_ANSWER_PLACEHOLDER

    if question_type is QuestionType.SINGLE_CHOICE:
        if not isinstance(answer, str):
            return NO_ANSWER_PLACEHOLDER
        text = question.choice_text(answer)
        return UNKNOWN_CHOICE_PLACEHOLDER if text is None else text

    if question_type is QuestionType.MULTIPLE_CHOICE:
        if not isinstance(answer, frozenset):
            return NO_ANSWER_PLACEHOLDER
        return _render_choice_set(question, answer)

    if question_type is QuestionType.OPEN_ENDED:
        return answer if isinstance(answer, str) else NO_ANSWER_PLACEHOLDER

    return NO_ANSWER_PLACEHOLDER


def render_correct_answer(question: Question) -> str | None:
    if question.type is QuestionType.OPEN_ENDED:
        return None
    return render_answer(question, question.correct_answer)


def _render_choice_set(question: Question, answer: frozenset[str]) -> str:
    # Known choices in question order, then unresolved ids.
    known = [choice.text for choice in question.choices if choice.choice_id in answer]
    known_ids = {choice.choice_id for choice in question.choices}
    missing = [UNKNOWN_CHOICE_PLACEHOLDER for choice_id in sorted(answer) if choice_id not in known_ids]
    return ", ".join(known + missing)
