"""Conversion between document-store records and quiz domain models.

The document store keeps quizzes, results and live sessions as camelCase
dictionaries. Everything entering the core passes through these helpers so the
rest of the package only ever sees typed dataclasses.

Documents written by older clients are not always clean: timestamps may be ISO
strings or epoch milliseconds, multiple-choice answers arrive as lists, and the
denormalized ``points`` total can drift from the questions. Loading repairs
what can be repaired and rejects only what would make grading meaningless.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Mapping

from quizguard.core.models import (
    AnswerValue,
    CheatAttempt,
    CheatAttemptType,
    Choice,
    LiveStudentSession,
    Question,
    QuestionType,
    Quiz,
    QuizResult,
    SecurityLevel,
    SessionStatus,
    ShowResults,
)

logger = logging.getLogger(__name__)

_TRUE_FALSE_VALUES = ("true", "false")


class QuizDocumentError(ValueError):
    """Raised when a stored quiz document cannot be turned into a Quiz."""


def quiz_from_document(doc: Mapping[str, Any]) -> Quiz:
    _require_mapping(doc, "Quiz document")
    quiz_id = _require_str(doc, "quizId")
    questions = [_question_from_document(raw) for raw in _require_list(doc, "questions")]

    seen: set[str] = set()
    for question in questions:
        if question.question_id in seen:
            raise QuizDocumentError(f"Duplicate question id '{question.question_id}'.")
        seen.add(question.question_id)

    quiz = Quiz(
        quiz_id=quiz_id,
        title=str(doc.get("title") or ""),
        description=str(doc.get("description") or ""),
        teacher_id=str(doc.get("teacherId") or ""),
        class_ids=set(doc.get("classIds") or []),
        questions=questions,
        time_limit=_optional_positive_int(doc, "timeLimit"),
        max_attempts=_optional_positive_int(doc, "maxAttempts"),
        available_from=parse_timestamp(doc.get("availableFrom")),
        available_to=parse_timestamp(doc.get("availableTo")),
        security_level=_parse_enum(SecurityLevel, doc.get("securityLevel"), SecurityLevel.LOW),
        show_results=_parse_enum(ShowResults, doc.get("showResults"), ShowResults.IMMEDIATELY),
        randomize_questions=bool(doc.get("randomizeQuestions", False)),
        randomize_choices=bool(doc.get("randomizeChoices", False)),
        allow_review=bool(doc.get("allowReview", True)),
        proctored=bool(doc.get("proctored", False)),
        cheating_attempts={
            str(student_id): [attempt_from_document(raw) for raw in attempts or []]
            for student_id, attempts in _require_mapping(doc.get("cheatingAttempts") or {}, "cheatingAttempts").items()
        },
    )
    quiz.points = quiz.total_question_points()

    stored_points = doc.get("points")
    if stored_points is not None and stored_points != quiz.points:
        logger.warning(
            "Quiz %s stored points=%s but questions sum to %s; using the sum",
            quiz_id,
            stored_points,
            quiz.points,
        )
    return quiz


def quiz_to_document(quiz: Quiz) -> dict[str, Any]:
    return {
        "quizId": quiz.quiz_id,
        "title": quiz.title,
        "description": quiz.description,
        "teacherId": quiz.teacher_id,
        "classIds": sorted(quiz.class_ids),
        "questions": [_question_to_document(q) for q in quiz.questions],
        "timeLimit": quiz.time_limit,
        "maxAttempts": quiz.max_attempts,
        "availableFrom": _format_timestamp(quiz.available_from),
        "availableTo": _format_timestamp(quiz.available_to),
        "securityLevel": quiz.security_level.value,
        "showResults": quiz.show_results.value,
        "randomizeQuestions": quiz.randomize_questions,
        "randomizeChoices": quiz.randomize_choices,
        "allowReview": quiz.allow_review,
        "proctored": quiz.proctored,
        "points": quiz.points,
        "cheatingAttempts": {
            student_id: [attempt_to_document(a) for a in attempts]
            for student_id, attempts in quiz.cheating_attempts.items()
        },
    }


def _question_from_document(raw: Mapping[str, Any]) -> Question:
    _require_mapping(raw, "Question")
    question_id = _require_str(raw, "questionId")
    question_type = QuestionType.parse(raw.get("type"))

    points = raw.get("points")
    if not isinstance(points, int) or isinstance(points, bool) or points <= 0:
        raise QuizDocumentError(f"Question '{question_id}' must have a positive integer points value.")

    choices = [_choice_from_document(question_id, item) for item in _require_list(raw, "choices")]
    correct = _correct_answer_from_document(question_id, question_type, raw.get("correctAnswer"), choices)

    return Question(
        question_id=question_id,
        type=question_type,
        text=str(raw.get("text") or ""),
        points=points,
        choices=choices,
        correct_answer=correct,
    )


def _choice_from_document(question_id: str, item: Any) -> Choice:
    if not isinstance(item, Mapping) or item.get("choiceId") in (None, ""):
        raise QuizDocumentError(f"Question '{question_id}' has a choice without a choiceId.")
    return Choice(choice_id=str(item["choiceId"]), text=str(item.get("text") or ""))


def _correct_answer_from_document(
    question_id: str,
    question_type: QuestionType,
    raw: Any,
    choices: list[Choice],
) -> AnswerValue | None:
    choice_ids = {choice.choice_id for choice in choices}

    if question_type.has_choices and not choices:
        raise QuizDocumentError(f"Question '{question_id}' needs at least one choice.")

    if question_type is QuestionType.SINGLE_CHOICE:
        if raw is None:
            raise QuizDocumentError(f"Question '{question_id}' is missing its correct answer.")
        if str(raw) not in choice_ids:
            raise QuizDocumentError(f"Question '{question_id}' correct answer '{raw}' is not a choice.")
        return str(raw)

    if question_type is QuestionType.MULTIPLE_CHOICE:
        if not isinstance(raw, (list, tuple, set, frozenset)):
            raise QuizDocumentError(f"Question '{question_id}' needs a list of correct choice ids.")
        answer = frozenset(str(item) for item in raw)
        unknown = answer - choice_ids
        if unknown:
            raise QuizDocumentError(
                f"Question '{question_id}' references unknown choices: {', '.join(sorted(unknown))}."
            )
        return answer

    if question_type is QuestionType.TRUE_FALSE:
        value = str(raw).lower() if raw is not None else None
        if value not in _TRUE_FALSE_VALUES:
            raise QuizDocumentError(f"Question '{question_id}' correct answer must be 'true' or 'false'.")
        return value

    if question_type is QuestionType.OPEN_ENDED:
        return None

    # Unknown types are kept verbatim; grading never scores them.
    if isinstance(raw, (list, tuple, set)):
        return frozenset(str(item) for item in raw)
    return None if raw is None else str(raw)


def _question_to_document(question: Question) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "questionId": question.question_id,
        "type": question.type.value,
        "text": question.text,
        "points": question.points,
    }
    if question.choices:
        doc["choices"] = [{"choiceId": c.choice_id, "text": c.text} for c in question.choices]
    if question.correct_answer is not None:
        doc["correctAnswer"] = _answer_to_document(question.correct_answer)
    return doc


def attempt_from_document(raw: Mapping[str, Any]) -> CheatAttempt:
    _require_mapping(raw, "Cheat attempt")
    timestamp = parse_timestamp(raw.get("timestamp"))
    if timestamp is None:
        raise QuizDocumentError("Cheat attempt is missing a timestamp.")
    return CheatAttempt(
        type=_parse_enum(CheatAttemptType, raw.get("type"), str(raw.get("type") or "")),
        timestamp=timestamp,
        description=str(raw.get("description") or ""),
    )


def attempt_to_document(attempt: CheatAttempt) -> dict[str, Any]:
    attempt_type = attempt.type.value if isinstance(attempt.type, CheatAttemptType) else attempt.type
    return {
        "type": attempt_type,
        "timestamp": _format_timestamp(attempt.timestamp),
        "description": attempt.description,
    }


def result_from_document(raw: Mapping[str, Any]) -> QuizResult:
    timestamp = parse_timestamp(raw.get("timestamp"))
    if timestamp is None:
        raise QuizDocumentError("Quiz result is missing a timestamp.")
    return QuizResult(
        user_id=_require_str(raw, "userId"),
        quiz_id=_require_str(raw, "quizId"),
        answers=answers_from_document(raw.get("answers") or {}),
        score=raw.get("score") or 0,
        total_points=raw.get("totalPoints") or 0,
        completed=bool(raw.get("completed", True)),
        timestamp=timestamp,
        total_time_spent=raw.get("totalTimeSpent"),
        manual_points={str(k): v for k, v in (raw.get("manualPoints") or {}).items()},
        graded_from=parse_timestamp(raw.get("gradedFrom")),
    )


def result_to_document(result: QuizResult) -> dict[str, Any]:
    return {
        "userId": result.user_id,
        "quizId": result.quiz_id,
        "answers": {key: _answer_to_document(value) for key, value in result.answers.items()},
        "score": result.score,
        "totalPoints": result.total_points,
        "completed": result.completed,
        "timestamp": _format_timestamp(result.timestamp),
        "totalTimeSpent": result.total_time_spent,
        "manualPoints": dict(result.manual_points),
        "gradedFrom": _format_timestamp(result.graded_from),
    }


def answers_from_document(raw: Mapping[str, Any]) -> dict[str, AnswerValue]:
    answers: dict[str, AnswerValue] = {}
    for question_id, value in raw.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set, frozenset)):
            answers[str(question_id)] = frozenset(str(item) for item in value)
        else:
            answers[str(question_id)] = str(value)
    return answers


def session_from_document(raw: Mapping[str, Any]) -> LiveStudentSession:
    started_at = parse_timestamp(raw.get("startedAt"))
    last_active = parse_timestamp(raw.get("lastActive")) or started_at
    if started_at is None or last_active is None:
        raise QuizDocumentError("Live session is missing its start time.")
    return LiveStudentSession(
        student_id=_require_str(raw, "studentId"),
        student_name=str(raw.get("studentName") or ""),
        status=_parse_enum(SessionStatus, raw.get("status"), SessionStatus.ACTIVE),
        questions_answered=int(raw.get("questionsAnswered") or 0),
        started_at=started_at,
        last_active=last_active,
        cheating_attempts=[attempt_from_document(a) for a in raw.get("cheatingAttempts") or []],
    )


def session_to_document(session: LiveStudentSession) -> dict[str, Any]:
    return {
        "studentId": session.student_id,
        "studentName": session.student_name,
        "status": session.status.value,
        "questionsAnswered": session.questions_answered,
        "startedAt": _format_timestamp(session.started_at),
        "lastActive": _format_timestamp(session.last_active),
        "cheatingAttempts": [attempt_to_document(a) for a in session.cheating_attempts],
    }


def parse_timestamp(value: Any) -> datetime | None:
    """Accept ISO strings, epoch milliseconds or datetimes; return aware UTC."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as exc:
            raise QuizDocumentError(f"Invalid timestamp '{value}'.") from exc
    else:
        raise QuizDocumentError(f"Unsupported timestamp value {value!r}.")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _answer_to_document(value: AnswerValue) -> str | list[str]:
    if isinstance(value, frozenset):
        return sorted(value)
    return value


def _parse_enum(enum_type, value, default):
    try:
        return enum_type(value)
    except ValueError:
        return default


def _require_str(doc: Mapping[str, Any], key: str) -> str:
    value = doc.get(key)
    if value is None or str(value).strip() == "":
        raise QuizDocumentError(f"Document is missing '{key}'.")
    return str(value)


def _require_mapping(value: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise QuizDocumentError(f"{what} must be an object, got {type(value).__name__}.")
    return value


def _require_list(doc: Mapping[str, Any], key: str) -> list[Any]:
    value = doc.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise QuizDocumentError(f"'{key}' must be a list.")
    return value


def _optional_positive_int(doc: Mapping[str, Any], key: str) -> int | None:
    """Read an optional limit; missing, null or zero mean unlimited."""
    value = doc.get(key)
    if value in (None, ""):
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise QuizDocumentError(f"'{key}' must be a whole number.")
    try:
        number = float(value)
    except ValueError as exc:
        raise QuizDocumentError(f"'{key}' must be a whole number.") from exc
    if number < 0 or not number.is_integer():
        raise QuizDocumentError(f"'{key}' must be a non-negative whole number.")
    return int(number) or None
