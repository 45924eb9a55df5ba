from __future__ import annotations

from datetime import datetime, timezone

import pytest

from quizguard.core.models import CheatAttemptType, QuestionType, SecurityLevel
from quizguard.core.quiz_loader import (
    QuizDocumentError,
    parse_timestamp,
    quiz_from_document,
    quiz_to_document,
    result_from_document,
    result_to_document,
    session_from_document,
)


def test_points_are_recomputed_from_questions(quiz_document, caplog):
    quiz = quiz_from_document(quiz_document)

    assert quiz.points == 10
    assert quiz.points_consistent()
    assert "using the sum" in caplog.text


def test_question_shapes_are_loaded(quiz_document):
    quiz = quiz_from_document(quiz_document)

    assert quiz.security_level is SecurityLevel.HIGH
    assert quiz.class_ids == {"7a", "7b"}
    assert quiz.question_by_id("q3").correct_answer == frozenset({"m1", "m2"})
    assert quiz.question_by_id("q4").correct_answer is None
    assert quiz.cheating_attempts["s1"][0].type is CheatAttemptType.TAB_SWITCH


def test_unknown_question_type_is_preserved(quiz_document):
    quiz_document["questions"].append(
        {"questionId": "q5", "type": "matching", "text": "Match", "points": 1, "correctAnswer": "x"}
    )

    quiz = quiz_from_document(quiz_document)

    assert quiz.question_by_id("q5").type is QuestionType.UNKNOWN


@pytest.mark.parametrize(
    "question",
    [
        {"questionId": "bad", "type": "singleChoice", "text": "?", "points": 1, "choices": [], "correctAnswer": "a"},
        {
            "questionId": "bad",
            "type": "singleChoice",
            "text": "?",
            "points": 1,
            "choices": [{"choiceId": "a", "text": "A"}],
            "correctAnswer": "b",
        },
        {
            "questionId": "bad",
            "type": "multipleChoice",
            "text": "?",
            "points": 1,
            "choices": [{"choiceId": "a", "text": "A"}],
            "correctAnswer": ["a", "z"],
        },
        {"questionId": "bad", "type": "trueFalse", "text": "?", "points": 1, "correctAnswer": "maybe"},
        {"questionId": "bad", "type": "openEnded", "text": "?", "points": 0},
    ],
)
def test_malformed_questions_are_rejected(quiz_document, question):
    quiz_document["questions"] = [question]

    with pytest.raises(QuizDocumentError):
        quiz_from_document(quiz_document)


def test_duplicate_question_ids_are_rejected(quiz_document):
    quiz_document["questions"].append(dict(quiz_document["questions"][0]))

    with pytest.raises(QuizDocumentError, match="Duplicate"):
        quiz_from_document(quiz_document)


def test_missing_cheating_map_is_empty(quiz_document):
    del quiz_document["cheatingAttempts"]

    assert quiz_from_document(quiz_document).cheating_attempts == {}


def test_quiz_document_round_trip_keeps_answers_sorted(quiz_document):
    document = quiz_to_document(quiz_from_document(quiz_document))

    assert document["points"] == 10
    assert document["questions"][2]["correctAnswer"] == ["m1", "m2"]
    assert document["cheatingAttempts"]["s1"][0]["type"] == "tab_switch"


def test_result_documents_convert_list_answers_to_sets():
    result = result_from_document(
        {
            "userId": "s1",
            "quizId": "quiz-1",
            "answers": {"q1": "true", "q3": ["m2", "m1"], "q9": None},
            "score": 6,
            "totalPoints": 10,
            "completed": True,
            "timestamp": 1709283600000,
        }
    )

    assert result.answers == {"q1": "true", "q3": frozenset({"m1", "m2"})}
    assert result.timestamp == datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
    assert result_to_document(result)["answers"]["q3"] == ["m1", "m2"]


def test_session_document_defaults():
    session = session_from_document(
        {"studentId": "s1", "studentName": "Ana", "status": "bogus", "startedAt": "2024-03-01T09:00:00"}
    )

    assert session.status.value == "active"
    assert session.last_active == session.started_at
    assert session.started_at.tzinfo is timezone.utc


def test_parse_timestamp_rejects_garbage():
    assert parse_timestamp(None) is None
    with pytest.raises(QuizDocumentError):
        parse_timestamp("yesterday")


@pytest.mark.parametrize(
    "mutate",
    [
        lambda doc: doc["questions"].append("not a question"),
        lambda doc: doc["questions"][1]["choices"].append({"text": "no id"}),
        lambda doc: doc["questions"][1]["choices"].append("c3"),
        lambda doc: doc.update(questions={"q1": {}}),
        lambda doc: doc.update(cheatingAttempts=["s1"]),
        lambda doc: doc["cheatingAttempts"]["s1"].append("tab_switch"),
        lambda doc: doc.update(timeLimit="soon"),
        lambda doc: doc.update(maxAttempts=-1),
    ],
)
def test_structurally_broken_documents_raise_document_error(quiz_document, mutate):
    mutate(quiz_document)

    with pytest.raises(QuizDocumentError):
        quiz_from_document(quiz_document)


def test_limits_are_read_and_zero_means_unlimited(quiz_document):
    quiz_document.update(timeLimit=30, maxAttempts=0, availableFrom="2024-03-01T08:00:00Z")

    quiz = quiz_from_document(quiz_document)

    assert quiz.time_limit == 30
    assert quiz.max_attempts is None
    assert quiz.available_from == datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)


def test_result_documents_keep_manual_grading_fields():
    document = {
        "userId": "s1",
        "quizId": "quiz-1",
        "answers": {"q4": "essay"},
        "score": 4,
        "totalPoints": 10,
        "timestamp": "2024-03-01T09:10:00Z",
        "manualPoints": {"q4": 4},
        "gradedFrom": "2024-03-01T09:00:00Z",
    }

    result = result_from_document(document)

    assert result.manual_points == {"q4": 4}
    assert result.graded_from == datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
    assert result_to_document(result)["gradedFrom"] == "2024-03-01T09:00:00+00:00"
