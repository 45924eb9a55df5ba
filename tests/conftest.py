from __future__ import annotations

from datetime import datetime, timezone

import pytest

from quizguard.core.models import Choice, Question, QuestionType, Quiz, StudentRecord
from quizguard.core.stores import InMemoryStudentDirectory

BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def build_quiz(questions: list[Question], quiz_id: str = "quiz-1", **kwargs) -> Quiz:
    quiz = Quiz(quiz_id=quiz_id, title="Fractions", teacher_id="teacher-1", questions=questions, **kwargs)
    quiz.points = quiz.total_question_points()
    return quiz


@pytest.fixture
def true_false_question() -> Question:
    return Question(
        question_id="q1",
        type=QuestionType.TRUE_FALSE,
        text="Is $1/2 = 2/4$?",
        points=2,
        correct_answer="true",
    )


@pytest.fixture
def single_choice_question() -> Question:
    return Question(
        question_id="q2",
        type=QuestionType.SINGLE_CHOICE,
        text="Pick A",
        points=3,
        choices=[Choice("c1", "A"), Choice("c2", "B")],
        correct_answer="c1",
    )


@pytest.fixture
def multiple_choice_question() -> Question:
    return Question(
        question_id="q3",
        type=QuestionType.MULTIPLE_CHOICE,
        text="Pick the even numbers",
        points=4,
        choices=[Choice("m1", "2"), Choice("m2", "4"), Choice("m3", "5")],
        correct_answer=frozenset({"m1", "m2"}),
    )


@pytest.fixture
def open_ended_question() -> Question:
    return Question(
        question_id="q4",
        type=QuestionType.OPEN_ENDED,
        text="Explain equivalent fractions.",
        points=5,
    )


@pytest.fixture
def scenario_quiz(true_false_question, single_choice_question) -> Quiz:
    return build_quiz([true_false_question, single_choice_question])


@pytest.fixture
def full_quiz(true_false_question, single_choice_question, multiple_choice_question, open_ended_question) -> Quiz:
    return build_quiz(
        [true_false_question, single_choice_question, multiple_choice_question, open_ended_question]
    )


@pytest.fixture
def directory() -> InMemoryStudentDirectory:
    return InMemoryStudentDirectory(
        [
            StudentRecord("s1", "Ana", "Ivanova"),
            StudentRecord("s2", "Boris", "Petrov"),
        ]
    )


@pytest.fixture
def quiz_document() -> dict:
    return {
        "quizId": "quiz-doc",
        "title": "Geometry",
        "teacherId": "teacher-1",
        "classIds": ["7a", "7b"],
        "securityLevel": "high",
        "points": 99,
        "questions": [
            {"questionId": "q1", "type": "trueFalse", "text": "A square is a rectangle.", "points": 2, "correctAnswer": "true"},
            {
                "questionId": "q2",
                "type": "singleChoice",
                "text": "Angles in a triangle sum to",
                "points": 3,
                "choices": [{"choiceId": "c1", "text": "180"}, {"choiceId": "c2", "text": "360"}],
                "correctAnswer": "c1",
            },
            {
                "questionId": "q3",
                "type": "multipleChoice",
                "text": "Which are polygons?",
                "points": 4,
                "choices": [
                    {"choiceId": "m1", "text": "Square"},
                    {"choiceId": "m2", "text": "Triangle"},
                    {"choiceId": "m3", "text": "Circle"},
                ],
                "correctAnswer": ["m2", "m1"],
            },
            {"questionId": "q4", "type": "openEnded", "text": "Define a polygon.", "points": 1},
        ],
        "cheatingAttempts": {
            "s1": [{"type": "tab_switch", "timestamp": "2024-03-01T09:05:00Z", "description": "User switched to another tab"}],
        },
    }
