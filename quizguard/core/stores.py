"""Collaborator interfaces the core reads from, with in-memory implementations."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Protocol, Sequence

from quizguard.core.models import CheatAttempt, LiveStudentSession, Quiz, QuizResult, StudentRecord


class QuizStore(Protocol):
    def get(self, quiz_id: str) -> Quiz | None: ...

    def save(self, quiz: Quiz) -> None: ...


class ResultStore(Protocol):
    def insert(self, result: QuizResult) -> None: ...

    def for_quiz(self, quiz_id: str) -> list[QuizResult]: ...

    def for_student(self, quiz_id: str, user_id: str) -> list[QuizResult]: ...


class StudentDirectory(Protocol):
    def get(self, user_id: str) -> StudentRecord | None: ...


class LiveFeed(Protocol):
    def record_progress(
        self,
        quiz_id: str,
        student_id: str,
        student_name: str,
        questions_answered: int,
        at: datetime,
        prior_attempts: Sequence[CheatAttempt] = (),
    ) -> LiveStudentSession: ...

    def record_attempt(self, quiz_id: str, student_id: str, attempt: CheatAttempt) -> LiveStudentSession | None: ...

    def mark_idle(self, quiz_id: str, student_id: str) -> LiveStudentSession | None: ...

    def mark_submitted(self, quiz_id: str, student_id: str) -> None: ...

    def snapshot(self, quiz_id: str) -> list[LiveStudentSession]: ...

    def load_snapshot(self, quiz_id: str, sessions: Iterable[LiveStudentSession]) -> int: ...


class InMemoryQuizStore:
    def __init__(self) -> None:
        self._quizzes: dict[str, Quiz] = {}

    def get(self, quiz_id: str) -> Quiz | None:
        return self._quizzes.get(quiz_id)

    def save(self, quiz: Quiz) -> None:
        self._quizzes[quiz.quiz_id] = quiz


class InMemoryResultStore:
    """Insert-only result storage; superseded records are kept."""

    def __init__(self) -> None:
        self._results: list[QuizResult] = []

    def insert(self, result: QuizResult) -> None:
        self._results.append(result)

    def for_quiz(self, quiz_id: str) -> list[QuizResult]:
        return [r for r in self._results if r.quiz_id == quiz_id]

    def for_student(self, quiz_id: str, user_id: str) -> list[QuizResult]:
        return [r for r in self._results if r.quiz_id == quiz_id and r.user_id == user_id]


class InMemoryStudentDirectory:
    def __init__(self, students: list[StudentRecord] | None = None) -> None:
        self._students = {student.user_id: student for student in students or []}

    def get(self, user_id: str) -> StudentRecord | None:
        return self._students.get(user_id)
