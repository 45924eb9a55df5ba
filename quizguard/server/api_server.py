"""FastAPI server exposing student activity and teacher monitoring endpoints."""

from __future__ import annotations

from datetime import datetime, timezone
from threading import Thread
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field
import uvicorn

from quizguard.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from quizguard.core.grading import format_percentage, percentage
from quizguard.core.models import AnswerValue, CheatAttempt, CheatAttemptType
from quizguard.core.quiz_loader import (
    QuizDocumentError,
    answers_from_document,
    attempt_to_document,
    quiz_to_document,
    result_to_document,
    session_from_document,
    session_to_document,
)
from quizguard.core.quiz_monitor import QuizMonitor
from quizguard.core.services.availability import SubmissionRejected, time_remaining
from quizguard.core.services.review import (
    FILTER_ALL,
    SORT_DATE,
    format_duration,
    format_timestamp,
)
from quizguard.core.services.security_policy import FocusEvent
from quizguard.core.services.session_aggregator import MonitorView


class ProgressPayload(BaseModel):
    """Progress ping sent by a student client."""

    student_id: str
    questions_answered: int = Field(ge=0)


class AttemptPayload(BaseModel):
    """Cheat attempt detected by a student client."""

    student_id: str
    type: CheatAttemptType
    description: str = ""
    timestamp: datetime | None = None


class FocusPayload(BaseModel):
    student_id: str
    event: FocusEvent
    timestamp: datetime | None = None


class SubmissionPayload(BaseModel):
    """Answers keyed by question id; lists are multiple-choice selections."""

    student_id: str
    answers: dict[str, str | list[str]] = Field(default_factory=dict)
    completed: bool = True
    total_time_spent: int | None = Field(default=None, ge=0)


class ManualGradePayload(BaseModel):
    points: dict[str, float]


class IdlePayload(BaseModel):
    student_id: str


def _get_monitor_dependency(monitor: QuizMonitor):
    def dependency() -> QuizMonitor:
        return monitor

    return dependency


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _serialize_view(view: MonitorView) -> dict[str, object]:
    return {
        "quiz_id": view.quiz_id,
        "refreshed_at": view.refreshed_at.isoformat(),
        "active_students": [
            {**session_to_document(item.session), "progress": item.progress}
            for item in view.active_students
        ],
        "suspected_cheaters": [session_to_document(session) for session in view.suspected_cheaters],
        "stats": {
            "started": view.stats.started,
            "completed": view.stats.completed,
            "in_progress": view.stats.in_progress,
        },
    }


def create_api_app(monitor: QuizMonitor) -> FastAPI:
    """Create a FastAPI application wired to the provided quiz monitor."""
    app = FastAPI(title="QuizGuard API", version="0.1.0")
    monitor_dep = _get_monitor_dependency(monitor)

    def require_quiz(manager: QuizMonitor, quiz_id: str):
        try:
            return manager.get_quiz(quiz_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"Quiz {quiz_id} not found.") from exc

    @app.post("/quizzes", status_code=201)
    def load_quiz(document: dict[str, Any], manager: QuizMonitor = Depends(monitor_dep)) -> dict[str, object]:
        try:
            quiz = manager.load_quiz_document(document)
        except QuizDocumentError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return {"quiz_id": quiz.quiz_id, "points": quiz.points, "questions": len(quiz.questions)}

    @app.get("/quizzes/{quiz_id}")
    def get_quiz(quiz_id: str, manager: QuizMonitor = Depends(monitor_dep)) -> dict[str, object]:
        document = quiz_to_document(require_quiz(manager, quiz_id))
        document["availability"] = manager.quiz_availability(quiz_id).value
        return document

    @app.post("/quizzes/{quiz_id}/progress")
    def record_progress(
        quiz_id: str,
        payload: ProgressPayload,
        manager: QuizMonitor = Depends(monitor_dep),
    ) -> dict[str, object]:
        quiz = require_quiz(manager, quiz_id)
        session = manager.record_progress(quiz_id, payload.student_id, payload.questions_answered)
        remaining = time_remaining(quiz, session.started_at, datetime.now(timezone.utc))
        document = session_to_document(session)
        document["timeRemaining"] = remaining
        document["timeExpired"] = remaining == 0
        return document

    @app.post("/quizzes/{quiz_id}/idle")
    def mark_idle(quiz_id: str, payload: IdlePayload, manager: QuizMonitor = Depends(monitor_dep)) -> dict[str, object]:
        session = manager.mark_idle(quiz_id, payload.student_id)
        if session is None:
            raise HTTPException(status_code=404, detail="No live session for this student.")
        return session_to_document(session)

    @app.put("/quizzes/{quiz_id}/live-sessions")
    def load_live_sessions(
        quiz_id: str,
        documents: list[dict[str, Any]],
        manager: QuizMonitor = Depends(monitor_dep),
    ) -> dict[str, object]:
        require_quiz(manager, quiz_id)
        try:
            sessions = [session_from_document(document) for document in documents]
        except QuizDocumentError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return {"quiz_id": quiz_id, "loaded": manager.load_live_sessions(quiz_id, sessions)}

    @app.post("/quizzes/{quiz_id}/attempts", status_code=201)
    def record_attempt(
        quiz_id: str,
        payload: AttemptPayload,
        manager: QuizMonitor = Depends(monitor_dep),
    ) -> dict[str, object]:
        require_quiz(manager, quiz_id)
        attempt = CheatAttempt(
            type=payload.type,
            timestamp=_as_utc(payload.timestamp) or datetime.now(timezone.utc),
            description=payload.description,
        )
        try:
            count = manager.record_attempt(quiz_id, payload.student_id, attempt)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return {"attempt": attempt_to_document(attempt), "attempt_count": count}

    @app.post("/quizzes/{quiz_id}/focus")
    def report_focus(
        quiz_id: str,
        payload: FocusPayload,
        manager: QuizMonitor = Depends(monitor_dep),
    ) -> dict[str, object]:
        require_quiz(manager, quiz_id)
        try:
            decision = manager.report_focus_event(quiz_id, payload.student_id, payload.event, _as_utc(payload.timestamp))
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return {
            "recorded": [attempt_to_document(a) for a in decision.attempts],
            "flagged": decision.flagged,
            "auto_submit": decision.auto_submit,
        }

    @app.post("/quizzes/{quiz_id}/submissions", status_code=201)
    def submit(
        quiz_id: str,
        payload: SubmissionPayload,
        manager: QuizMonitor = Depends(monitor_dep),
    ) -> dict[str, object]:
        require_quiz(manager, quiz_id)
        answers: dict[str, AnswerValue] = answers_from_document(payload.answers)
        try:
            result = manager.submit_answers(
                quiz_id,
                payload.student_id,
                answers,
                completed=payload.completed,
                total_time_spent=payload.total_time_spent,
            )
        except SubmissionRejected as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        document = result_to_document(result)
        document["percentage"] = format_percentage(percentage(result.score, result.total_points))
        return document

    @app.post("/quizzes/{quiz_id}/students/{student_id}/grades", status_code=201)
    def grade(
        quiz_id: str,
        student_id: str,
        payload: ManualGradePayload,
        manager: QuizMonitor = Depends(monitor_dep),
    ) -> dict[str, object]:
        require_quiz(manager, quiz_id)
        try:
            result = manager.grade_manually(quiz_id, student_id, payload.points)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return result_to_document(result)

    @app.post("/quizzes/{quiz_id}/monitor", status_code=201)
    def start_monitoring(quiz_id: str, manager: QuizMonitor = Depends(monitor_dep)) -> dict[str, object]:
        require_quiz(manager, quiz_id)
        manager.monitor_quiz(quiz_id)
        return {"quiz_id": quiz_id, "monitoring": True}

    @app.delete("/quizzes/{quiz_id}/monitor")
    def stop_monitoring(quiz_id: str, manager: QuizMonitor = Depends(monitor_dep)) -> dict[str, object]:
        return {"quiz_id": quiz_id, "stopped": manager.stop_monitoring(quiz_id)}

    @app.get("/quizzes/{quiz_id}/monitor")
    def refresh_monitor(quiz_id: str, manager: QuizMonitor = Depends(monitor_dep)) -> dict[str, object]:
        require_quiz(manager, quiz_id)
        try:
            view = manager.refresh_monitor(quiz_id)
        except RuntimeError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return _serialize_view(view)

    @app.get("/quizzes/{quiz_id}/review")
    def review_quiz(
        quiz_id: str,
        mode: str = Query(FILTER_ALL, alias="filter"),
        sort_key: str = Query(SORT_DATE, alias="sort"),
        manager: QuizMonitor = Depends(monitor_dep),
    ) -> dict[str, object]:
        require_quiz(manager, quiz_id)
        try:
            rows = manager.review_quiz(quiz_id, mode=mode, sort_key=sort_key)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        summary = manager.summarize(quiz_id)
        return {
            "summary": {
                "quiz_id": summary.quiz_id,
                "title": summary.title,
                "total_points": summary.total_points,
                "submissions": summary.submissions,
                "average_score": round(summary.average_score, 2),
                "cheating_incidents": summary.cheating_incidents,
            },
            "submissions": [
                {
                    "student_id": row.user_id,
                    "student_name": row.student_name,
                    "score": row.result.score,
                    "total_points": row.result.total_points,
                    "percentage": format_percentage(row.percentage),
                    "band": row.band,
                    "submitted_at": format_timestamp(row.result.timestamp),
                    "time_spent": format_duration(row.result.total_time_spent),
                    "cheating_attempts": len(row.cheating_attempts),
                }
                for row in rows
            ],
        }

    @app.get("/quizzes/{quiz_id}/students/{student_id}/review")
    def review_student(
        quiz_id: str,
        student_id: str,
        manager: QuizMonitor = Depends(monitor_dep),
    ) -> dict[str, object]:
        require_quiz(manager, quiz_id)
        review = manager.review_student(quiz_id, student_id)
        if review.result is None:
            raise HTTPException(status_code=404, detail="No result for this student.")
        return {
            "quiz_id": review.quiz_id,
            "student_id": review.student_id,
            "student_name": review.student_name,
            "score": review.result.score,
            "total_points": review.result.total_points,
            "percentage": format_percentage(review.percentage),
            "submitted_at": format_timestamp(review.result.timestamp),
            "questions": [
                {
                    "question_id": q.question_id,
                    "prompt_html": q.prompt_html,
                    "points": q.points,
                    "answer": q.answer_display,
                    "correct_answer": q.correct_answer_display,
                    "correct": q.correct,
                    "points_awarded": q.points_awarded,
                }
                for q in review.questions
            ],
            "attempts": [
                {
                    **attempt_to_document(detail.attempt),
                    "label": detail.label,
                    "severity": detail.severity,
                    "color": detail.color,
                }
                for detail in review.attempts
            ],
        }

    return app


def start_api_server(
    monitor: QuizMonitor,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> Thread:
    """Start the FastAPI server in a background daemon thread."""
    app = create_api_app(monitor)
    config = uvicorn.Config(app=app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)

    def run_server() -> None:
        server.run()

    thread = Thread(target=run_server, name="QuizGuardApiServer", daemon=True)
    thread.start()
    return thread
