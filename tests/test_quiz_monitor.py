from __future__ import annotations

from datetime import timedelta

import pytest

from quizguard.core.models import (
    AvailabilityStatus,
    CheatAttempt,
    CheatAttemptType,
    LiveStudentSession,
    SecurityLevel,
    SessionStatus,
)
from quizguard.core.quiz_monitor import QuizMonitor
from quizguard.core.services.availability import SubmissionRejected
from quizguard.core.services.security_policy import FocusEvent

from conftest import BASE_TIME, build_quiz


@pytest.fixture
def monitor(full_quiz, directory) -> QuizMonitor:
    monitor = QuizMonitor(directory=directory)
    monitor.add_quiz(full_quiz)
    return monitor


def test_monitoring_flow(monitor):
    monitor.monitor_quiz("quiz-1")
    monitor.record_progress("quiz-1", "s1", 1, at=BASE_TIME)
    monitor.record_progress("quiz-1", "s2", 2, at=BASE_TIME)
    monitor.record_attempt("quiz-1", "s2", CheatAttempt(CheatAttemptType.TAB_SWITCH, BASE_TIME))

    view = monitor.refresh_monitor("quiz-1", at=BASE_TIME + timedelta(minutes=1))

    names = {p.session.student_id: p.session.student_name for p in view.active_students}
    assert names == {"s1": "Ana Ivanova", "s2": "Boris Petrov"}
    assert [c.student_id for c in view.suspected_cheaters] == ["s2"]
    assert view.suspected_cheaters[0].status is SessionStatus.SUSPECTED_CHEATING

    monitor.submit_answers("quiz-1", "s1", {"q1": "true"}, at=BASE_TIME + timedelta(minutes=2))
    view = monitor.refresh_monitor("quiz-1", at=BASE_TIME + timedelta(minutes=3))

    assert [p.session.student_id for p in view.active_students] == ["s2"]
    assert view.stats.completed == 1


def test_submission_is_graded_and_stored(monitor):
    result = monitor.submit_answers("quiz-1", "s1", {"q1": "true", "q2": "c2"}, total_time_spent=90, at=BASE_TIME)

    assert result.score == 2
    assert result.total_points == 14
    assert monitor.review_student("quiz-1", "s1").result == result


def test_manual_grading_supersedes_latest_result(monitor):
    monitor.submit_answers("quiz-1", "s1", {"q1": "true", "q4": "essay"}, at=BASE_TIME)

    graded = monitor.grade_manually("quiz-1", "s1", {"q4": 4}, at=BASE_TIME + timedelta(minutes=5))

    assert graded.score == 6
    assert monitor.review_student("quiz-1", "s1").result == graded
    with pytest.raises(KeyError):
        monitor.grade_manually("quiz-1", "s2", {"q4": 1})


def test_monitoring_a_new_quiz_stops_the_previous_one(monitor, scenario_quiz):
    scenario_quiz.quiz_id = "quiz-2"
    monitor.add_quiz(scenario_quiz)

    monitor.monitor_quiz("quiz-1")
    monitor.monitor_quiz("quiz-2")

    assert monitor.get_monitored_quiz_id() == "quiz-2"
    with pytest.raises(RuntimeError):
        monitor.refresh_monitor("quiz-1")
    assert monitor.stop_monitoring()
    assert monitor.get_monitored_quiz_id() is None


def test_stale_snapshot_is_ignored(monitor):
    monitor.monitor_quiz("quiz-1")
    monitor.record_progress("quiz-1", "s1", 1, at=BASE_TIME)

    view = monitor.refresh_monitor("quiz-1", at=BASE_TIME + timedelta(hours=4))

    assert view.active_students == ()


def test_focus_events_follow_security_level(directory):
    quiz = build_quiz([], quiz_id="quiz-x", security_level=SecurityLevel.EXTREME)
    monitor = QuizMonitor(directory=directory)
    monitor.add_quiz(quiz)

    decision = monitor.report_focus_event("quiz-x", "s1", FocusEvent.WINDOW_BLUR, at=BASE_TIME)

    assert decision.auto_submit
    assert len(monitor.get_quiz("quiz-x").cheating_attempts["s1"]) == 1


def test_unknown_quiz_raises_key_error(monitor):
    with pytest.raises(KeyError):
        monitor.record_progress("missing", "s1", 0)


def test_inconsistent_points_are_rejected(full_quiz):
    full_quiz.points = 1

    with pytest.raises(ValueError):
        QuizMonitor().add_quiz(full_quiz)


def test_review_quiz_filters_and_sorts(monitor):
    monitor.submit_answers("quiz-1", "s1", {"q1": "true", "q2": "c1", "q3": frozenset({"m1", "m2"})}, at=BASE_TIME)
    monitor.submit_answers("quiz-1", "s2", {}, at=BASE_TIME + timedelta(seconds=1))

    rows = monitor.review_quiz("quiz-1", mode="low_score", sort_key="score")

    assert [row.user_id for row in rows] == ["s2"]


def test_reloading_a_quiz_keeps_recorded_attempts(directory, quiz_document):
    monitor = QuizMonitor(directory=directory)
    monitor.load_quiz_document(quiz_document)
    monitor.record_attempt("quiz-doc", "s2", CheatAttempt(CheatAttemptType.COPY_DETECTED, BASE_TIME))

    quiz = monitor.load_quiz_document(quiz_document)

    assert len(quiz.cheating_attempts["s2"]) == 1
    assert len(quiz.cheating_attempts["s1"]) == 1


def test_rejected_focus_event_does_not_count_towards_escalation(directory):
    monitor = QuizMonitor(directory=directory)
    monitor.add_quiz(build_quiz([], quiz_id="quiz-h", security_level=SecurityLevel.HIGH))
    monitor.record_attempt("quiz-h", "s1", CheatAttempt(CheatAttemptType.COPY_DETECTED, BASE_TIME + timedelta(hours=1)))

    for _ in range(2):
        with pytest.raises(ValueError):
            monitor.report_focus_event("quiz-h", "s1", FocusEvent.TAB_HIDDEN, at=BASE_TIME)
    decision = monitor.report_focus_event("quiz-h", "s1", FocusEvent.TAB_HIDDEN, at=BASE_TIME + timedelta(hours=2))

    assert not decision.flagged
    assert len(monitor.get_quiz("quiz-h").cheating_attempts["s1"]) == 2


def test_attempt_before_first_ping_reaches_the_monitor(monitor):
    monitor.monitor_quiz("quiz-1")
    monitor.record_attempt("quiz-1", "s1", CheatAttempt(CheatAttemptType.TAB_SWITCH, BASE_TIME))

    session = monitor.record_progress("quiz-1", "s1", 1, at=BASE_TIME + timedelta(seconds=30))
    view = monitor.refresh_monitor("quiz-1", at=BASE_TIME + timedelta(minutes=1))

    assert session.status is SessionStatus.SUSPECTED_CHEATING
    assert [c.student_id for c in view.suspected_cheaters] == ["s1"]


def test_submissions_outside_the_window_are_rejected(monitor):
    quiz = monitor.get_quiz("quiz-1")
    quiz.available_from = BASE_TIME
    quiz.available_to = BASE_TIME + timedelta(hours=1)

    assert monitor.quiz_availability("quiz-1", at=BASE_TIME - timedelta(minutes=1)) is AvailabilityStatus.UPCOMING
    with pytest.raises(SubmissionRejected):
        monitor.submit_answers("quiz-1", "s1", {}, at=BASE_TIME - timedelta(minutes=1))
    with pytest.raises(SubmissionRejected):
        monitor.submit_answers("quiz-1", "s1", {}, at=BASE_TIME + timedelta(hours=2))
    assert monitor.submit_answers("quiz-1", "s1", {}, at=BASE_TIME + timedelta(minutes=5)).completed


def test_attempt_limit_ignores_regraded_copies(monitor):
    monitor.get_quiz("quiz-1").max_attempts = 2
    monitor.submit_answers("quiz-1", "s1", {"q4": "essay"}, at=BASE_TIME)
    monitor.grade_manually("quiz-1", "s1", {"q4": 2}, at=BASE_TIME + timedelta(minutes=1))
    monitor.submit_answers("quiz-1", "s1", {}, at=BASE_TIME + timedelta(minutes=2))

    with pytest.raises(SubmissionRejected):
        monitor.submit_answers("quiz-1", "s1", {}, at=BASE_TIME + timedelta(minutes=3))


def test_manual_points_show_per_question_and_accumulate(monitor):
    monitor.submit_answers("quiz-1", "s1", {"q1": "true", "q4": "essay"}, at=BASE_TIME)
    monitor.grade_manually("quiz-1", "s1", {"q4": 3}, at=BASE_TIME + timedelta(minutes=1))
    regraded = monitor.grade_manually("quiz-1", "s1", {}, at=BASE_TIME + timedelta(minutes=2))

    review = monitor.review_student("quiz-1", "s1")
    awarded = {q.question_id: q.points_awarded for q in review.questions}

    assert regraded.score == 5
    assert regraded.graded_from == BASE_TIME
    assert awarded == {"q1": 2, "q2": 0, "q3": 0, "q4": 3}


def test_open_ended_points_are_pending_until_graded(monitor):
    monitor.submit_answers("quiz-1", "s1", {"q4": "essay"}, at=BASE_TIME)

    q4 = monitor.review_student("quiz-1", "s1").questions[3]

    assert q4.points_awarded is None


def test_load_live_sessions_feeds_the_monitor(monitor):
    monitor.monitor_quiz("quiz-1")
    sessions = [LiveStudentSession("s2", "Boris Petrov", SessionStatus.ACTIVE, 2, BASE_TIME, BASE_TIME)]

    assert monitor.load_live_sessions("quiz-1", sessions) == 1
    view = monitor.refresh_monitor("quiz-1", at=BASE_TIME + timedelta(minutes=1))

    assert [(p.session.student_id, p.progress) for p in view.active_students] == [("s2", 50)]
