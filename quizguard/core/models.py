"""Domain models for quiz grading, integrity tracking and live monitoring."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class QuestionType(str, Enum):
    """Closed set of question shapes; grading and display switch on this tag."""

    SINGLE_CHOICE = "singleChoice"
    MULTIPLE_CHOICE = "multipleChoice"
    TRUE_FALSE = "trueFalse"
    OPEN_ENDED = "openEnded"
    # Stored documents may carry a type this version does not know.
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> QuestionType:
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    @property
    def has_choices(self) -> bool:
        return self in (QuestionType.SINGLE_CHOICE, QuestionType.MULTIPLE_CHOICE)


class SecurityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXTREME = "extreme"


class ShowResults(str, Enum):
    IMMEDIATELY = "immediately"
    AFTER_DEADLINE = "after_deadline"
    MANUAL = "manual"


class CheatAttemptType(str, Enum):
    TAB_SWITCH = "tab_switch"
    WINDOW_BLUR = "window_blur"
    COPY_DETECTED = "copy_detected"
    BROWSER_CLOSE = "browser_close"
    MULTIPLE_DEVICES = "multiple_devices"
    TIME_ANOMALY = "time_anomaly"
    QUIZ_ABANDONED = "quiz_abandoned"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"
    SUBMITTED = "submitted"
    SUSPECTED_CHEATING = "suspected_cheating"


class AvailabilityStatus(str, Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    CLOSED = "closed"


# A submitted answer: one identifier or free text, or a set of choice ids.
AnswerValue = str | frozenset[str]


@dataclass(slots=True, frozen=True)
class Choice:
    choice_id: str
    text: str


@dataclass(slots=True)
class Question:
    """One assessment item. ``correct_answer`` shape depends on ``type``."""

    question_id: str
    type: QuestionType
    text: str
    points: int
    choices: list[Choice] = field(default_factory=list)
    correct_answer: AnswerValue | None = None

    def choice_text(self, choice_id: str) -> str | None:
        for choice in self.choices:
            if choice.choice_id == choice_id:
                return choice.text
        return None


@dataclass(slots=True, frozen=True)
class CheatAttempt:
    """A single detected integrity violation."""

    type: CheatAttemptType | str
    timestamp: datetime
    description: str = ""


@dataclass(slots=True)
class Quiz:
    """A named assessment owned by one teacher and targeted at classes."""

    quiz_id: str
    title: str
    teacher_id: str
    questions: list[Question] = field(default_factory=list)
    description: str = ""
    class_ids: set[str] = field(default_factory=set)
    time_limit: int | None = None  # minutes; None or 0 means unlimited
    max_attempts: int | None = None
    available_from: datetime | None = None
    available_to: datetime | None = None
    security_level: SecurityLevel = SecurityLevel.LOW
    show_results: ShowResults = ShowResults.IMMEDIATELY
    randomize_questions: bool = False
    randomize_choices: bool = False
    allow_review: bool = True
    proctored: bool = False
    points: int = 0
    cheating_attempts: dict[str, list[CheatAttempt]] = field(default_factory=dict)

    def total_question_points(self) -> int:
        return sum(question.points for question in self.questions)

    def points_consistent(self) -> bool:
        return self.points == self.total_question_points()

    def question_by_id(self, question_id: str) -> Question | None:
        return next((q for q in self.questions if q.question_id == question_id), None)


@dataclass(slots=True, frozen=True)
class QuizResult:
    """One persisted submission or progress snapshot for a quiz."""

    user_id: str
    quiz_id: str
    answers: dict[str, AnswerValue]
    score: float
    total_points: int
    completed: bool
    timestamp: datetime
    total_time_spent: int | None = None  # seconds
    # Teacher-awarded points for open-ended questions, by question id.
    manual_points: dict[str, float] = field(default_factory=dict)
    # Timestamp of the submission a regraded copy supersedes.
    graded_from: datetime | None = None


@dataclass(slots=True)
class LiveStudentSession:
    """Ephemeral view of a student currently taking a quiz."""

    student_id: str
    student_name: str
    status: SessionStatus
    questions_answered: int
    started_at: datetime
    last_active: datetime
    cheating_attempts: list[CheatAttempt] = field(default_factory=list)

    @property
    def attempt_count(self) -> int:
        return len(self.cheating_attempts)

    @property
    def is_suspected(self) -> bool:
        return self.status is SessionStatus.SUSPECTED_CHEATING or bool(self.cheating_attempts)


@dataclass(slots=True, frozen=True)
class StudentRecord:
    """Directory entry used to resolve display names."""

    user_id: str
    first_name: str
    last_name: str

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
