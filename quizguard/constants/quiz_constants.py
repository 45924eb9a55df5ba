"""Quiz-related constants shared by grading, integrity and monitoring code."""

from datetime import timedelta

NO_ANSWER_PLACEHOLDER: str = "-"
UNKNOWN_CHOICE_PLACEHOLDER: str = "(unknown choice)"
UNKNOWN_STUDENT_PLACEHOLDER: str = "Unknown student"
UNKNOWN_ISSUE_LABEL: str = "Unknown issue"
NOT_AVAILABLE: str = "N/A"

TRUE_LABEL: str = "True"
FALSE_LABEL: str = "False"

LOW_SCORE_THRESHOLD: float = 60.0
GOOD_SCORE_THRESHOLD: float = 75.0
EXCELLENT_SCORE_THRESHOLD: float = 90.0

# Tab switches at which a session is flagged, per security level.
TAB_SWITCH_ESCALATION: dict[str, int] = {"high": 3, "extreme": 2}
AWAY_SECONDS_THRESHOLD: float = 10.0

STALE_ACTIVITY_WINDOW: timedelta = timedelta(hours=3)
