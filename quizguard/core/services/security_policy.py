"""Service deciding how focus and tab events escalate under a quiz security level."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from quizguard.constants.quiz_constants import AWAY_SECONDS_THRESHOLD, TAB_SWITCH_ESCALATION
from quizguard.core.models import CheatAttempt, CheatAttemptType, SecurityLevel


class FocusEvent(str, Enum):
    """Browser signals reported by the student client."""

    TAB_HIDDEN = "tab_hidden"
    WINDOW_BLUR = "window_blur"
    WINDOW_FOCUS = "window_focus"


@dataclass(slots=True, frozen=True)
class PolicyDecision:
    """What to do with one observed focus event."""

    attempts: tuple[CheatAttempt, ...] = ()
    flagged: bool = False
    auto_submit: bool = False


def records_attempts(level: SecurityLevel) -> bool:
    return level is not SecurityLevel.LOW


def escalation_threshold(level: SecurityLevel) -> int | None:
    return TAB_SWITCH_ESCALATION.get(level.value)


class TabSwitchTracker:
    """Tracks per-student focus history for one quiz and applies its security level."""

    def __init__(self, level: SecurityLevel) -> None:
        self._level = level
        self._switch_counts: dict[str, int] = {}
        self._blurred_at: dict[str, datetime] = {}

    @property
    def level(self) -> SecurityLevel:
        return self._level

    def switch_count(self, student_id: str) -> int:
        return self._switch_counts.get(student_id, 0)

    def observe(self, student_id: str, event: FocusEvent, at: datetime) -> PolicyDecision:
        if not records_attempts(self._level):
            return PolicyDecision()

        if event is FocusEvent.WINDOW_FOCUS:
            return self._on_focus(student_id, at)

        self._blurred_at[student_id] = at
        if event is FocusEvent.WINDOW_BLUR and self._level is SecurityLevel.EXTREME:
            return self._flag(CheatAttemptType.WINDOW_BLUR, "User switched to another window", at)
        return self._on_tab_switch(student_id, at)

    def _on_tab_switch(self, student_id: str, at: datetime) -> PolicyDecision:
        count = self._switch_counts.get(student_id, 0) + 1
        self._switch_counts[student_id] = count

        switch = CheatAttempt(
            type=CheatAttemptType.TAB_SWITCH,
            timestamp=at,
            description="User switched to another tab",
        )
        threshold = escalation_threshold(self._level)
        if threshold is not None and count >= threshold:
            flagged = self._flag(CheatAttemptType.TAB_SWITCH, f"User switched tabs/windows {count} times", at)
            return PolicyDecision(
                attempts=(switch,) + flagged.attempts,
                flagged=True,
                auto_submit=flagged.auto_submit,
            )
        return PolicyDecision(attempts=(switch,))

    def _on_focus(self, student_id: str, at: datetime) -> PolicyDecision:
        blurred_at = self._blurred_at.pop(student_id, None)
        if blurred_at is None:
            return PolicyDecision()
        away_seconds = (at - blurred_at).total_seconds()
        if away_seconds <= AWAY_SECONDS_THRESHOLD:
            return PolicyDecision()
        attempt = CheatAttempt(
            type=CheatAttemptType.WINDOW_BLUR,
            timestamp=at,
            description=f"User was away from the quiz for {round(away_seconds)} seconds",
        )
        return PolicyDecision(attempts=(attempt,))

    def _flag(self, attempt_type: CheatAttemptType, description: str, at: datetime) -> PolicyDecision:
        attempt = CheatAttempt(type=attempt_type, timestamp=at, description=description)
        return PolicyDecision(
            attempts=(attempt,),
            flagged=True,
            auto_submit=self._level is SecurityLevel.EXTREME,
        )
