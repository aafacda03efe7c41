"""Classification Model — rule table entries and the events they produce."""

import re
from enum import Enum
from typing import Optional, Pattern

from pydantic import BaseModel, ConfigDict, PrivateAttr, field_validator


class EventKind(str, Enum):
    SUCCESS = "success"
    MULTIPLE_SUCCESSES = "multiple_successes"
    ERROR = "error"
    REPEATED_ERRORS = "repeated_errors"
    THINKING = "thinking"
    QUESTION = "question"
    SURPRISE = "surprise"
    LONG_SESSION = "long_session"
    LOVESTRUCK = "lovestruck"
    CLAUDE_FAN = "claude_fan"
    # Unconditional signals, never produced by the rule table
    TOOL_ACTIVITY = "tool_activity"
    TOKEN_DRAIN = "token_drain"


class Polarity(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NONE = "none"


_POSITIVE = {EventKind.SUCCESS, EventKind.MULTIPLE_SUCCESSES}
_NEGATIVE = {EventKind.ERROR, EventKind.REPEATED_ERRORS}


def polarity_of(kind: EventKind) -> Polarity:
    if kind in _POSITIVE:
        return Polarity.POSITIVE
    if kind in _NEGATIVE:
        return Polarity.NEGATIVE
    return Polarity.NONE


class EscalationSpec(BaseModel):
    """Promote a repeated mild event into a stronger one."""

    model_config = ConfigDict(frozen=True)

    threshold: int = 3
    event: EventKind

    @field_validator("threshold", mode="before")
    @classmethod
    def _at_least_one(cls, value):
        try:
            return max(1, int(value))
        except (TypeError, ValueError):
            return 3


class ClassificationRule(BaseModel):
    """One row of the ordered rule table. Table position is its priority."""

    model_config = ConfigDict(frozen=True)

    id: str
    pattern: str
    event: EventKind
    cooldown_seconds: float = 2.0
    ignore_case: bool = True
    escalation: Optional[EscalationSpec] = None

    _regex: Pattern = PrivateAttr()

    @field_validator("pattern")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid pattern: {e}") from e
        return value

    @field_validator("cooldown_seconds", mode="before")
    @classmethod
    def _non_negative(cls, value):
        try:
            return max(0.0, float(value))
        except (TypeError, ValueError):
            return 2.0

    def model_post_init(self, __context) -> None:
        flags = re.IGNORECASE if self.ignore_case else 0
        self._regex = re.compile(self.pattern, flags)

    def matches(self, text: str) -> bool:
        return self._regex.search(text) is not None

    @property
    def polarity(self) -> Polarity:
        return polarity_of(self.event)


class ActivityEvent(BaseModel):
    """A discrete activity inferred from newly appended log text."""

    kind: EventKind
    rule_id: Optional[str] = None           # None for unconditional signals
    amount: int = 0                         # Energy drain for TOKEN_DRAIN
    source: Optional[str] = None            # Log file the chunk came from
    detected_at: float = 0.0
    escalated: bool = False
