"""Runtime configuration. Out-of-range values are clamped or defaulted, never rejected."""

import logging
import re
from typing import Optional

from croniter import croniter
from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SCHEDULE = "0 * * * *"
DEFAULT_TOOL_ACTIVITY_PATTERN = r'"type"\s*:\s*"tool_use"'


def _clamp(value, lo, hi, default, cast=float):
    try:
        value = cast(value)
    except (TypeError, ValueError):
        return default
    return max(lo, min(hi, value))


def _default(cls, info: ValidationInfo):
    return cls.model_fields[info.field_name].default


class TailConfig(BaseModel):
    """Where the activity logs live and how often to look at them."""

    root: str = "~/.claude/projects"
    workspace: Optional[str] = None         # Selects the per-project subdirectory
    suffix: str = ".jsonl"
    poll_interval_seconds: float = 1.0

    @field_validator("poll_interval_seconds", mode="before")
    @classmethod
    def _interval(cls, value):
        return _clamp(value, 0.1, 3600.0, 1.0)


class ClassifierConfig(BaseModel):
    """Unconditional signal detection and the optional external rule table."""

    tool_activity_pattern: str = DEFAULT_TOOL_ACTIVITY_PATTERN
    usage_field: str = "message.usage.output_tokens"
    usage_threshold: int = 5000
    usage_divisor: int = 5000
    usage_max_drain: int = 6
    rules_path: Optional[str] = None

    @field_validator("tool_activity_pattern", mode="before")
    @classmethod
    def _marker(cls, value):
        try:
            re.compile(value)
        except (re.error, TypeError) as e:
            logger.warning(
                "Invalid tool activity pattern %r (%s), using %r",
                value, e, DEFAULT_TOOL_ACTIVITY_PATTERN,
            )
            return DEFAULT_TOOL_ACTIVITY_PATTERN
        return value

    @field_validator("usage_threshold", "usage_divisor", mode="before")
    @classmethod
    def _positive(cls, value, info: ValidationInfo):
        return _clamp(value, 1, 10_000_000, _default(cls, info), int)

    @field_validator("usage_max_drain", mode="before")
    @classmethod
    def _drain(cls, value):
        return _clamp(value, 0, 100, 6, int)


class EngineConfig(BaseModel):
    """Timer intervals, decay rates, and command tuning for the companion."""

    decay_interval_seconds: float = 60
    idle_check_interval_seconds: float = 5
    idle_threshold_seconds: float = 300
    emotion_duration_seconds: float = 10

    hunger_decay_rate: int = 2
    happiness_decay_rate: int = 1
    low_hygiene_threshold: int = 30
    low_hygiene_happiness_penalty: int = 1
    sleep_energy_recovery: int = 2
    critical_threshold: int = 20
    activity_energy_drain: int = 1

    hygiene_event_penalty: int = 15
    hygiene_event_min_seconds: float = 1200
    hygiene_event_max_seconds: float = 2700

    feed_min: int = 15
    feed_max: int = 30
    overfeed_threshold: int = 70            # Hunger above this before feeding makes a mess
    stuffed_threshold: int = 91             # Hunger at or above this refuses food
    pet_happiness_min: int = 5
    pet_happiness_max: int = 15
    pet_energy_min: int = 5
    pet_energy_max: int = 10
    scrub_increment: int = 25

    long_session_energy_drain: int = 15
    long_session_tired_below: int = 30
    away_energy_minutes_per_point: int = 5

    @field_validator(
        "decay_interval_seconds",
        "idle_check_interval_seconds",
        "idle_threshold_seconds",
        mode="before",
    )
    @classmethod
    def _interval(cls, value, info: ValidationInfo):
        return _clamp(value, 0.1, 86400.0, _default(cls, info))

    @field_validator(
        "emotion_duration_seconds",
        "hygiene_event_min_seconds",
        "hygiene_event_max_seconds",
        mode="before",
    )
    @classmethod
    def _duration(cls, value, info: ValidationInfo):
        return _clamp(value, 0.0, 7 * 86400.0, _default(cls, info))

    @field_validator(
        "hunger_decay_rate",
        "happiness_decay_rate",
        "low_hygiene_threshold",
        "low_hygiene_happiness_penalty",
        "sleep_energy_recovery",
        "critical_threshold",
        "activity_energy_drain",
        "hygiene_event_penalty",
        "feed_min",
        "feed_max",
        "overfeed_threshold",
        "stuffed_threshold",
        "pet_happiness_min",
        "pet_happiness_max",
        "pet_energy_min",
        "pet_energy_max",
        "scrub_increment",
        "long_session_energy_drain",
        "long_session_tired_below",
        mode="before",
    )
    @classmethod
    def _points(cls, value, info: ValidationInfo):
        return _clamp(value, 0, 100, _default(cls, info), int)

    @field_validator("away_energy_minutes_per_point", mode="before")
    @classmethod
    def _minutes(cls, value):
        return _clamp(value, 1, 1440, 5, int)

    @model_validator(mode="after")
    def _ordered_ranges(self) -> "EngineConfig":
        for lo, hi in (
            ("hygiene_event_min_seconds", "hygiene_event_max_seconds"),
            ("feed_min", "feed_max"),
            ("pet_happiness_min", "pet_happiness_max"),
            ("pet_energy_min", "pet_energy_max"),
        ):
            a, b = getattr(self, lo), getattr(self, hi)
            if a > b:
                setattr(self, lo, b)
                setattr(self, hi, a)
        return self


class WellbeingConfig(BaseModel):
    """History length, sampling cadence, and trend windows."""

    history_limit: int = 168                # One week of hourly samples
    sample_schedule: str = DEFAULT_SAMPLE_SCHEDULE
    trend_deadband: float = 5.0
    recent_window_hours: float = 6
    baseline_window_hours: float = 24
    neutral_default: int = 50

    @field_validator("history_limit", mode="before")
    @classmethod
    def _limit(cls, value):
        return _clamp(value, 1, 100_000, 168, int)

    @field_validator("sample_schedule", mode="before")
    @classmethod
    def _cron(cls, value):
        if isinstance(value, str) and croniter.is_valid(value):
            return value
        logger.warning(
            "Invalid wellbeing sample schedule %r, using %r",
            value, DEFAULT_SAMPLE_SCHEDULE,
        )
        return DEFAULT_SAMPLE_SCHEDULE

    @field_validator("trend_deadband", mode="before")
    @classmethod
    def _deadband(cls, value):
        return _clamp(value, 0.0, 100.0, 5.0)

    @field_validator("recent_window_hours", "baseline_window_hours", mode="before")
    @classmethod
    def _hours(cls, value, info: ValidationInfo):
        return _clamp(value, 0.1, 24 * 365.0, _default(cls, info))

    @field_validator("neutral_default", mode="before")
    @classmethod
    def _neutral(cls, value):
        return _clamp(value, 0, 100, 50, int)

    @model_validator(mode="after")
    def _ordered_windows(self) -> "WellbeingConfig":
        if self.recent_window_hours > self.baseline_window_hours:
            self.recent_window_hours, self.baseline_window_hours = (
                self.baseline_window_hours,
                self.recent_window_hours,
            )
        return self


class SessionConfig(BaseModel):
    """Everything a running companion session needs."""

    tail: TailConfig = Field(default_factory=TailConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    wellbeing: WellbeingConfig = Field(default_factory=WellbeingConfig)
    db_path: str = "~/.crab_kernel/state.db"
