"""Crab Kernel data models."""

from crab_kernel.models.classifier import (
    ActivityEvent,
    ClassificationRule,
    EscalationSpec,
    EventKind,
    Polarity,
    polarity_of,
)
from crab_kernel.models.companion import (
    EMOTION_LABELS,
    Attributes,
    CompanionState,
    DurableState,
    Emotion,
    EmotionOverlay,
    FeedResult,
    StateSnapshot,
)
from crab_kernel.models.config import (
    ClassifierConfig,
    EngineConfig,
    SessionConfig,
    TailConfig,
    WellbeingConfig,
)
from crab_kernel.models.tailing import LogChunk, LogSource
from crab_kernel.models.wellbeing import LifetimeRecord, Trend, WellbeingSnapshot

__all__ = [
    "EMOTION_LABELS",
    "ActivityEvent",
    "Attributes",
    "ClassificationRule",
    "ClassifierConfig",
    "CompanionState",
    "DurableState",
    "Emotion",
    "EmotionOverlay",
    "EngineConfig",
    "EscalationSpec",
    "EventKind",
    "FeedResult",
    "LifetimeRecord",
    "LogChunk",
    "LogSource",
    "Polarity",
    "SessionConfig",
    "StateSnapshot",
    "TailConfig",
    "Trend",
    "WellbeingConfig",
    "WellbeingSnapshot",
    "polarity_of",
]
