"""Companion Model — attributes, emotion overlay, and the persisted record."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


ATTRIBUTE_MIN = 0
ATTRIBUTE_MAX = 100


class Emotion(str, Enum):
    NEUTRAL = "neutral"
    HAPPY = "happy"
    EXCITED = "excited"
    CURIOUS = "curious"
    THINKING = "thinking"
    SAD = "sad"
    TIRED = "tired"
    HUNGRY = "hungry"
    ANGRY = "angry"
    SURPRISED = "surprised"
    LOVESTRUCK = "lovestruck"
    CLAUDE_FAN = "claude_fan"


EMOTION_LABELS = {
    Emotion.NEUTRAL: "Chillin'",
    Emotion.HAPPY: "Happy!",
    Emotion.EXCITED: "EXCITED!!",
    Emotion.CURIOUS: "Curious...",
    Emotion.THINKING: "Thinking...",
    Emotion.SAD: "Sad...",
    Emotion.TIRED: "Sleepy...",
    Emotion.HUNGRY: "Hungry!",
    Emotion.ANGRY: "Frustrated!",
    Emotion.SURPRISED: "WHOAH!",
    Emotion.LOVESTRUCK: "Ferris! ♥",
    Emotion.CLAUDE_FAN: "Claude! ♥",
}


class FeedResult(str, Enum):
    NORMAL = "normal"
    OVERFED = "overfed"
    STUFFED = "stuffed"


class Attributes(BaseModel):
    """The four bounded vitals. Values outside [0, 100] are clamped on load."""

    hunger: int = 80
    happiness: int = 70
    energy: int = 100
    hygiene: int = 100

    @field_validator("hunger", "happiness", "energy", "hygiene", mode="before")
    @classmethod
    def _clamp(cls, value):
        try:
            value = int(round(float(value)))
        except (TypeError, ValueError):
            return value
        return max(ATTRIBUTE_MIN, min(ATTRIBUTE_MAX, value))

    def mean(self) -> float:
        return (self.hunger + self.happiness + self.energy + self.hygiene) / 4.0


class EmotionOverlay(BaseModel):
    """Transient emotion layered over the attribute-derived base emotion."""

    emotion: Emotion = Emotion.NEUTRAL
    expiry: float = 0.0                     # 0 = sticky, never auto-expires
    message: Optional[str] = None           # Transient, never persisted
    category: Optional[str] = None          # "feed" | "hygiene" | "care"

    @property
    def sticky(self) -> bool:
        return self.expiry == 0


class CompanionState(BaseModel):
    """Live state owned by the CompanionStateEngine."""

    attributes: Attributes = Field(default_factory=Attributes)
    overlay: EmotionOverlay = Field(default_factory=EmotionOverlay)
    hygiene_events: int = 0
    last_fed: float = 0.0
    last_interaction: float = 0.0
    last_tick: float = 0.0


class DurableState(BaseModel):
    """
    The persisted shape of CompanionState.
    Transient overlay fields (message, category) have no place here.
    """

    attributes: Attributes = Field(default_factory=Attributes)
    emotion: Emotion = Emotion.NEUTRAL
    emotion_expiry: float = 0.0
    hygiene_events: int = 0
    last_fed: float = 0.0
    last_interaction: float = 0.0
    last_tick: float = 0.0

    @field_validator("hygiene_events", mode="before")
    @classmethod
    def _non_negative(cls, value):
        try:
            return max(0, int(value))
        except (TypeError, ValueError):
            return 0

    @classmethod
    def from_live(cls, state: CompanionState) -> "DurableState":
        return cls(
            attributes=state.attributes.model_copy(),
            emotion=state.overlay.emotion,
            emotion_expiry=state.overlay.expiry,
            hygiene_events=state.hygiene_events,
            last_fed=state.last_fed,
            last_interaction=state.last_interaction,
            last_tick=state.last_tick,
        )


class StateSnapshot(BaseModel):
    """Immutable copy of the engine state handed to observers."""

    model_config = ConfigDict(frozen=True)

    emotion: Emotion
    emotion_expiry: float
    message: Optional[str] = None
    category: Optional[str] = None
    hunger: int
    happiness: int
    energy: int
    hygiene: int
    happiness_ceiling: int
    hygiene_events: int
    last_fed: float
    last_interaction: float
    taken_at: float

    @property
    def label(self) -> str:
        return EMOTION_LABELS[self.emotion]

    @property
    def attributes(self) -> Attributes:
        return Attributes(
            hunger=self.hunger,
            happiness=self.happiness,
            energy=self.energy,
            hygiene=self.hygiene,
        )
