"""Wellbeing Model — sampled composite scores and the companion's lifetime."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class WellbeingSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: float
    score: int


class LifetimeRecord(BaseModel):
    """Birth timestamp plus wellbeing history in ascending time order."""

    birth: Optional[float] = None           # Immutable once set
    history: List[WellbeingSnapshot] = []
