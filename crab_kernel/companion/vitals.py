"""Attribute math shared by the engine: clamping, the happiness ceiling, base emotion."""

from crab_kernel.models.companion import ATTRIBUTE_MAX, ATTRIBUTE_MIN, Attributes, Emotion

# (minimum hygiene, happiness ceiling), highest tier first
HYGIENE_TIERS = (
    (80, 100),
    (60, 90),
    (40, 75),
    (20, 55),
    (0, 35),
)
ZERO_ENERGY_PENALTY = 25
LOW_ENERGY_PENALTY = 10
LOW_ENERGY_THRESHOLD = 20


def clamp(value: int) -> int:
    return max(ATTRIBUTE_MIN, min(ATTRIBUTE_MAX, int(value)))


def happiness_ceiling(hygiene: int, energy: int) -> int:
    """The most happiness a companion in this condition can hold."""
    ceiling = HYGIENE_TIERS[-1][1]
    for minimum, cap in HYGIENE_TIERS:
        if hygiene >= minimum:
            ceiling = cap
            break

    if energy <= 0:
        ceiling -= ZERO_ENERGY_PENALTY
    elif energy < LOW_ENERGY_THRESHOLD:
        ceiling -= LOW_ENERGY_PENALTY
    return max(ATTRIBUTE_MIN, ceiling)


def normalize(attributes: Attributes) -> Attributes:
    """Clamp every attribute, then hold happiness under its ceiling. In place."""
    attributes.hunger = clamp(attributes.hunger)
    attributes.energy = clamp(attributes.energy)
    attributes.hygiene = clamp(attributes.hygiene)
    attributes.happiness = min(
        clamp(attributes.happiness),
        happiness_ceiling(attributes.hygiene, attributes.energy),
    )
    return attributes


def base_emotion(attributes: Attributes, critical: int = 20) -> Emotion:
    """Emotion implied by attributes alone, in fixed priority order."""
    if attributes.hunger < critical:
        return Emotion.HUNGRY
    if attributes.energy < critical:
        return Emotion.TIRED
    if attributes.happiness < critical:
        return Emotion.SAD
    return Emotion.NEUTRAL


def wellbeing_score(attributes: Attributes) -> int:
    """Rounded mean of the four attributes, halves rounding up."""
    return int(attributes.mean() + 0.5)
