"""
Companion State Engine — the decaying simulation behind the companion.

Owns the only mutable copy of the companion state. Everything else gets
immutable snapshots.

Mutated by:
  - Its own timers: decay tick, expiry/idle check, randomized hygiene event
  - Classifier events (handle_event)
  - Direct commands: feed, pet, clean, scrub, set_emotion

Behavioral Contract:
- Every mutation clamps attributes into [0, 100] and holds happiness under
  its hygiene/energy ceiling.
- Every mutation persists synchronously, then notifies subscribers.
- A persistence failure is kept on last_persist_error; the in-memory state
  stays authoritative and the next save point writes it again.
- Passive changes (decay, hygiene events, energy drains) never reset the idle clock.
"""

import logging
import random
import time
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from crab_kernel.companion.vitals import (
    base_emotion,
    clamp,
    happiness_ceiling,
    normalize,
)
from crab_kernel.models.classifier import ActivityEvent, EventKind
from crab_kernel.models.companion import (
    ATTRIBUTE_MAX,
    CompanionState,
    DurableState,
    Emotion,
    EmotionOverlay,
    FeedResult,
    StateSnapshot,
)
from crab_kernel.models.config import EngineConfig
from crab_kernel.persistence.store import PersistenceError, StateStore
from crab_kernel.runtime.timers import OneShotTimer, TimerGroup

logger = logging.getLogger(__name__)

STATE_KEY = "companion_state"

EXCITED_SECONDS = 8
ANGRY_SECONDS = 8
THINKING_SECONDS = 10
LONG_SESSION_TIRED_SECONDS = 10


StateCallback = Callable[[StateSnapshot], None]


class CompanionStateEngine:
    """
    The companion's state machine.

    Emotion overlay:
      set_emotion → (expiry passes) → base emotion
      (no activity for idle_threshold) → tired, sticky until the next
      activity-resetting emotion
    """

    def __init__(
        self,
        store: StateStore,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.config = config or EngineConfig()
        self._clock = clock
        self._rng = rng or random.Random()
        self._callbacks: List[StateCallback] = []
        self._reactions: Dict[EventKind, Callable[[ActivityEvent], None]] = {}
        self._timers: Optional[TimerGroup] = None
        self._hygiene_timer: Optional[OneShotTimer] = None
        self._disposed = False
        self.last_persist_error: Optional[str] = None

        now = self._clock()
        self._last_activity = now
        self._state = self._load(now)
        self._register_default_reactions()

    # --- Loading / saving ---

    def _load(self, now: float) -> CompanionState:
        """Load the persisted record, catching up on time spent away."""
        try:
            raw = self.store.get(STATE_KEY)
        except PersistenceError as e:
            self._record_persist_error(e)
            raw = None

        durable = None
        if raw is not None:
            try:
                durable = DurableState.model_validate(raw)
            except ValidationError as e:
                logger.info("Discarding unreadable companion record: %s", e)

        if durable is None:
            logger.info("No companion record found, starting fresh")
            return CompanionState(last_fed=now, last_interaction=now, last_tick=now)

        state = CompanionState(
            attributes=durable.attributes,
            overlay=EmotionOverlay(
                emotion=durable.emotion,
                expiry=durable.emotion_expiry,
            ),
            hygiene_events=durable.hygiene_events,
            last_fed=durable.last_fed,
            last_interaction=durable.last_interaction,
            last_tick=now,
        )

        cfg = self.config
        if durable.last_tick and now > durable.last_tick:
            ticks_away = int((now - durable.last_tick) // cfg.decay_interval_seconds)
            state.attributes.hunger -= ticks_away * cfg.hunger_decay_rate
            state.attributes.energy += ticks_away // cfg.away_energy_minutes_per_point
        normalize(state.attributes)

        # Sticky overlays belong to the session that set them
        if state.overlay.sticky:
            state.overlay.emotion = base_emotion(state.attributes, cfg.critical_threshold)
        return state

    def _save(self) -> bool:
        durable = DurableState.from_live(self._state)
        try:
            self.store.put(STATE_KEY, durable.model_dump(mode="json"))
        except PersistenceError as e:
            self._record_persist_error(e)
            return False
        self.last_persist_error = None
        return True

    def _record_persist_error(self, error: Exception) -> None:
        self.last_persist_error = str(error)
        logger.warning("Companion state not persisted, will retry: %s", error)

    def _commit(self, now: float) -> None:
        """Normalize, persist, notify. The tail of every mutation."""
        normalize(self._state.attributes)
        self._save()
        self._notify(now)

    # --- Observation ---

    def snapshot(self, now: Optional[float] = None) -> StateSnapshot:
        if now is None:
            now = self._clock()
        s = self._state
        a = s.attributes
        return StateSnapshot(
            emotion=s.overlay.emotion,
            emotion_expiry=s.overlay.expiry,
            message=s.overlay.message,
            category=s.overlay.category,
            hunger=a.hunger,
            happiness=a.happiness,
            energy=a.energy,
            hygiene=a.hygiene,
            happiness_ceiling=happiness_ceiling(a.hygiene, a.energy),
            hygiene_events=s.hygiene_events,
            last_fed=s.last_fed,
            last_interaction=s.last_interaction,
            taken_at=now,
        )

    def subscribe(self, callback: StateCallback) -> Callable[[], None]:
        """Register for change notifications. Returns an unsubscribe function."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def _notify(self, now: float) -> None:
        snapshot = self.snapshot(now)
        for callback in list(self._callbacks):
            callback(snapshot)

    def is_sleeping(self, now: Optional[float] = None) -> bool:
        """True once nothing has reset the idle clock for idle_threshold."""
        if now is None:
            now = self._clock()
        return now - self._last_activity >= self.config.idle_threshold_seconds

    # --- Emotion overlay ---

    def set_emotion(
        self,
        emotion: Emotion,
        duration: Optional[float] = None,
        resets_idle: bool = True,
        message: Optional[str] = None,
        category: Optional[str] = None,
    ) -> None:
        """Overwrite the overlay. duration 0 makes it sticky."""
        now = self._clock()
        self._apply_emotion(Emotion(emotion), duration, resets_idle, message, category, now)
        self._commit(now)

    def _apply_emotion(
        self,
        emotion: Emotion,
        duration: Optional[float],
        resets_idle: bool,
        message: Optional[str],
        category: Optional[str],
        now: float,
    ) -> None:
        if duration is None:
            duration = self.config.emotion_duration_seconds
        duration = max(0.0, float(duration))

        overlay = self._state.overlay
        overlay.emotion = emotion
        overlay.expiry = now + duration if duration > 0 else 0.0
        overlay.message = message
        overlay.category = category

        if resets_idle:
            self._last_activity = now
            self._state.last_interaction = now

    def check_timers(self, now: Optional[float] = None) -> bool:
        """
        The short-interval check: revert an expired overlay to the base
        emotion, then force sticky tired once idle. Returns True on change.
        """
        if now is None:
            now = self._clock()
        overlay = self._state.overlay
        changed = False

        if overlay.expiry > 0 and now > overlay.expiry:
            overlay.emotion = base_emotion(
                self._state.attributes, self.config.critical_threshold
            )
            overlay.expiry = 0.0
            overlay.message = None
            overlay.category = None
            changed = True

        if self.is_sleeping(now) and not (
            overlay.emotion == Emotion.TIRED and overlay.sticky
        ):
            overlay.emotion = Emotion.TIRED
            overlay.expiry = 0.0
            overlay.message = None
            overlay.category = None
            changed = True

        if changed:
            self._commit(now)
        return changed

    # --- Periodic decay ---

    def tick_decay(self, now: Optional[float] = None) -> None:
        """One decay interval: hunger and happiness fall, energy only recovers."""
        if now is None:
            now = self._clock()
        cfg = self.config
        s = self._state
        a = s.attributes

        elapsed = now - s.last_tick if s.last_tick else cfg.decay_interval_seconds
        missed = int(max(0.0, elapsed) // cfg.decay_interval_seconds)

        a.hunger -= cfg.hunger_decay_rate
        a.happiness -= cfg.happiness_decay_rate
        if a.hygiene < cfg.low_hygiene_threshold:
            a.happiness -= cfg.low_hygiene_happiness_penalty

        if missed > 1:
            # Host was suspended: credit every interval we slept through
            a.energy += missed * cfg.sleep_energy_recovery
        elif self.is_sleeping(now):
            a.energy += cfg.sleep_energy_recovery

        s.last_tick = now
        normalize(a)

        forced = None
        if a.hunger < cfg.critical_threshold:
            forced = Emotion.HUNGRY
        elif a.energy < cfg.critical_threshold:
            forced = Emotion.TIRED
        elif a.happiness < cfg.critical_threshold:
            forced = Emotion.SAD
        if forced is not None:
            self._apply_emotion(forced, None, False, None, None, now)

        self._commit(now)

    # --- Hygiene ---

    def _hygiene_event(self) -> None:
        self._state.hygiene_events += 1
        self._state.attributes.hygiene -= self.config.hygiene_event_penalty

    def trigger_hygiene_event(self) -> None:
        """A mess happens. Independent of log activity; the idle clock is untouched."""
        now = self._clock()
        self._hygiene_event()
        self._commit(now)

    def _arm_hygiene_timer(self) -> None:
        if self._timers is None or self._disposed:
            return
        cfg = self.config
        delay = self._rng.uniform(cfg.hygiene_event_min_seconds, cfg.hygiene_event_max_seconds)
        self._hygiene_timer = self._timers.call_later(delay, self._on_hygiene_timer)

    def _on_hygiene_timer(self) -> None:
        try:
            self.trigger_hygiene_event()
        finally:
            self._arm_hygiene_timer()

    # --- Commands ---

    def feed(self) -> FeedResult:
        cfg = self.config
        now = self._clock()
        a = self._state.attributes

        if a.hunger >= cfg.stuffed_threshold:
            self._apply_emotion(
                Emotion.NEUTRAL, None, True, "Too full to eat!", "feed", now
            )
            self._commit(now)
            return FeedResult.STUFFED

        hunger_before = a.hunger
        a.hunger += self._rng.randint(cfg.feed_min, cfg.feed_max)
        self._state.last_fed = now

        if hunger_before > cfg.overfeed_threshold:
            self._hygiene_event()
            result = FeedResult.OVERFED
            message, category = "Ate too much... what a mess!", "hygiene"
        else:
            result = FeedResult.NORMAL
            message, category = "Om nom nom!", "feed"

        self._apply_emotion(Emotion.HAPPY, None, True, message, category, now)
        self._commit(now)
        return result

    def pet(self) -> None:
        cfg = self.config
        now = self._clock()
        a = self._state.attributes
        a.happiness += self._rng.randint(cfg.pet_happiness_min, cfg.pet_happiness_max)
        a.energy += self._rng.randint(cfg.pet_energy_min, cfg.pet_energy_max)
        self._apply_emotion(Emotion.EXCITED, None, True, None, "care", now)
        self._commit(now)

    def clean(self) -> None:
        now = self._clock()
        self._state.attributes.hygiene = ATTRIBUTE_MAX
        self._state.hygiene_events = 0
        self._apply_emotion(Emotion.HAPPY, None, True, "Squeaky clean!", "hygiene", now)
        self._commit(now)

    def scrub(self) -> bool:
        """Partial clean. Returns True once hygiene is back to full."""
        now = self._clock()
        a = self._state.attributes
        a.hygiene = clamp(a.hygiene + self.config.scrub_increment)
        fully_clean = a.hygiene >= ATTRIBUTE_MAX
        if fully_clean:
            self._state.hygiene_events = 0
            message = "Squeaky clean!"
        else:
            message = "Scrub scrub..."
        self._apply_emotion(Emotion.HAPPY, None, True, message, "hygiene", now)
        self._commit(now)
        return fully_clean

    # --- Classifier events ---

    def _register_default_reactions(self) -> None:
        """Map classifier event kinds onto engine reactions."""
        self._reactions[EventKind.SUCCESS] = self._on_success
        self._reactions[EventKind.MULTIPLE_SUCCESSES] = self._on_multiple_successes
        self._reactions[EventKind.ERROR] = self._on_error
        self._reactions[EventKind.REPEATED_ERRORS] = self._on_repeated_errors
        self._reactions[EventKind.THINKING] = self._on_thinking
        self._reactions[EventKind.QUESTION] = self._on_question
        self._reactions[EventKind.SURPRISE] = self._on_surprise
        self._reactions[EventKind.LONG_SESSION] = self._on_long_session
        self._reactions[EventKind.LOVESTRUCK] = self._on_lovestruck
        self._reactions[EventKind.CLAUDE_FAN] = self._on_claude_fan
        self._reactions[EventKind.TOOL_ACTIVITY] = self._on_tool_activity
        self._reactions[EventKind.TOKEN_DRAIN] = self._on_token_drain

    def register_reaction(
        self, kind: EventKind, reaction: Callable[[ActivityEvent], None]
    ) -> None:
        """Replace the reaction for an event kind."""
        self._reactions[kind] = reaction

    def handle_event(self, event: ActivityEvent) -> bool:
        """Apply one classifier event. Returns False for kinds with no reaction."""
        reaction = self._reactions.get(event.kind)
        if reaction is None:
            logger.debug("No reaction registered for %s", event.kind.value)
            return False
        reaction(event)
        return True

    def _react(
        self,
        emotion: Optional[Emotion],
        duration: Optional[float] = None,
        happiness: int = 0,
        energy: int = 0,
    ) -> None:
        now = self._clock()
        a = self._state.attributes
        a.happiness += happiness
        a.energy += energy
        if emotion is not None:
            self._apply_emotion(emotion, duration, True, None, None, now)
        self._commit(now)

    def _on_success(self, event: ActivityEvent) -> None:
        self._react(Emotion.HAPPY, happiness=5)

    def _on_multiple_successes(self, event: ActivityEvent) -> None:
        self._react(Emotion.EXCITED, EXCITED_SECONDS, happiness=10)

    def _on_error(self, event: ActivityEvent) -> None:
        self._react(Emotion.SAD, happiness=-10)

    def _on_repeated_errors(self, event: ActivityEvent) -> None:
        self._react(Emotion.ANGRY, ANGRY_SECONDS, happiness=-20)

    def _on_thinking(self, event: ActivityEvent) -> None:
        self._react(Emotion.THINKING, THINKING_SECONDS)

    def _on_question(self, event: ActivityEvent) -> None:
        self._react(Emotion.CURIOUS)

    def _on_surprise(self, event: ActivityEvent) -> None:
        self._react(Emotion.SURPRISED)

    def _on_lovestruck(self, event: ActivityEvent) -> None:
        self._react(Emotion.LOVESTRUCK, happiness=10)

    def _on_claude_fan(self, event: ActivityEvent) -> None:
        self._react(Emotion.CLAUDE_FAN, happiness=10)

    def _on_long_session(self, event: ActivityEvent) -> None:
        cfg = self.config
        energy_after = clamp(self._state.attributes.energy - cfg.long_session_energy_drain)
        emotion = Emotion.TIRED if energy_after < cfg.long_session_tired_below else None
        self._react(emotion, LONG_SESSION_TIRED_SECONDS, energy=-cfg.long_session_energy_drain)

    def _on_tool_activity(self, event: ActivityEvent) -> None:
        self.drain_energy(self.config.activity_energy_drain)

    def _on_token_drain(self, event: ActivityEvent) -> None:
        self.drain_energy(event.amount)

    def drain_energy(self, amount: int) -> None:
        """Activity drain. Never resets the idle clock."""
        if amount <= 0:
            return
        now = self._clock()
        self._state.attributes.energy -= amount
        self._commit(now)

    # --- Lifecycle ---

    def start(self, timers: TimerGroup) -> None:
        """Arm decay, expiry/idle, and hygiene timers on the given group."""
        cfg = self.config
        self._timers = timers
        timers.call_every(cfg.decay_interval_seconds, self.tick_decay)
        timers.call_every(cfg.idle_check_interval_seconds, self.check_timers)
        self._arm_hygiene_timer()

    @property
    def running(self) -> bool:
        return self._timers is not None and not self._disposed

    def dispose(self) -> None:
        """Cancel every timer and flush state once more."""
        if self._disposed:
            return
        self._disposed = True
        if self._timers is not None:
            self._timers.cancel_all()
        self._hygiene_timer = None
        self._save()
