"""
Companion Session — wires log tailing, classification, and the engine together.

Data flow:
  LogTailReader → chunk → PatternClassifier → events → CompanionStateEngine

Independent cadences, all on one event loop:
  - log poll (every poll_interval_seconds)
  - engine decay / expiry+idle / hygiene timers (owned by the engine)
  - wellbeing sample (once at start, then on the cron schedule)

A missing log directory leaves the session running on passive decay alone.
"""

import asyncio
import logging
import random
import time
from datetime import datetime
from typing import Callable, List, Optional

from croniter import croniter
from pydantic import BaseModel

from crab_kernel.classifier.patterns import PatternClassifier
from crab_kernel.classifier.rules import load_rules
from crab_kernel.companion.engine import CompanionStateEngine
from crab_kernel.companion.vitals import wellbeing_score
from crab_kernel.models.classifier import ActivityEvent
from crab_kernel.models.companion import EMOTION_LABELS, Attributes, Emotion, StateSnapshot
from crab_kernel.models.config import SessionConfig
from crab_kernel.models.wellbeing import Trend
from crab_kernel.persistence.store import StateStore
from crab_kernel.runtime.timers import OneShotTimer, TimerGroup
from crab_kernel.tailing.reader import LogTailReader, resolve_log_root
from crab_kernel.wellbeing.aggregator import WellbeingAggregator

logger = logging.getLogger(__name__)

DAY_SPARKLINE = (24, 12)
WEEK_SPARKLINE = (168, 14)


class CompanionView(BaseModel):
    """Everything the presentation layer renders, in one notification."""

    emotion: Emotion
    label: str
    attributes: Attributes
    happiness_ceiling: int
    hygiene_events: int
    message: Optional[str] = None
    category: Optional[str] = None
    wellbeing: int
    trend: Trend
    sparkline_day: str
    sparkline_week: str
    age_seconds: float


ViewCallback = Callable[[CompanionView], None]


def build_view(
    snapshot: StateSnapshot, aggregator: WellbeingAggregator, now: float,
) -> CompanionView:
    """Combine an engine snapshot with the wellbeing summary."""
    return CompanionView(
        emotion=snapshot.emotion,
        label=EMOTION_LABELS[snapshot.emotion],
        attributes=snapshot.attributes,
        happiness_ceiling=snapshot.happiness_ceiling,
        hygiene_events=snapshot.hygiene_events,
        message=snapshot.message,
        category=snapshot.category,
        wellbeing=wellbeing_score(snapshot.attributes),
        trend=aggregator.trend(now),
        sparkline_day=aggregator.sparkline(*DAY_SPARKLINE, now=now),
        sparkline_week=aggregator.sparkline(*WEEK_SPARKLINE, now=now),
        age_seconds=aggregator.age_seconds(now),
    )


class CompanionSession:
    """One running companion: an explicit engine handle shared by every collaborator."""

    def __init__(
        self,
        engine: CompanionStateEngine,
        reader: LogTailReader,
        classifier: PatternClassifier,
        aggregator: WellbeingAggregator,
        config: Optional[SessionConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.engine = engine
        self.reader = reader
        self.classifier = classifier
        self.aggregator = aggregator
        self.config = config or SessionConfig()
        self._clock = clock
        self._timers: Optional[TimerGroup] = None
        self._sample_timer: Optional[OneShotTimer] = None
        self._callbacks: List[ViewCallback] = []
        self._running = False
        self._disposed = False
        self.events_processed = 0
        self.engine.subscribe(self._on_engine_change)

    @property
    def status(self) -> str:
        """Current session status."""
        return "running" if self._running else "stopped"

    # --- Log-driven activity ---

    def poll_once(self, now: Optional[float] = None) -> List[ActivityEvent]:
        """Read new log text, classify each chunk, apply the events."""
        if now is None:
            now = self._clock()
        events = []
        for chunk in self.reader.poll():
            for event in self.classifier.classify(chunk, now):
                self.engine.handle_event(event)
                events.append(event)
        self.events_processed += len(events)
        return events

    # --- Wellbeing ---

    def sample_wellbeing(self, now: Optional[float] = None) -> None:
        self.aggregator.record_snapshot(now)
        self._publish(self.engine.snapshot(now))

    def _next_sample_delay(self) -> float:
        now = self._clock()
        cron = croniter(self.config.wellbeing.sample_schedule, datetime.fromtimestamp(now))
        next_fire = cron.get_next(datetime)
        return max(0.0, next_fire.timestamp() - now)

    def _arm_sample_timer(self) -> None:
        if self._timers is None or self._disposed:
            return
        self._sample_timer = self._timers.call_later(
            self._next_sample_delay(), self._on_sample_timer
        )

    def _on_sample_timer(self) -> None:
        try:
            self.sample_wellbeing()
        finally:
            self._arm_sample_timer()

    # --- Presentation ---

    def view(self, now: Optional[float] = None) -> CompanionView:
        if now is None:
            now = self._clock()
        return self._build_view(self.engine.snapshot(now), now)

    def _build_view(self, snapshot: StateSnapshot, now: float) -> CompanionView:
        return build_view(snapshot, self.aggregator, now)

    def subscribe(self, callback: ViewCallback) -> Callable[[], None]:
        """Receive a full view after every engine change."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def _on_engine_change(self, snapshot: StateSnapshot) -> None:
        self._publish(snapshot)

    def _publish(self, snapshot: StateSnapshot) -> None:
        if not self._callbacks:
            return
        view = self._build_view(snapshot, snapshot.taken_at)
        for callback in list(self._callbacks):
            callback(view)

    # --- Lifecycle ---

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Arm every timer on the loop and take the startup wellbeing sample."""
        if self._running:
            return
        loop = loop or asyncio.get_running_loop()
        self._timers = TimerGroup(loop)
        self.engine.start(TimerGroup(loop))
        self._timers.call_every(self.config.tail.poll_interval_seconds, self.poll_once)
        self.sample_wellbeing()
        self._arm_sample_timer()
        self._running = True
        logger.info("Companion session started, watching %s", self.reader.root)

    def dispose(self) -> None:
        """Cancel every timer and flush both records."""
        if self._disposed:
            return
        self._disposed = True
        self._running = False
        if self._timers is not None:
            self._timers.cancel_all()
        self.engine.dispose()
        self.aggregator.flush()
        logger.info("Companion session stopped")

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run until stop_event is set, then dispose."""
        if stop_event is None:
            stop_event = asyncio.Event()
        self.start(asyncio.get_running_loop())
        try:
            await stop_event.wait()
        finally:
            self.dispose()


def build_session(
    config: Optional[SessionConfig] = None,
    store: Optional[StateStore] = None,
    clock: Callable[[], float] = time.time,
    rng: Optional[random.Random] = None,
) -> CompanionSession:
    """Assemble a session from configuration."""
    config = config or SessionConfig()
    store = store or StateStore(db_path=config.db_path)

    engine = CompanionStateEngine(store, config=config.engine, clock=clock, rng=rng)
    reader = LogTailReader(
        resolve_log_root(config.tail.root, config.tail.workspace),
        suffix=config.tail.suffix,
    )
    classifier = PatternClassifier(
        rules=load_rules(config.classifier.rules_path),
        config=config.classifier,
        clock=clock,
    )
    aggregator = WellbeingAggregator(engine, store, config=config.wellbeing, clock=clock)
    return CompanionSession(engine, reader, classifier, aggregator, config=config, clock=clock)
