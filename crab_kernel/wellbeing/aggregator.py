"""
Wellbeing Aggregator — hourly composite scores and their history.

Samples the engine's attributes on its own cadence, keeps a bounded
ascending-time history (one week of hourly samples by default), and
summarizes it as sparklines and a trend. A new companion's birth is kept
in memory until the first sample or flush writes the record.
"""

import logging
import time
from typing import Callable, List, Optional

from pydantic import ValidationError

from crab_kernel.companion.engine import CompanionStateEngine
from crab_kernel.companion.vitals import wellbeing_score
from crab_kernel.models.config import WellbeingConfig
from crab_kernel.models.wellbeing import LifetimeRecord, Trend, WellbeingSnapshot
from crab_kernel.persistence.store import PersistenceError, StateStore

logger = logging.getLogger(__name__)

LIFETIME_KEY = "companion_lifetime"
SPARK_GLYPHS = "▁▂▃▄▅▆▇█"
HOUR = 3600.0


def glyph_for(value: float) -> str:
    """Linear binning of [0, 100] onto the eight intensity glyphs."""
    value = max(0.0, min(100.0, float(value)))
    index = min(len(SPARK_GLYPHS) - 1, int(value / 100.0 * len(SPARK_GLYPHS)))
    return SPARK_GLYPHS[index]


class WellbeingAggregator:
    """Owns the lifetime record: birth timestamp plus wellbeing history."""

    def __init__(
        self,
        engine: CompanionStateEngine,
        store: StateStore,
        config: Optional[WellbeingConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.engine = engine
        self.store = store
        self.config = config or WellbeingConfig()
        self._clock = clock
        self.last_persist_error: Optional[str] = None
        self._record = self._load(self._clock())

    # --- Loading / saving ---

    def _load(self, now: float) -> LifetimeRecord:
        try:
            raw = self.store.get(LIFETIME_KEY)
        except PersistenceError as e:
            self._record_persist_error(e)
            raw = None

        record = None
        if raw is not None:
            try:
                record = LifetimeRecord.model_validate(raw)
            except ValidationError as e:
                logger.info("Discarding unreadable lifetime record: %s", e)

        if record is None:
            record = LifetimeRecord()
        record.history = sorted(record.history, key=lambda s: s.timestamp)
        self._trim(record)

        if record.birth is None:
            record.birth = now
            logger.info("A companion is born at %s", now)
        return record

    def _save(self) -> bool:
        try:
            self.store.put(LIFETIME_KEY, self._record.model_dump(mode="json"))
        except PersistenceError as e:
            self._record_persist_error(e)
            return False
        self.last_persist_error = None
        return True

    def _record_persist_error(self, error: Exception) -> None:
        self.last_persist_error = str(error)
        logger.warning("Lifetime record not persisted, will retry: %s", error)

    def _trim(self, record: LifetimeRecord) -> None:
        overflow = len(record.history) - self.config.history_limit
        if overflow > 0:
            del record.history[:overflow]

    # --- Lifetime ---

    @property
    def birth(self) -> float:
        return self._record.birth

    @property
    def history(self) -> List[WellbeingSnapshot]:
        return list(self._record.history)

    def age_seconds(self, now: Optional[float] = None) -> float:
        if now is None:
            now = self._clock()
        return max(0.0, now - self._record.birth)

    # --- Sampling ---

    def current_score(self) -> int:
        return wellbeing_score(self.engine.snapshot().attributes)

    def record_snapshot(self, now: Optional[float] = None) -> WellbeingSnapshot:
        """Sample the engine, append, evict the oldest beyond the cap, persist."""
        if now is None:
            now = self._clock()
        snapshot = WellbeingSnapshot(timestamp=now, score=self.current_score())

        history = self._record.history
        history.append(snapshot)
        if len(history) > 1 and history[-2].timestamp > now:
            history.sort(key=lambda s: s.timestamp)
        self._trim(self._record)
        self._save()
        return snapshot

    # --- Summaries ---

    def bucket_values(
        self,
        window_hours: float = 24,
        bucket_count: int = 12,
        now: Optional[float] = None,
    ) -> List[float]:
        """
        Average score per equal time bucket over the window. Empty buckets
        carry the previous bucket's value forward; an empty first bucket
        starts from the neutral default.
        """
        if now is None:
            now = self._clock()
        bucket_count = max(1, int(bucket_count))
        window = max(1.0, float(window_hours) * HOUR)
        start = now - window
        width = window / bucket_count

        sums = [0.0] * bucket_count
        counts = [0] * bucket_count
        for s in self._record.history:
            if s.timestamp < start or s.timestamp > now:
                continue
            index = min(bucket_count - 1, int((s.timestamp - start) / width))
            sums[index] += s.score
            counts[index] += 1

        resolved: List[float] = []
        previous: Optional[float] = None
        for total, count in zip(sums, counts):
            if count:
                value = total / count
            elif previous is not None:
                value = previous
            else:
                value = float(self.config.neutral_default)
            resolved.append(value)
            previous = value
        return resolved

    def sparkline(
        self,
        window_hours: float = 24,
        bucket_count: int = 12,
        now: Optional[float] = None,
    ) -> str:
        return "".join(
            glyph_for(v) for v in self.bucket_values(window_hours, bucket_count, now)
        )

    def trend(self, now: Optional[float] = None) -> Trend:
        """Last 6 hours against the 6-to-24-hours-ago window."""
        if now is None:
            now = self._clock()
        cfg = self.config
        recent_start = now - cfg.recent_window_hours * HOUR
        baseline_start = now - cfg.baseline_window_hours * HOUR

        recent = [s.score for s in self._record.history if recent_start <= s.timestamp <= now]
        baseline = [
            s.score for s in self._record.history
            if baseline_start <= s.timestamp < recent_start
        ]
        if not recent or not baseline:
            return Trend.STABLE

        diff = sum(recent) / len(recent) - sum(baseline) / len(baseline)
        if diff > cfg.trend_deadband:
            return Trend.UP
        if diff < -cfg.trend_deadband:
            return Trend.DOWN
        return Trend.STABLE

    def flush(self) -> bool:
        return self._save()
