"""
Timer Group — explicit one-shot and periodic timer handles on an event loop.

Every handler runs to completion on the loop thread before the next one
starts, so handlers never interleave mid-mutation. Owners cancel the whole
group on disposal instead of tracking closures.
"""

import asyncio
import logging
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class _Timer:
    def __init__(self, group: "TimerGroup", callback: Callable[[], object]):
        self._group = group
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self.cancelled = False

    @property
    def armed(self) -> bool:
        return self._handle is not None and not self.cancelled

    def cancel(self) -> None:
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._group._discard(self)

    def _arm(self, delay: float) -> None:
        self._handle = self._group.loop.call_later(max(0.0, delay), self._run)

    def _invoke(self) -> None:
        try:
            self._callback()
        except Exception:
            # A failing handler must not stop the other timers
            logger.exception("Timer callback %r failed", self._callback)

    def _run(self) -> None:
        raise NotImplementedError


class OneShotTimer(_Timer):
    """Fires once, then leaves the group."""

    def _run(self) -> None:
        self._handle = None
        if self.cancelled:
            return
        self._group._discard(self)
        self._invoke()


class PeriodicTimer(_Timer):
    """Fires every `interval` seconds until cancelled."""

    def __init__(self, group: "TimerGroup", callback: Callable[[], object], interval: float):
        super().__init__(group, callback)
        self.interval = interval

    def _run(self) -> None:
        self._handle = None
        if self.cancelled:
            return
        self._invoke()
        if not self.cancelled:
            self._arm(self.interval)


class TimerGroup:
    """A set of timers owned together and cancelled together."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.loop = loop or asyncio.get_running_loop()
        self._timers: List[_Timer] = []

    def call_later(self, delay: float, callback: Callable[[], object]) -> OneShotTimer:
        timer = OneShotTimer(self, callback)
        self._timers.append(timer)
        timer._arm(delay)
        return timer

    def call_every(self, interval: float, callback: Callable[[], object]) -> PeriodicTimer:
        timer = PeriodicTimer(self, callback, interval)
        self._timers.append(timer)
        timer._arm(interval)
        return timer

    @property
    def active(self) -> int:
        return len(self._timers)

    def cancel_all(self) -> None:
        for timer in list(self._timers):
            timer.cancel()
        self._timers.clear()

    def _discard(self, timer: _Timer) -> None:
        if timer in self._timers:
            self._timers.remove(timer)
