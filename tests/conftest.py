"""Shared fixtures: a controllable clock and an event loop that runs on it."""

import pytest

from crab_kernel.persistence.store import PersistenceError, StateStore


START = 1_700_000_000.0


class FlakyStore(StateStore):
    """In-memory store whose writes fail while `failing` is set."""

    def __init__(self):
        super().__init__(db_path=":memory:")
        self.failing = False

    def put(self, key, value):
        if self.failing:
            raise PersistenceError("disk full")
        super().put(key, value)


class FakeClock:
    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class FakeHandle:
    def __init__(self, when: float, seq: int, callback):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeLoop:
    """Just enough of an asyncio loop for TimerGroup, driven by FakeClock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self._handles = []
        self._seq = 0

    def call_later(self, delay, callback):
        self._seq += 1
        handle = FakeHandle(self.clock.now + delay, self._seq, callback)
        self._handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self._handles if not h.cancelled]

    def advance(self, seconds: float) -> None:
        """Move time forward, running every due callback in time order."""
        target = self.clock.now + seconds
        while True:
            due = [h for h in self.pending if h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self._handles.remove(handle)
            self.clock.now = max(self.clock.now, handle.when)
            handle.callback()
        self.clock.now = target


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def loop(clock):
    return FakeLoop(clock)


@pytest.fixture
def flaky_store():
    return FlakyStore()
