"""Tests for the timer group."""

import asyncio
import logging

from crab_kernel.runtime.timers import TimerGroup


class TestTimerGroup:
    def test_one_shot_fires_once_and_leaves_group(self, loop):
        group = TimerGroup(loop)
        calls = []
        timer = group.call_later(10, lambda: calls.append(loop.clock.now))

        assert group.active == 1
        assert timer.armed
        loop.advance(9)
        assert calls == []
        loop.advance(1)
        assert len(calls) == 1
        assert group.active == 0
        assert not timer.armed

        loop.advance(100)
        assert len(calls) == 1

    def test_periodic_fires_every_interval(self, loop):
        group = TimerGroup(loop)
        calls = []
        group.call_every(5, lambda: calls.append(loop.clock.now))

        loop.advance(21)
        assert len(calls) == 4
        assert calls[1] - calls[0] == 5
        assert group.active == 1

    def test_cancel_stops_a_timer(self, loop):
        group = TimerGroup(loop)
        calls = []
        timer = group.call_every(5, lambda: calls.append(1))
        loop.advance(5)
        timer.cancel()
        loop.advance(50)
        assert calls == [1]
        assert group.active == 0

    def test_failing_callback_is_logged_and_timer_keeps_going(self, loop, caplog):
        group = TimerGroup(loop)
        calls = []

        def explode():
            calls.append(1)
            raise RuntimeError("boom")

        group.call_every(5, explode)
        with caplog.at_level(logging.ERROR, logger="crab_kernel.runtime.timers"):
            loop.advance(15)
        assert len(calls) == 3
        assert "boom" in caplog.text

    def test_cancel_all(self, loop):
        group = TimerGroup(loop)
        group.call_every(5, lambda: None)
        group.call_later(5, lambda: None)
        group.cancel_all()
        assert group.active == 0
        assert loop.pending == []

    def test_callback_can_cancel_its_own_group(self, loop):
        group = TimerGroup(loop)
        calls = []

        def once_then_stop():
            calls.append(1)
            group.cancel_all()

        group.call_every(5, once_then_stop)
        loop.advance(30)
        assert calls == [1]
        assert loop.pending == []

    def test_runs_on_a_real_event_loop(self):
        calls = []

        async def main():
            group = TimerGroup()
            group.call_every(0.01, lambda: calls.append("tick"))
            group.call_later(0.01, lambda: calls.append("once"))
            await asyncio.sleep(0.1)
            group.cancel_all()

        asyncio.run(main())
        assert calls.count("once") == 1
        assert calls.count("tick") >= 2
