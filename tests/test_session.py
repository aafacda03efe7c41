"""Tests for the companion session wiring."""

import asyncio
import json
import random

import pytest

from crab_kernel.companion.engine import STATE_KEY
from crab_kernel.models.classifier import EventKind
from crab_kernel.models.companion import Emotion
from crab_kernel.models.config import SessionConfig, TailConfig
from crab_kernel.models.wellbeing import Trend
from crab_kernel.persistence.store import StateStore
from crab_kernel.runtime.session import build_session
from crab_kernel.wellbeing.aggregator import LIFETIME_KEY

FERRIS_LINE = json.dumps({"role": "user", "content": "hello ferris"}) + "\n"


@pytest.fixture
def log_file(tmp_path):
    project = tmp_path / "logs" / "-work-crab"
    project.mkdir(parents=True)
    log = project / "session.jsonl"
    log.write_text('{"type": "summary"}\n')
    return log


@pytest.fixture
def store():
    return StateStore()


@pytest.fixture
def session(tmp_path, log_file, store, clock):
    config = SessionConfig(tail=TailConfig(root=str(tmp_path / "logs")))
    return build_session(config, store=store, clock=clock, rng=random.Random(3))


def _append(path, text):
    with open(path, "a", encoding="utf-8") as f:
        f.write(text)


class TestPolling:
    def test_log_activity_reaches_the_engine(self, session, log_file):
        assert session.poll_once() == []

        _append(log_file, FERRIS_LINE)
        events = session.poll_once()
        assert [e.kind for e in events] == [EventKind.LOVESTRUCK]
        assert events[0].source == str(log_file)
        assert session.engine.snapshot().emotion == Emotion.LOVESTRUCK
        assert session.events_processed == 1

    def test_missing_log_directory_is_harmless(self, tmp_path, store, clock):
        config = SessionConfig(tail=TailConfig(root=str(tmp_path / "nowhere")))
        session = build_session(config, store=store, clock=clock)
        assert session.poll_once() == []
        assert session.reader.sources == []

    def test_workspace_selects_project_directory(self, tmp_path, log_file, store, clock):
        config = SessionConfig(
            tail=TailConfig(root=str(tmp_path / "logs"), workspace="/work/crab")
        )
        session = build_session(config, store=store, clock=clock)
        assert session.reader.root == log_file.parent


class TestView:
    def test_view_of_a_fresh_companion(self, session):
        view = session.view()
        assert view.emotion == Emotion.NEUTRAL
        assert view.label == "Chillin'"
        assert view.wellbeing == 88
        assert view.trend == Trend.STABLE
        assert len(view.sparkline_day) == 12
        assert len(view.sparkline_week) == 14
        assert view.age_seconds == 0

    def test_subscribers_get_a_view_per_change(self, session):
        views = []
        unsubscribe = session.subscribe(views.append)

        session.engine.pet()
        assert len(views) == 1
        assert views[0].emotion == Emotion.EXCITED
        assert views[0].category == "care"

        unsubscribe()
        session.engine.clean()
        assert len(views) == 1

    def test_sampling_publishes(self, session):
        views = []
        session.subscribe(views.append)
        session.sample_wellbeing()
        assert len(views) == 1
        assert len(session.aggregator.history) == 1


class TestLifecycle:
    def test_start_poll_sample_dispose(self, session, log_file, loop, store):
        session.start(loop)
        assert session.status == "running"
        assert session.engine.running
        assert len(session.aggregator.history) == 1

        _append(log_file, FERRIS_LINE)
        loop.advance(1)
        assert session.engine.snapshot().emotion == Emotion.LOVESTRUCK

        loop.advance(3600)
        assert len(session.aggregator.history) >= 2

        session.dispose()
        session.dispose()
        assert session.status == "stopped"
        assert not session.engine.running
        assert loop.pending == []
        assert store.get(STATE_KEY) is not None
        assert store.get(LIFETIME_KEY)["birth"] is not None

    def test_start_is_idempotent(self, session, loop):
        session.start(loop)
        pending = len(loop.pending)
        session.start(loop)
        assert len(loop.pending) == pending
        session.dispose()

    def test_run_async_until_stopped(self, session):
        async def main():
            stop = asyncio.Event()
            stop.set()
            await session.run_async(stop)

        asyncio.run(main())
        assert session.status == "stopped"
        assert not session.engine.running
        assert len(session.aggregator.history) == 1
