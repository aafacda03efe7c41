"""
Crab Kernel API — FastAPI endpoints for the presentation layer.

Exposes:
- Companion state (the full view the presentation renders)
- Commands mapped one-to-one onto engine operations
- Wellbeing history and summaries
- Classifier rule table and log tail inspection
- Session status

Run with: uvicorn crab_kernel.api.app:create_app --factory
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Query
from pydantic import BaseModel

from crab_kernel.classifier.rules import dump_rules
from crab_kernel.models.companion import Emotion
from crab_kernel.models.config import SessionConfig
from crab_kernel.runtime.session import CompanionSession, build_session


# --- Request/Response Models ---

class EmotionRequest(BaseModel):
    emotion: Emotion
    duration_seconds: Optional[float] = None


class FeedResponse(BaseModel):
    result: str
    state: dict


class ScrubResponse(BaseModel):
    fully_clean: bool
    state: dict


class PollResponse(BaseModel):
    events: list
    count: int


# --- Application Factory ---

def create_app(
    session: Optional[CompanionSession] = None,
    config: Optional[SessionConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    session = session or build_session(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        session.start()
        try:
            yield
        finally:
            session.dispose()

    app = FastAPI(
        title="Crab Kernel API",
        description="Activity-driven companion simulation",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store the session on app state for access in endpoints
    app.state.session = session
    engine = session.engine
    aggregator = session.aggregator

    def _state() -> dict:
        return session.view().model_dump(mode="json")

    # Endpoints are async: commands must run on the loop thread, between timer callbacks.

    # === COMPANION STATE ===

    @app.get("/state")
    async def get_state():
        """Everything the presentation layer renders."""
        return _state()

    # === COMMANDS ===

    @app.post("/commands/feed")
    async def feed():
        result = engine.feed()
        return FeedResponse(result=result.value, state=_state())

    @app.post("/commands/pet")
    async def pet():
        engine.pet()
        return _state()

    @app.post("/commands/clean")
    async def clean():
        engine.clean()
        return _state()

    @app.post("/commands/scrub")
    async def scrub():
        fully_clean = engine.scrub()
        return ScrubResponse(fully_clean=fully_clean, state=_state())

    @app.post("/commands/emotion")
    async def set_emotion(req: EmotionRequest):
        """Manual emotion override."""
        engine.set_emotion(req.emotion, req.duration_seconds)
        return _state()

    # === WELLBEING ===

    @app.get("/wellbeing")
    async def get_wellbeing():
        return {
            "score": aggregator.current_score(),
            "trend": aggregator.trend().value,
            "sparkline_day": aggregator.sparkline(24, 12),
            "sparkline_week": aggregator.sparkline(168, 14),
            "samples": len(aggregator.history),
            "birth": aggregator.birth,
            "age_seconds": aggregator.age_seconds(),
        }

    @app.get("/wellbeing/sparkline")
    async def get_sparkline(window_hours: float = 24, buckets: int = Query(12, ge=1, le=500)):
        return {
            "sparkline": aggregator.sparkline(window_hours, buckets),
            "values": aggregator.bucket_values(window_hours, buckets),
        }

    @app.get("/wellbeing/history")
    async def get_history(limit: int = 168):
        history = aggregator.history[-limit:] if limit > 0 else []
        return [s.model_dump(mode="json") for s in history]

    # === CLASSIFIER ===

    @app.get("/classifier/rules")
    async def get_rules():
        """Ordered rule table with live cooldown and escalation state."""
        classifier = session.classifier
        rules = dump_rules(classifier.rules)
        for rule in rules:
            rule["cooldown_remaining"] = classifier.cooldown_remaining(rule["id"])
            rule["escalation_count"] = classifier.escalation_count(rule["id"])
        return rules

    # === LOG TAIL ===

    @app.get("/tail/sources")
    async def get_sources():
        return [s.model_dump(mode="json") for s in session.reader.sources]

    @app.post("/tail/poll")
    async def trigger_poll():
        """Force a poll (for testing)."""
        events = session.poll_once()
        return PollResponse(
            events=[e.model_dump(mode="json") for e in events],
            count=len(events),
        )

    # === SESSION ===

    @app.get("/session/status")
    async def session_status():
        return {
            "status": session.status,
            "log_root": str(session.reader.root),
            "tracked_files": len(session.reader.sources),
            "events_processed": session.events_processed,
            "rules": len(session.classifier.rules),
            "engine_persist_error": engine.last_persist_error,
            "lifetime_persist_error": aggregator.last_persist_error,
        }

    return app
