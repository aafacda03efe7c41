"""Tailing Model — tracked log files and the chunks read from them."""

from pydantic import BaseModel, ConfigDict


class LogSource(BaseModel):
    """A tracked append-only file and how far into it we have read."""

    path: str
    offset: int = 0


class LogChunk(BaseModel):
    """Bytes newly appended to one log file since the previous poll."""

    model_config = ConfigDict(frozen=True)

    source: str
    text: str
    start: int = 0
    end: int = 0
