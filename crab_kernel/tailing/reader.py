"""
Log Tail Reader — incremental reads from a tree of append-only log files.

Behavioral Contract:
- Only bytes appended since the previous poll are ever returned.
- A file seen for the first time (including at construction) starts at its
  current size, so pre-existing content is never replayed.
- A file that shrank (truncation / rotation) is re-baselined at its new size
  and yields nothing on that poll.
- A tracked file is forgotten only once stat reports it missing; a failed or
  partial directory listing never drops an offset. If it comes back it is
  treated as new.
- A missing root, unreadable directories, and per-file stat/read errors are
  swallowed; the next poll simply tries again.
"""

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from crab_kernel.models.tailing import LogChunk, LogSource

logger = logging.getLogger(__name__)


def sanitize_workspace(workspace: str) -> str:
    """/home/user/project -> -home-user-project"""
    return workspace.replace("/", "-")


def resolve_log_root(base: str, workspace: Optional[str] = None) -> Path:
    """
    Pick the directory to watch: the workspace's own project directory
    when it exists, otherwise the whole base directory.
    """
    base_path = Path(base).expanduser()
    if workspace:
        project_dir = base_path / sanitize_workspace(workspace)
        if project_dir.is_dir():
            return project_dir
    return base_path


class LogTailReader:
    """Tracks per-file byte offsets under one root directory."""

    def __init__(self, root, suffix: str = ".jsonl"):
        self.root = Path(root).expanduser()
        self.suffix = suffix
        self._sources: Dict[str, LogSource] = {}
        for path in self._scan():
            self._baseline(path)

    @property
    def sources(self) -> List[LogSource]:
        """Snapshot of every tracked file and its offset."""
        return [s.model_copy() for s in self._sources.values()]

    def offset_of(self, path) -> Optional[int]:
        source = self._sources.get(str(path))
        return source.offset if source else None

    def poll(self) -> List[LogChunk]:
        """Return one chunk per file that grew since the previous poll."""
        chunks = []
        tracked = sorted(self._sources)
        for path in self._scan():
            if path not in self._sources:
                self._baseline(path)

        for path in tracked:
            chunk = self._read_delta(self._sources[path])
            if chunk is not None:
                chunks.append(chunk)
        return chunks

    def _scan(self) -> List[str]:
        """Recursively list log-bearing files. Enumeration errors are ignored."""
        if not self.root.is_dir():
            return []
        found = []
        for dirpath, _dirnames, filenames in os.walk(self.root):
            for name in filenames:
                if name.endswith(self.suffix):
                    found.append(os.path.join(dirpath, name))
        found.sort()
        return found

    def _baseline(self, path: str) -> None:
        try:
            size = os.stat(path).st_size
        except OSError as e:
            logger.debug("Cannot stat %s, will retry: %s", path, e)
            return
        self._sources[path] = LogSource(path=path, offset=size)

    def _read_delta(self, source: LogSource) -> Optional[LogChunk]:
        """Read exactly [offset, size) and advance the offset."""
        try:
            size = os.stat(source.path).st_size
        except FileNotFoundError:
            self._sources.pop(source.path, None)
            return None
        except OSError as e:
            logger.debug("Cannot stat %s, will retry: %s", source.path, e)
            return None

        if size < source.offset:
            logger.debug("%s shrank from %d to %d bytes", source.path, source.offset, size)
            source.offset = size
            return None
        if size == source.offset:
            return None

        start = source.offset
        try:
            with open(source.path, "rb") as f:
                f.seek(start)
                data = f.read(size - start)
        except OSError as e:
            logger.debug("Cannot read %s, will retry: %s", source.path, e)
            return None

        source.offset = start + len(data)
        return LogChunk(
            source=source.path,
            text=data.decode("utf-8", errors="replace"),
            start=start,
            end=source.offset,
        )
