"""
State Store — durable key-value blobs for the companion.

Two independent records live here: the companion state and its lifetime
(birth + wellbeing history). Each is read once at startup and overwritten
wholesale on every save.

Behavioral Contract:
- put() replaces the whole blob for a key. No partial updates.
- get() returns None for a missing key or a blob that is not valid JSON.
- Any sqlite failure surfaces as PersistenceError; callers decide whether to retry.
"""

import json
import sqlite3
from pathlib import Path
from typing import Optional


class PersistenceError(Exception):
    """Raised when the underlying store cannot be read or written."""
    pass


class StateStore:
    """
    Key-value blob store.
    SQLite-backed so a single file survives restarts; ":memory:" for tests.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            db_path = str(Path(db_path).expanduser())
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._init_schema()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open state store at {db_path}: {e}") from e

    def _init_schema(self) -> None:
        """Create the blob table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS blobs (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
        """)
        self._conn.commit()

    def get(self, key: str) -> Optional[dict]:
        """Read one blob. Undecodable blobs read as missing."""
        try:
            row = self._conn.execute(
                "SELECT value FROM blobs WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot read {key!r}: {e}") from e
        if not row:
            return None
        try:
            value = json.loads(row["value"])
        except json.JSONDecodeError:
            return None
        return value if isinstance(value, dict) else None

    def put(self, key: str, value: dict) -> None:
        """Overwrite one blob."""
        payload = json.dumps(value, sort_keys=True, default=str)
        try:
            self._conn.execute(
                """
                INSERT INTO blobs (key, value, updated_at)
                VALUES (?, ?, datetime('now'))
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, payload),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot write {key!r}: {e}") from e

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
