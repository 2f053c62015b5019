"""SQLite store for timers and their sessions."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

DEFAULT_COLOR = "#f5f5f4"

SCHEMA = """
CREATE TABLE IF NOT EXISTS timers (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    color TEXT NOT NULL DEFAULT '#f5f5f4',
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS timer_sessions (
    id TEXT PRIMARY KEY,
    timer_id TEXT NOT NULL,
    start INTEGER NOT NULL,
    "end" INTEGER,
    created_at INTEGER NOT NULL,
    FOREIGN KEY (timer_id) REFERENCES timers(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_sessions_timer ON timer_sessions(timer_id);
CREATE INDEX IF NOT EXISTS idx_sessions_start ON timer_sessions(start);
CREATE INDEX IF NOT EXISTS idx_sessions_end ON timer_sessions("end");
-- At most one running session per timer
CREATE UNIQUE INDEX IF NOT EXISTS idx_sessions_one_active
    ON timer_sessions(timer_id) WHERE "end" IS NULL;
"""


class Timer(BaseModel):
    """A named trackable activity."""

    id: str
    name: str = Field(min_length=1, max_length=100)
    color: str = Field(default=DEFAULT_COLOR, pattern=r"^#[0-9a-fA-F]{6}$")
    created_at: int


class Session(BaseModel):
    """One interval of activity on a timer. ``end`` is None while running."""

    id: str
    timer_id: str
    start: int
    end: int | None = None
    created_at: int

    @property
    def is_active(self) -> bool:
        return self.end is None

    def duration(self, now: int) -> int:
        """Seconds elapsed, treating a running session's end as ``now``."""
        end = self.end if self.end is not None else now
        return end - self.start


def _timer_from_row(row: sqlite3.Row) -> Timer:
    return Timer.model_validate(dict(row))


def _session_from_row(row: sqlite3.Row) -> Session:
    return Session.model_validate(dict(row))


class SessionStore:
    """SQLite-backed timer and session store.

    Not thread-safe. Each thread should have its own SessionStore instance.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._init_schema()

    def __enter__(self) -> "SessionStore":
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def _init_schema(self) -> None:
        """Initialize database schema."""
        self._conn.executescript(SCHEMA)
        self._conn.commit()

    @classmethod
    def open(cls, path: Path) -> SessionStore:
        """Open or create a database at the given path."""
        conn = sqlite3.connect(path)
        conn.row_factory = sqlite3.Row
        return cls(conn)

    @classmethod
    def open_in_memory(cls) -> SessionStore:
        """Create an in-memory database for testing."""
        conn = sqlite3.connect(":memory:")
        conn.row_factory = sqlite3.Row
        return cls(conn)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run a block as one write transaction.

        The write lock is taken up front, so reads made inside the block see
        the same state the block's writes are applied to. Commits on success,
        rolls back on any exception.
        """
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield
        except BaseException:
            self._conn.rollback()
            raise
        self._conn.commit()

    # Timers

    def insert_timer_if_absent(self, timer: Timer, *, commit: bool = True) -> bool:
        """Insert a timer unless its name is taken.

        Returns True if the timer was inserted, False if the name already existed.
        """
        cursor = self._conn.execute(
            "INSERT OR IGNORE INTO timers (id, name, color, created_at) VALUES (?, ?, ?, ?)",
            (timer.id, timer.name, timer.color, timer.created_at),
        )
        if commit:
            self._conn.commit()
        return cursor.rowcount > 0

    def get_timer_by_name(self, name: str) -> Timer | None:
        row = self._conn.execute("SELECT * FROM timers WHERE name = ?", (name,)).fetchone()
        return _timer_from_row(row) if row else None

    def get_timer_by_id(self, timer_id: str) -> Timer | None:
        row = self._conn.execute("SELECT * FROM timers WHERE id = ?", (timer_id,)).fetchone()
        return _timer_from_row(row) if row else None

    def get_timers(self) -> list[Timer]:
        """Get all timers ordered by name."""
        cursor = self._conn.execute("SELECT * FROM timers ORDER BY name")
        return [_timer_from_row(row) for row in cursor.fetchall()]

    def get_timers_by_ids(self, timer_ids: list[str]) -> dict[str, Timer]:
        """Get timers for the given IDs, keyed by ID.

        Uses batching (500 IDs per query) to stay under SQLite's 999-parameter limit.
        """
        result: dict[str, Timer] = {}
        batch_size = 500
        for i in range(0, len(timer_ids), batch_size):
            batch = timer_ids[i : i + batch_size]
            placeholders = ",".join("?" * len(batch))
            cursor = self._conn.execute(
                f"SELECT * FROM timers WHERE id IN ({placeholders})",
                batch,
            )
            for row in cursor:
                result[row["id"]] = _timer_from_row(row)
        return result

    def update_timer(self, timer: Timer, *, commit: bool = True) -> None:
        """Write a timer's name and color. Raises sqlite3.IntegrityError on a duplicate name."""
        self._conn.execute(
            "UPDATE timers SET name = ?, color = ? WHERE id = ?",
            (timer.name, timer.color, timer.id),
        )
        if commit:
            self._conn.commit()

    def delete_timer(self, timer_id: str, *, commit: bool = True) -> int:
        """Delete a timer and all of its sessions.

        Sessions are removed explicitly before the timer so no orphan can
        survive even where the foreign-key cascade is not in effect.

        Returns the number of sessions deleted.
        """
        cursor = self._conn.execute(
            "DELETE FROM timer_sessions WHERE timer_id = ?", (timer_id,)
        )
        deleted_sessions = cursor.rowcount
        self._conn.execute("DELETE FROM timers WHERE id = ?", (timer_id,))
        if commit:
            self._conn.commit()
        return deleted_sessions

    # Sessions

    def insert_session(self, session: Session, *, commit: bool = True) -> None:
        self._conn.execute(
            """
            INSERT INTO timer_sessions (id, timer_id, start, "end", created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (session.id, session.timer_id, session.start, session.end, session.created_at),
        )
        if commit:
            self._conn.commit()

    def close_session(self, session_id: str, end: int, *, commit: bool = True) -> bool:
        """Set the end of a running session.

        Returns True if a running session was closed, False otherwise.
        """
        cursor = self._conn.execute(
            'UPDATE timer_sessions SET "end" = ? WHERE id = ? AND "end" IS NULL',
            (end, session_id),
        )
        if commit:
            self._conn.commit()
        return cursor.rowcount > 0

    def delete_session(self, session_id: str, *, commit: bool = True) -> bool:
        """Delete a session.

        Returns True if the session was removed, False if it didn't exist.
        """
        cursor = self._conn.execute(
            "DELETE FROM timer_sessions WHERE id = ?", (session_id,)
        )
        if commit:
            self._conn.commit()
        return cursor.rowcount > 0

    def get_session(self, session_id: str) -> Session | None:
        row = self._conn.execute(
            "SELECT * FROM timer_sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return _session_from_row(row) if row else None

    def get_sessions_by_prefix(self, prefix: str) -> list[Session]:
        """Find sessions whose ID starts with the given prefix."""
        # Escape LIKE metacharacters to prevent pattern injection
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        cursor = self._conn.execute(
            "SELECT * FROM timer_sessions WHERE id LIKE ? ESCAPE '\\'",
            (escaped + "%",),
        )
        return [_session_from_row(row) for row in cursor.fetchall()]

    def get_active_session(self, timer_id: str) -> Session | None:
        """Get the running session for a timer, if any."""
        row = self._conn.execute(
            'SELECT * FROM timer_sessions WHERE timer_id = ? AND "end" IS NULL LIMIT 1',
            (timer_id,),
        ).fetchone()
        return _session_from_row(row) if row else None

    def get_active_sessions(self) -> list[Session]:
        """Get all running sessions, most recent start first."""
        cursor = self._conn.execute(
            'SELECT * FROM timer_sessions WHERE "end" IS NULL ORDER BY start DESC'
        )
        return [_session_from_row(row) for row in cursor.fetchall()]

    def get_sessions_for_timer(self, timer_id: str) -> list[Session]:
        """Get all sessions of one timer, most recent start first."""
        cursor = self._conn.execute(
            "SELECT * FROM timer_sessions WHERE timer_id = ? ORDER BY start DESC",
            (timer_id,),
        )
        return [_session_from_row(row) for row in cursor.fetchall()]

    def get_latest_end(self) -> int | None:
        """Get the maximum end timestamp over all completed sessions."""
        row = self._conn.execute(
            'SELECT MAX("end") AS max_end FROM timer_sessions WHERE "end" IS NOT NULL'
        ).fetchone()
        return row["max_end"]

    def get_sessions_in_range(
        self,
        start: int,
        end: int,
        *,
        include_active: bool,
    ) -> list[Session]:
        """Query sessions whose start falls in [start, end].

        Args:
            start: Epoch seconds (inclusive lower bound)
            end: Epoch seconds (inclusive upper bound)
            include_active: Also return running sessions, including those
                started before the window. When False only completed
                sessions are returned.

        Returns:
            List of sessions ordered by start descending.
        """
        if include_active:
            query = """
                SELECT * FROM timer_sessions
                WHERE (start >= ? AND start <= ?)
                   OR (start < ? AND "end" IS NULL)
                ORDER BY start DESC
            """
            params: list[Any] = [start, end, start]
        else:
            query = """
                SELECT * FROM timer_sessions
                WHERE start >= ? AND start <= ? AND "end" IS NOT NULL
                ORDER BY start DESC
            """
            params = [start, end]
        cursor = self._conn.execute(query, params)
        return [_session_from_row(row) for row in cursor.fetchall()]
