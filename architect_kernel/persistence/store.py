"""
Session Store — whole-state snapshot persistence.

Behavioral Contract:
- One row per session key; saving overwrites the previous snapshot.
- The snapshot is an opaque JSON blob of the SimulationState.
- Each blob is stored with its SHA-256 digest; loading a blob whose
  digest does not match raises SnapshotIntegrityError.
"""

import hashlib
import sqlite3
from datetime import datetime
from typing import List, Optional

from architect_kernel.models.simulation import SimulationState


SESSION_KEY = "architect_session"


class SnapshotIntegrityError(Exception):
    """Raised when a stored snapshot does not match its digest."""
    pass


def _digest(blob: str) -> str:
    return hashlib.sha256(blob.encode()).hexdigest()


class SessionStore:
    """
    Snapshot store keyed by session.
    Prototype: SQLite. The key-value backend is swappable behind save/load.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the snapshot table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS snapshots (
                session_key TEXT PRIMARY KEY,
                state_json TEXT NOT NULL,
                digest TEXT NOT NULL,
                object_count INTEGER NOT NULL DEFAULT 0,
                learning_iteration INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL
            )
        """)
        self._conn.commit()

    def save(self, state: SimulationState, session_key: str = SESSION_KEY) -> str:
        """Store a snapshot of ``state``. Returns the blob digest."""
        blob = state.model_dump_json()
        digest = _digest(blob)
        self._conn.execute(
            """
            INSERT INTO snapshots (
                session_key, state_json, digest, object_count,
                learning_iteration, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(session_key) DO UPDATE SET
                state_json = excluded.state_json,
                digest = excluded.digest,
                object_count = excluded.object_count,
                learning_iteration = excluded.learning_iteration,
                updated_at = excluded.updated_at
            """,
            (
                session_key,
                blob,
                digest,
                len(state.objects),
                state.learning_iteration,
                datetime.utcnow().isoformat(),
            ),
        )
        self._conn.commit()
        return digest

    def load(self, session_key: str = SESSION_KEY) -> Optional[SimulationState]:
        """Load the snapshot for ``session_key``, or None if there is none."""
        row = self._conn.execute(
            "SELECT state_json, digest FROM snapshots WHERE session_key = ?",
            (session_key,),
        ).fetchone()
        if row is None:
            return None

        if _digest(row["state_json"]) != row["digest"]:
            raise SnapshotIntegrityError(
                f"Snapshot for session {session_key!r} failed digest verification"
            )
        return SimulationState.model_validate_json(row["state_json"])

    def exists(self, session_key: str = SESSION_KEY) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM snapshots WHERE session_key = ?", (session_key,)
        ).fetchone()
        return row is not None

    def delete(self, session_key: str = SESSION_KEY) -> bool:
        """Remove a session snapshot. Returns True if one existed."""
        cursor = self._conn.execute(
            "DELETE FROM snapshots WHERE session_key = ?", (session_key,)
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def list_sessions(self) -> List[dict]:
        """Summary of every stored session, most recently saved first."""
        rows = self._conn.execute(
            "SELECT session_key, object_count, learning_iteration, updated_at "
            "FROM snapshots ORDER BY updated_at DESC"
        ).fetchall()
        return [dict(r) for r in rows]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
