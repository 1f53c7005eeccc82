"""SQLite persistence for session memory snapshots."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Optional

from .schemas import SessionMemoryState

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 2


class SessionMemoryStore:
    """Small SQLite wrapper that stores one JSON snapshot per session id.

    The store only encodes and decodes payloads.  Whether a decoded snapshot is
    a valid memory state is decided by the memory classes' ``restore``.
    """

    def __init__(self, db_path: str = ":memory:", session_id: str = "default") -> None:
        self.connection = sqlite3.connect(db_path, check_same_thread=False)
        self.connection.row_factory = sqlite3.Row
        self.session_id = session_id
        self._lock = threading.Lock()
        self._create_schema()

    def _create_schema(self) -> None:
        with self._lock:
            self.connection.execute(
                """
                CREATE TABLE IF NOT EXISTS session_snapshots (
                    session_id TEXT PRIMARY KEY,
                    version INTEGER NOT NULL,
                    payload TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            self.connection.commit()

    def load(self) -> Optional[SessionMemoryState]:
        cur = self.connection.execute(
            "SELECT version, payload FROM session_snapshots WHERE session_id = ?",
            (self.session_id,),
        )
        row = cur.fetchone()
        if not row:
            return None
        if row["version"] != SNAPSHOT_VERSION:
            logger.warning(
                "Ignoring snapshot for %s with version %s (expected %s)",
                self.session_id,
                row["version"],
                SNAPSHOT_VERSION,
            )
            return None
        try:
            return SessionMemoryState.from_payload(json.loads(row["payload"]))
        except (json.JSONDecodeError, ValueError) as exc:
            logger.warning("Ignoring corrupt snapshot for %s: %s", self.session_id, exc)
            return None

    def save(self, state: SessionMemoryState) -> None:
        payload = json.dumps(state.to_payload(), ensure_ascii=False)
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            self.connection.execute(
                """
                INSERT INTO session_snapshots(session_id, version, payload, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                    version = excluded.version,
                    payload = excluded.payload,
                    updated_at = excluded.updated_at
                """,
                (self.session_id, SNAPSHOT_VERSION, payload, now),
            )
            self.connection.commit()

    def clear(self) -> None:
        with self._lock:
            self.connection.execute(
                "DELETE FROM session_snapshots WHERE session_id = ?",
                (self.session_id,),
            )
            self.connection.commit()

    def close(self) -> None:
        self.connection.close()


__all__ = ["SNAPSHOT_VERSION", "SessionMemoryStore"]
