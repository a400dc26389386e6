"""SQLite implementation of the checkpoint store."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..errors import NamespaceDeleted, VersionConflict
from ..models import WorkflowState
from .models import Checkpoint
from .store import CheckpointStore


class SQLiteCheckpointStore(CheckpointStore):
    """Persist checkpoints using SQLite.

    Writes are compare-and-set updates on the ``version`` column, so two
    processes sharing the database file cannot overwrite each other.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS checkpoints (
                    namespace TEXT PRIMARY KEY,
                    state TEXT,
                    version INTEGER NOT NULL,
                    deleted INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL
                )
                """
            )
            self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def _current(self, cur: sqlite3.Cursor, namespace: str) -> sqlite3.Row | None:
        cur.execute(
            "SELECT version, deleted FROM checkpoints WHERE namespace = ?", (namespace,)
        )
        return cur.fetchone()

    def _conflict(
        self, cur: sqlite3.Cursor, namespace: str, expected_version: int
    ) -> Exception:
        row = self._current(cur, namespace)
        if row is not None and row["deleted"]:
            return NamespaceDeleted(namespace)
        actual = row["version"] if row is not None else 0
        return VersionConflict(namespace, expected_version, actual)

    def _put(self, namespace: str, payload: str, expected_version: int) -> int:
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            cur = self._conn.cursor()
            if expected_version == 0:
                try:
                    cur.execute(
                        "INSERT INTO checkpoints (namespace, state, version, deleted, updated_at) VALUES (?, ?, 1, 0, ?)",
                        (namespace, payload, now),
                    )
                except sqlite3.IntegrityError:
                    self._conn.rollback()
                    raise self._conflict(cur, namespace, expected_version) from None
            else:
                cur.execute(
                    """
                    UPDATE checkpoints SET state = ?, version = version + 1, updated_at = ?
                    WHERE namespace = ? AND version = ? AND deleted = 0
                    """,
                    (payload, now, namespace, expected_version),
                )
                if cur.rowcount != 1:
                    self._conn.rollback()
                    raise self._conflict(cur, namespace, expected_version)
            self._conn.commit()
        return expected_version + 1

    def _delete(self, namespace: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(
                "UPDATE checkpoints SET state = NULL, deleted = 1, version = version + 1, updated_at = ? WHERE namespace = ?",
                (now, namespace),
            )
            if cur.rowcount == 0:
                cur.execute(
                    "INSERT INTO checkpoints (namespace, state, version, deleted, updated_at) VALUES (?, NULL, 1, 1, ?)",
                    (namespace, now),
                )
            self._conn.commit()

    # ------------------------------------------------------------------
    # Store API
    async def put(
        self, namespace: str, state: WorkflowState, expected_version: int
    ) -> int:
        return await asyncio.to_thread(
            self._put, namespace, state.to_json(), expected_version
        )

    async def get(self, namespace: str) -> Checkpoint | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT namespace, state, version FROM checkpoints WHERE namespace = ? AND deleted = 0",
            namespace,
        )
        if not row or row["state"] is None:
            return None
        return Checkpoint(
            namespace=row["namespace"],
            state=WorkflowState.from_json(row["state"]),
            version=row["version"],
        )

    async def list(self, prefix: str = "") -> list[str]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT namespace FROM checkpoints WHERE deleted = 0 AND substr(namespace, 1, ?) = ? ORDER BY namespace",
            len(prefix),
            prefix,
        )
        return [r["namespace"] for r in rows]

    async def delete(self, namespace: str) -> None:
        await asyncio.to_thread(self._delete, namespace)

    def close(self) -> None:
        self._conn.close()
