"""PostgreSQL implementation of the checkpoint store."""

from __future__ import annotations

import asyncpg

from ..errors import NamespaceDeleted, VersionConflict
from ..models import WorkflowState
from .models import Checkpoint
from .store import CheckpointStore


class PostgresCheckpointStore(CheckpointStore):
    """Persist checkpoints using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS checkpoints (
                namespace TEXT PRIMARY KEY,
                state JSONB,
                version INTEGER NOT NULL,
                deleted BOOLEAN NOT NULL DEFAULT FALSE,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        )

    async def _raise_conflict(
        self, conn: asyncpg.Connection, namespace: str, expected_version: int
    ) -> None:
        row = await conn.fetchrow(
            "SELECT version, deleted FROM checkpoints WHERE namespace = $1", namespace
        )
        if row is not None and row["deleted"]:
            raise NamespaceDeleted(namespace)
        actual = row["version"] if row is not None else 0
        raise VersionConflict(namespace, expected_version, actual)

    # ------------------------------------------------------------------
    async def put(
        self, namespace: str, state: WorkflowState, expected_version: int
    ) -> int:
        conn = await self._connect()
        try:
            if expected_version == 0:
                version = await conn.fetchval(
                    """
                    INSERT INTO checkpoints (namespace, state, version)
                    VALUES ($1, $2::jsonb, 1)
                    ON CONFLICT (namespace) DO NOTHING
                    RETURNING version
                    """,
                    namespace,
                    state.to_json(),
                )
            else:
                version = await conn.fetchval(
                    """
                    UPDATE checkpoints
                    SET state = $2::jsonb, version = version + 1, updated_at = now()
                    WHERE namespace = $1 AND version = $3 AND NOT deleted
                    RETURNING version
                    """,
                    namespace,
                    state.to_json(),
                    expected_version,
                )
            if version is None:
                await self._raise_conflict(conn, namespace, expected_version)
            return version
        finally:
            await conn.close()

    async def get(self, namespace: str) -> Checkpoint | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT namespace, state::text AS state, version FROM checkpoints WHERE namespace = $1 AND NOT deleted",
                namespace,
            )
        finally:
            await conn.close()
        if not row or row["state"] is None:
            return None
        return Checkpoint(
            namespace=row["namespace"],
            state=WorkflowState.from_json(row["state"]),
            version=row["version"],
        )

    async def list(self, prefix: str = "") -> list[str]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT namespace FROM checkpoints WHERE NOT deleted AND left(namespace, $1) = $2 ORDER BY namespace",
                len(prefix),
                prefix,
            )
        finally:
            await conn.close()
        return [r["namespace"] for r in rows]

    async def delete(self, namespace: str) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO checkpoints (namespace, state, version, deleted)
                VALUES ($1, NULL, 1, TRUE)
                ON CONFLICT (namespace) DO UPDATE
                SET state = NULL, deleted = TRUE,
                    version = checkpoints.version + 1, updated_at = now()
                """,
                namespace,
            )
        finally:
            await conn.close()
