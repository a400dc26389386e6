"""In-memory implementation of the checkpoint store."""

from __future__ import annotations

import asyncio
from typing import Dict, NamedTuple, Optional

from ..errors import NamespaceDeleted, VersionConflict
from ..models import WorkflowState
from .models import Checkpoint
from .store import CheckpointStore


class _Entry(NamedTuple):
    payload: Optional[str]
    version: int
    deleted: bool = False


class InMemoryCheckpointStore(CheckpointStore):
    """Store checkpoints in local memory.

    Useful for tests or when no database is configured. Snapshots are kept
    serialized so callers never share mutable state with the store. Data is
    not persisted across process restarts.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def put(
        self, namespace: str, state: WorkflowState, expected_version: int
    ) -> int:
        payload = state.to_json()
        async with self._lock:
            entry = self._entries.get(namespace)
            if entry is not None and entry.deleted:
                raise NamespaceDeleted(namespace)
            current = entry.version if entry else 0
            if current != expected_version:
                raise VersionConflict(namespace, expected_version, current)
            self._entries[namespace] = _Entry(payload, current + 1)
            return current + 1

    async def get(self, namespace: str) -> Checkpoint | None:
        entry = self._entries.get(namespace)
        if entry is None or entry.deleted or entry.payload is None:
            return None
        return Checkpoint(
            namespace=namespace,
            state=WorkflowState.from_json(entry.payload),
            version=entry.version,
        )

    async def list(self, prefix: str = "") -> list[str]:
        return sorted(
            ns
            for ns, entry in self._entries.items()
            if ns.startswith(prefix) and not entry.deleted
        )

    async def delete(self, namespace: str) -> None:
        async with self._lock:
            entry = self._entries.get(namespace)
            version = entry.version if entry else 0
            self._entries[namespace] = _Entry(None, version + 1, deleted=True)
