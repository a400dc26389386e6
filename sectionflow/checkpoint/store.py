"""Checkpoint store abstraction for workflow state persistence."""

from __future__ import annotations

from typing import Protocol

from ..models import WorkflowState
from .models import Checkpoint


class CheckpointStore(Protocol):
    """Protocol for versioned checkpoint persistence backends.

    Every write carries the version the caller last observed. ``0`` means
    the namespace must not exist yet. A mismatch raises ``VersionConflict``;
    callers must re-read, reapply their change and retry rather than resend
    the same write.
    """

    async def put(
        self, namespace: str, state: WorkflowState, expected_version: int
    ) -> int:
        """Persist ``state`` and return the new version."""

    async def get(self, namespace: str) -> Checkpoint | None:
        """Return the latest checkpoint, or ``None`` if missing or deleted."""

    async def list(self, prefix: str = "") -> list[str]:
        """Return live namespaces starting with ``prefix``."""

    async def delete(self, namespace: str) -> None:
        """Tombstone ``namespace``."""
