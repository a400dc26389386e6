"""Data models for persisted checkpoints."""

from __future__ import annotations

from pydantic import BaseModel

from ..models import WorkflowState


class Checkpoint(BaseModel):
    """A versioned snapshot of one workflow instance."""

    namespace: str
    state: WorkflowState
    version: int
