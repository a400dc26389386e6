"""Boundary contracts for the generation and evaluation collaborators."""

from __future__ import annotations

import asyncio
import importlib
import logging
from pathlib import Path
from typing import Any, Awaitable, Dict, Optional, Protocol, TypeVar, runtime_checkable

import yaml
from pydantic import BaseModel, Field

from .errors import CollaboratorTimeout, EvaluationError, GenerationError
from .models import EvaluationResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GenerationContext(BaseModel):
    """Inputs handed to the generator for one section."""

    instance_id: str
    section_id: str
    upstream: Dict[str, str] = Field(default_factory=dict)
    previous_content: Optional[str] = None
    guidance: list[str] = Field(default_factory=list)
    attempt: int = 1


@runtime_checkable
class Generator(Protocol):
    async def generate(
        self, section_id: str, context: GenerationContext, deadline: float
    ) -> str:
        """Produce content for ``section_id`` within ``deadline`` seconds."""


@runtime_checkable
class Evaluator(Protocol):
    async def evaluate(
        self, section_id: str, content: str, criteria: Dict[str, Any]
    ) -> EvaluationResult:
        """Score ``content`` against ``criteria``."""


async def call_with_deadline(
    operation: str, section_id: str, coro: Awaitable[T], deadline: float
) -> T:
    """Await ``coro`` and convert collaborator failures into typed errors.

    Raises:
        CollaboratorTimeout: If ``deadline`` elapses first.
        GenerationError: If a generation call fails.
        EvaluationError: If an evaluation call fails.
    """
    error_cls = EvaluationError if operation == "evaluation" else GenerationError
    try:
        return await asyncio.wait_for(coro, timeout=deadline)
    except asyncio.TimeoutError:
        raise CollaboratorTimeout(section_id, operation, deadline) from None
    except (GenerationError, EvaluationError):
        raise
    except Exception as e:
        raise error_cls(section_id, f"{type(e).__name__}: {e}") from e


def load_object(import_path: str) -> Any:
    """Import ``module:attribute`` and return the attribute.

    Classes are instantiated without arguments.
    """
    module_name, _, attribute = import_path.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Import path must look like 'module:attribute', got {import_path!r}")
    module = importlib.import_module(module_name)
    obj = getattr(module, attribute)
    if isinstance(obj, type):
        obj = obj()
    return obj


def load_criteria(path: Optional[str | Path]) -> Dict[str, Dict[str, Any]]:
    """Load per-section evaluation criteria from a JSON or YAML file."""
    if not path:
        return {}
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Evaluation criteria in {path} must be a mapping")
    logger.info(f"Loaded evaluation criteria for {len(data)} entries from {path}")
    return data


def criteria_for(
    criteria: Dict[str, Dict[str, Any]], section_id: str, passing_threshold: float
) -> Dict[str, Any]:
    section_criteria = criteria.get(section_id) or criteria.get("default") or {}
    return {"passing_threshold": passing_threshold, **section_criteria}
