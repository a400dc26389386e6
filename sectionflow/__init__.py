"""Sectionflow: dependency-aware document workflows with human review."""

from .checkpoint import get_checkpoint_store
from .config import SectionflowConfig, load_config
from .driver import PipelineDriver, WorkerPool, build_controller
from .graph import DependencyGraph, load_dependency_graph
from .models import (
    EvaluationResult,
    FeedbackType,
    InterruptReason,
    SectionStatus,
    UserFeedback,
    WorkflowState,
)
from .orchestrator import SuspensionController
from .propagation import propagate_staleness

__version__ = "0.1.0"
__all__ = [
    "DependencyGraph",
    "EvaluationResult",
    "FeedbackType",
    "InterruptReason",
    "PipelineDriver",
    "SectionStatus",
    "SectionflowConfig",
    "SuspensionController",
    "UserFeedback",
    "WorkerPool",
    "WorkflowState",
    "build_controller",
    "get_checkpoint_store",
    "load_config",
    "load_dependency_graph",
    "propagate_staleness",
]
