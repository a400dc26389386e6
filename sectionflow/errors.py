"""Typed errors raised by the sectionflow orchestration core."""

from __future__ import annotations

from typing import Optional


class SectionflowError(Exception):
    """Base class for every error raised by sectionflow."""


class DependencyConfigError(SectionflowError):
    """Dependency configuration is malformed or cyclic."""


class SectionNotFound(SectionflowError):
    def __init__(self, section_id: str, instance_id: Optional[str] = None) -> None:
        self.section_id = section_id
        self.instance_id = instance_id
        where = f" in instance {instance_id}" if instance_id else ""
        super().__init__(f"Section {section_id!r} not found{where}")


class InvalidTransition(SectionflowError):
    """Attempted a section status change the state machine does not allow."""

    def __init__(self, section_id: str, current: str, attempted: str, detail: str = "") -> None:
        self.section_id = section_id
        self.current = current
        self.attempted = attempted
        message = f"Illegal status transition for {section_id}: {current} -> {attempted}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class DependencyNotApproved(InvalidTransition):
    """A gated transition was attempted before its prerequisites were approved."""

    def __init__(self, section_id: str, current: str, attempted: str, pending: list[str]) -> None:
        self.pending = pending
        super().__init__(
            section_id,
            current,
            attempted,
            detail=f"unapproved dependencies: {', '.join(pending)}",
        )


# ----------------------------------------------------------------------
# Feedback API misuse
class FeedbackError(SectionflowError):
    """Base class for rejected feedback submissions."""


class NoActiveInterrupt(FeedbackError):
    def __init__(self, instance_id: str) -> None:
        self.instance_id = instance_id
        super().__init__(f"Cannot submit feedback when no interrupt is active ({instance_id})")


class InterruptAlreadyActive(FeedbackError):
    def __init__(self, instance_id: str, interruption_point: Optional[str]) -> None:
        self.instance_id = instance_id
        self.interruption_point = interruption_point
        super().__init__(
            f"Instance {instance_id} is already interrupted at {interruption_point}"
        )


class InvalidFeedbackType(FeedbackError):
    def __init__(self, feedback_type: str) -> None:
        self.feedback_type = feedback_type
        super().__init__(f"Invalid feedback type: {feedback_type}")


class InvalidFeedbackForState(FeedbackError):
    def __init__(self, feedback_type: str, current: str, content_reference: Optional[str] = None) -> None:
        self.feedback_type = feedback_type
        self.current = current
        self.content_reference = content_reference
        target = f" on {content_reference}" if content_reference else ""
        super().__init__(
            f"Feedback '{feedback_type}' is not valid for status '{current}'{target}"
        )


class FeedbackConflict(FeedbackError):
    def __init__(self, instance_id: str) -> None:
        self.instance_id = instance_id
        super().__init__(f"Feedback for instance {instance_id} is already being processed")


# ----------------------------------------------------------------------
# Checkpoint store
class CheckpointError(SectionflowError):
    """Base class for checkpoint persistence errors."""


class VersionConflict(CheckpointError):
    def __init__(self, namespace: str, expected: int, actual: int) -> None:
        self.namespace = namespace
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Version conflict on {namespace}: expected {expected}, stored {actual}"
        )


class NamespaceDeleted(CheckpointError):
    def __init__(self, namespace: str) -> None:
        self.namespace = namespace
        super().__init__(f"Namespace {namespace} has been deleted")


class InstanceNotFound(CheckpointError):
    def __init__(self, instance_id: str) -> None:
        self.instance_id = instance_id
        super().__init__(f"Workflow instance {instance_id} not found")


class InstanceAlreadyExists(CheckpointError):
    def __init__(self, instance_id: str) -> None:
        self.instance_id = instance_id
        super().__init__(f"Workflow instance {instance_id} already exists")


# ----------------------------------------------------------------------
# External collaborators
class CollaboratorError(SectionflowError):
    """Failure reported by the generation or evaluation collaborator."""

    kind = "collaborator"

    def __init__(self, section_id: str, message: str) -> None:
        self.section_id = section_id
        super().__init__(f"{self.kind}: {message}")


class CollaboratorTimeout(CollaboratorError, TimeoutError):
    kind = "timeout"

    def __init__(self, section_id: str, operation: str, deadline: float) -> None:
        self.operation = operation
        self.deadline = deadline
        super().__init__(
            section_id,
            f"{operation} for '{section_id}' exceeded {deadline:g}s deadline",
        )


class GenerationError(CollaboratorError):
    kind = "generation"


class EvaluationError(CollaboratorError):
    kind = "evaluation"


class ResumeFailure(SectionflowError):
    """The driver could not restart after feedback; the instance is stuck."""

    def __init__(self, instance_id: str, cause: BaseException) -> None:
        self.instance_id = instance_id
        self.cause = cause
        super().__init__(f"Failed to resume instance {instance_id}: {cause}")


class InvalidContent(SectionflowError, ValueError):
    """Edited content was empty."""

    def __init__(self, section_id: str) -> None:
        self.section_id = section_id
        super().__init__(f"Edited content for {section_id} must not be empty")
