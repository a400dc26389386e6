"""Core data contracts for the sectionflow orchestration engine."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .errors import SectionNotFound


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SectionStatus(str, Enum):
    NOT_STARTED = "not_started"
    QUEUED = "queued"
    GENERATING = "generating"
    AWAITING_REVIEW = "awaiting_review"
    APPROVED = "approved"
    EDITED = "edited"
    NEEDS_REVISION = "needs_revision"
    STALE = "stale"
    ERROR = "error"
    COMPLETE = "complete"


# COMPLETE is the finalized form of APPROVED.
APPROVED_STATUSES = frozenset({SectionStatus.APPROVED, SectionStatus.COMPLETE})


class FeedbackType(str, Enum):
    APPROVE = "approve"
    REVISE = "revise"
    REGENERATE = "regenerate"
    KEEP = "keep"


class InterruptReason(str, Enum):
    EVALUATION_NEEDED = "evaluation_needed"
    CONTENT_REVIEW = "content_review"
    ERROR_OCCURRED = "error_occurred"


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING_FEEDBACK = "processing_feedback"
    APPLIED = "applied"
    FAILED = "failed"


class InstanceStatus(str, Enum):
    RUNNING = "running"
    AWAITING_FEEDBACK = "awaiting_feedback"
    COMPLETE = "complete"
    FAILED = "failed"


class EvaluationResult(BaseModel):
    """Structured score produced by the evaluation collaborator."""

    passed: bool
    score: float
    feedback: str = ""
    categories: Dict[str, Any] = Field(default_factory=dict)


class SectionRecord(BaseModel):
    """Lifecycle record of a single generated section."""

    id: str
    content: str = ""
    status: SectionStatus = SectionStatus.NOT_STARTED
    evaluation_result: Optional[EvaluationResult] = None
    last_updated: datetime = Field(default_factory=utcnow)
    last_error: Optional[str] = None
    previous_status: Optional[SectionStatus] = None
    attempts: int = 0

    @property
    def has_content(self) -> bool:
        return bool(self.content and self.content.strip())


class InterruptFeedback(BaseModel):
    """Feedback recorded onto an active interrupt."""

    type: FeedbackType
    content: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class InterruptStatus(BaseModel):
    is_interrupted: bool = False
    interruption_point: Optional[str] = None
    reason: Optional[InterruptReason] = None
    content_reference: Optional[str] = None
    feedback: Optional[InterruptFeedback] = None
    processing_status: Optional[ProcessingStatus] = None


class InterruptMetadata(BaseModel):
    """Context captured when the driver suspends an instance."""

    node_id: str
    reason: InterruptReason
    content_reference: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    evaluation_result: Optional[EvaluationResult] = None


class InterruptDetails(BaseModel):
    """Response-ready projection of the active interrupt."""

    node_id: str
    reason: InterruptReason
    content_reference: str = ""
    timestamp: datetime
    evaluation_result: Optional[EvaluationResult] = None


class WorkflowMessage(BaseModel):
    """Audit record of user or system communication."""

    role: str = "system"
    kind: str
    content: str
    section_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class UserFeedback(BaseModel):
    """Feedback submitted through the human feedback channel."""

    type: str
    comments: Optional[str] = None
    timestamp: Optional[datetime] = None


class WorkflowState(BaseModel):
    """Root aggregate persisted once per workflow instance."""

    instance_id: str
    sections: Dict[str, SectionRecord] = Field(default_factory=dict)
    required_sections: List[str] = Field(default_factory=list)
    interrupt_status: InterruptStatus = Field(default_factory=InterruptStatus)
    interrupt_metadata: Optional[InterruptMetadata] = None
    status: InstanceStatus = InstanceStatus.RUNNING
    errors: List[str] = Field(default_factory=list)
    messages: List[WorkflowMessage] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def section(self, section_id: str) -> SectionRecord:
        """Return the record for ``section_id``.

        Raises:
            SectionNotFound: If the instance does not track the section.
        """
        record = self.sections.get(section_id)
        if record is None:
            raise SectionNotFound(section_id, self.instance_id)
        return record

    def sections_with_status(self, *statuses: SectionStatus) -> List[str]:
        return [sid for sid, rec in self.sections.items() if rec.status in statuses]

    def is_complete(self) -> bool:
        """Return ``True`` when every required section is approved.

        Stale sections never count toward completion.
        """
        for section_id in self.required_sections:
            record = self.sections.get(section_id)
            if record is None or record.status not in APPROVED_STATUSES:
                return False
        return True

    def add_message(self, kind: str, content: str, section_id: Optional[str] = None, role: str = "system") -> None:
        self.messages.append(
            WorkflowMessage(role=role, kind=kind, content=content, section_id=section_id)
        )

    def record_error(self, message: str) -> None:
        self.errors.append(message)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str | bytes) -> "WorkflowState":
        return cls.model_validate_json(data)

