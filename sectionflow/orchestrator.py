"""Suspension controller: interrupts, human feedback and resumption.

All mutations of a :class:`~sectionflow.models.WorkflowState` go through
:meth:`SuspensionController.apply`, which reads the latest checkpoint, applies
a change under the instance lock and writes it back with the version it read.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional, Protocol

from .checkpoint import CheckpointStore
from .classifier import classify_edit, classify_feedback, parse_feedback_type
from .constants import NAMESPACE_PREFIX
from .errors import (
    FeedbackConflict,
    InstanceAlreadyExists,
    InstanceNotFound,
    InterruptAlreadyActive,
    InvalidContent,
    NoActiveInterrupt,
    ResumeFailure,
    SectionNotFound,
    VersionConflict,
)
from .graph import DependencyGraph
from .models import (
    EvaluationResult,
    FeedbackType,
    InstanceStatus,
    InterruptDetails,
    InterruptFeedback,
    InterruptMetadata,
    InterruptReason,
    InterruptStatus,
    ProcessingStatus,
    SectionRecord,
    SectionStatus,
    UserFeedback,
    WorkflowState,
    utcnow,
)
from .propagation import propagate_staleness
from .state_machine import check_transition, transition

logger = logging.getLogger(__name__)


class ControllerPhase(str, Enum):
    IDLE = "idle"
    AWAITING_FEEDBACK = "awaiting_feedback"
    APPLYING_FEEDBACK = "applying_feedback"
    RESUMING = "resuming"


class Driver(Protocol):
    async def run(self, instance_id: str) -> Any:
        """Advance ``instance_id`` until it is interrupted, idle or complete."""


def namespace_for(instance_id: str) -> str:
    return f"{NAMESPACE_PREFIX}{instance_id}"


def mark_interrupted(
    state: WorkflowState,
    section_id: str,
    reason: InterruptReason,
    interruption_point: str,
    evaluation_result: Optional[EvaluationResult] = None,
) -> None:
    """Suspend ``state`` awaiting feedback on ``section_id``.

    Raises:
        InterruptAlreadyActive: If another interrupt is still pending.
    """
    current = state.interrupt_status
    if current.is_interrupted:
        raise InterruptAlreadyActive(state.instance_id, current.interruption_point)

    state.interrupt_status = InterruptStatus(
        is_interrupted=True,
        interruption_point=interruption_point,
        reason=reason,
        content_reference=section_id,
    )
    state.interrupt_metadata = InterruptMetadata(
        node_id=interruption_point,
        reason=reason,
        content_reference=section_id,
        evaluation_result=evaluation_result,
    )
    state.status = InstanceStatus.AWAITING_FEEDBACK
    state.add_message(
        "interrupt",
        f"Awaiting feedback on {section_id} ({reason.value})",
        section_id=section_id,
    )


def _clear_interrupt(state: WorkflowState) -> None:
    state.interrupt_status = InterruptStatus(processing_status=ProcessingStatus.APPLIED)
    state.interrupt_metadata = None
    state.status = InstanceStatus.RUNNING


_GUIDANCE_KINDS = {
    FeedbackType.REGENERATE: "regeneration_guidance",
    FeedbackType.REVISE: "revision_request",
}


class SuspensionController:
    """Detects interrupts, applies human feedback and resumes the driver."""

    def __init__(
        self,
        store: CheckpointStore,
        graph: DependencyGraph,
        driver: Optional[Driver] = None,
        max_conflict_retries: int = 5,
    ) -> None:
        self._store = store
        self.graph = graph
        self.driver = driver
        if max_conflict_retries < 1:
            raise ValueError("max_conflict_retries must be at least 1")
        self._max_conflict_retries = max_conflict_retries
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._phases: Dict[str, ControllerPhase] = {}

    # ------------------------------------------------------------------
    # Persistence
    async def get_state(self, instance_id: str) -> WorkflowState:
        checkpoint = await self._store.get(namespace_for(instance_id))
        if checkpoint is None:
            raise InstanceNotFound(instance_id)
        return checkpoint.state

    async def apply(
        self, instance_id: str, mutate: Callable[[WorkflowState], Any]
    ) -> WorkflowState:
        """Apply ``mutate`` to the latest state and persist it.

        On a version conflict the latest checkpoint is re-read and ``mutate``
        is applied again to the fresh state. Errors raised by ``mutate`` abort
        the write.
        """
        namespace = namespace_for(instance_id)
        async with self._locks[instance_id]:
            for attempt in range(1, self._max_conflict_retries + 1):
                checkpoint = await self._store.get(namespace)
                if checkpoint is None:
                    raise InstanceNotFound(instance_id)
                state = checkpoint.state
                previous_update = state.updated_at
                mutate(state)
                state.updated_at = max(utcnow(), previous_update)
                try:
                    await self._store.put(namespace, state, checkpoint.version)
                    return state
                except VersionConflict as e:
                    if attempt == self._max_conflict_retries:
                        raise
                    logger.warning(f"{e}; re-reading state for {instance_id}")

    # ------------------------------------------------------------------
    # Instance lifecycle
    async def create_instance(
        self,
        instance_id: Optional[str] = None,
        required_sections: Optional[Iterable[str]] = None,
    ) -> WorkflowState:
        """Create a new instance with every section ``NOT_STARTED``."""
        instance_id = instance_id or str(uuid.uuid4())
        required = list(dict.fromkeys(required_sections or self.graph.topological_order()))
        for section_id in required:
            if section_id not in self.graph:
                raise SectionNotFound(section_id)

        state = WorkflowState(
            instance_id=instance_id,
            sections={sid: SectionRecord(id=sid) for sid in self.graph.topological_order()},
            required_sections=required,
        )
        try:
            await self._store.put(namespace_for(instance_id), state, 0)
        except VersionConflict:
            raise InstanceAlreadyExists(instance_id) from None
        logger.info(f"Created workflow instance {instance_id} with {len(required)} required sections")
        return state

    async def init_or_get_instance(
        self, instance_id: str, required_sections: Optional[Iterable[str]] = None
    ) -> tuple[WorkflowState, bool]:
        """Return the existing instance or create it; the flag is ``True`` if new."""
        checkpoint = await self._store.get(namespace_for(instance_id))
        if checkpoint is not None:
            return checkpoint.state, False
        try:
            return await self.create_instance(instance_id, required_sections), True
        except InstanceAlreadyExists:
            return await self.get_state(instance_id), False

    async def list_instances(self) -> list[str]:
        namespaces = await self._store.list(NAMESPACE_PREFIX)
        return [ns[len(NAMESPACE_PREFIX):] for ns in namespaces]

    async def delete_instance(self, instance_id: str) -> None:
        await self._store.delete(namespace_for(instance_id))
        self._locks.pop(instance_id, None)
        logger.info(f"Deleted workflow instance {instance_id}")

    async def is_complete(self, instance_id: str) -> bool:
        return (await self.get_state(instance_id)).is_complete()

    async def get_stale_sections(self, instance_id: str) -> list[str]:
        state = await self.get_state(instance_id)
        return self.graph.sort(state.sections_with_status(SectionStatus.STALE))

    # ------------------------------------------------------------------
    # Interrupt inspection
    async def detect_interrupt(self, instance_id: str) -> bool:
        checkpoint = await self._store.get(namespace_for(instance_id))
        return checkpoint is not None and checkpoint.state.interrupt_status.is_interrupted

    async def handle_interrupt(self, instance_id: str) -> WorkflowState:
        state = await self.get_state(instance_id)
        if not state.interrupt_status.is_interrupted:
            raise NoActiveInterrupt(instance_id)
        if state.status != InstanceStatus.AWAITING_FEEDBACK:
            logger.warning(f"Unexpected instance status during interrupt: {state.status.value}")
        logger.info(f"Interrupt detected at {state.interrupt_status.interruption_point}")
        return state

    async def get_interrupt_details(self, instance_id: str) -> Optional[InterruptDetails]:
        checkpoint = await self._store.get(namespace_for(instance_id))
        if checkpoint is None:
            return None
        state = checkpoint.state
        metadata = state.interrupt_metadata
        if not state.interrupt_status.is_interrupted or metadata is None:
            return None
        return InterruptDetails(
            node_id=metadata.node_id,
            reason=metadata.reason,
            content_reference=metadata.content_reference or "",
            timestamp=metadata.timestamp,
            evaluation_result=metadata.evaluation_result,
        )

    async def get_interrupt_content(self, instance_id: str) -> Optional[SectionRecord]:
        """Return the section record the active interrupt refers to."""
        details = await self.get_interrupt_details(instance_id)
        if details is None or not details.content_reference:
            return None
        state = await self.get_state(instance_id)
        return state.sections.get(details.content_reference)

    async def controller_phase(self, instance_id: str) -> ControllerPhase:
        phase = self._phases.get(instance_id)
        if phase is not None:
            return phase
        if await self.detect_interrupt(instance_id):
            return ControllerPhase.AWAITING_FEEDBACK
        return ControllerPhase.IDLE

    # ------------------------------------------------------------------
    # Feedback
    async def submit_feedback(
        self, instance_id: str, feedback: UserFeedback | Dict[str, Any]
    ) -> WorkflowState:
        """Record, classify and apply feedback on the active interrupt, then resume.

        Raises:
            InvalidFeedbackType: For an unsupported feedback type.
            FeedbackConflict: If feedback for the instance is already in flight.
            NoActiveInterrupt: If the instance is not interrupted.
            InvalidFeedbackForState: If the target section's status does not
                accept this feedback.
            ResumeFailure: If the driver fails to restart afterwards.
        """
        if not isinstance(feedback, UserFeedback):
            feedback = UserFeedback.model_validate(feedback)
        kind = parse_feedback_type(feedback.type)

        if instance_id in self._phases:
            raise FeedbackConflict(instance_id)
        self._phases[instance_id] = ControllerPhase.APPLYING_FEEDBACK
        try:
            await self.apply(instance_id, lambda state: self._record_feedback(state, kind, feedback))
            logger.info(f"User feedback ({kind.value}) submitted for instance {instance_id}")

            state = await self.apply(instance_id, lambda state: self._apply_feedback(state, kind))

            if self.driver is None:
                logger.info(f"No pipeline driver attached; instance {instance_id} waits for resume")
                return state
            self._phases[instance_id] = ControllerPhase.RESUMING
            await self.resume_after_feedback(instance_id)
            return await self.get_state(instance_id)
        finally:
            self._phases.pop(instance_id, None)

    def _feedback_target(self, state: WorkflowState) -> str:
        status = state.interrupt_status
        if not status.is_interrupted:
            raise NoActiveInterrupt(state.instance_id)
        target = status.content_reference
        if not target:
            raise SectionNotFound("<none>", state.instance_id)
        return target

    def _record_feedback(
        self, state: WorkflowState, kind: FeedbackType, feedback: UserFeedback
    ) -> None:
        target = self._feedback_target(state)
        decision = classify_feedback(state.section(target).status, kind, target)
        check_transition(state, self.graph, target, decision.new_status)

        state.interrupt_status.feedback = InterruptFeedback(
            type=kind,
            content=feedback.comments,
            timestamp=feedback.timestamp or utcnow(),
        )
        state.interrupt_status.processing_status = ProcessingStatus.PENDING

    def _apply_feedback(self, state: WorkflowState, kind: FeedbackType) -> None:
        target = self._feedback_target(state)
        record = state.section(target)
        decision = classify_feedback(record.status, kind, target)
        transition(state, self.graph, target, decision.new_status)
        record.previous_status = None
        if decision.new_status == SectionStatus.QUEUED:
            record.attempts = 0

        recorded = state.interrupt_status.feedback
        comments = recorded.content if recorded else None
        if comments:
            state.add_message(
                _GUIDANCE_KINDS.get(kind, "reviewer_comment"),
                comments,
                section_id=target,
                role="user",
            )
        if decision.propagate:
            propagate_staleness(state, self.graph, target)

        state.add_message(
            "feedback_applied",
            f"{kind.value} applied to {target}: now {decision.new_status.value}",
            section_id=target,
        )
        _clear_interrupt(state)
        logger.info(f"Section {target} moved to {decision.new_status.value} after {kind.value}")

    async def resume_after_feedback(self, instance_id: str) -> None:
        """Re-invoke the driver for ``instance_id``.

        Failures are persisted (``processing_status = failed`` plus an entry in
        ``errors``) and re-raised as :class:`ResumeFailure`.
        """
        if self.driver is None:
            raise ResumeFailure(instance_id, RuntimeError("no pipeline driver attached"))

        def mark_processing(state: WorkflowState) -> None:
            state.interrupt_status.processing_status = ProcessingStatus.PROCESSING_FEEDBACK

        await self.apply(instance_id, mark_processing)
        logger.info(f"Resuming workflow after feedback for instance {instance_id}")
        await self._run_driver(instance_id)

        def mark_resumed(state: WorkflowState) -> None:
            if state.interrupt_status.processing_status == ProcessingStatus.PROCESSING_FEEDBACK:
                state.interrupt_status.processing_status = None

        await self.apply(instance_id, mark_resumed)
        logger.info(f"Workflow resumed successfully for instance {instance_id}")

    async def _run_driver(self, instance_id: str) -> None:
        try:
            await self.driver.run(instance_id)
        except Exception as e:
            logger.error(f"Error resuming workflow {instance_id}: {e}")

            def mark_failed(state: WorkflowState) -> None:
                state.interrupt_status.processing_status = ProcessingStatus.FAILED
                state.status = InstanceStatus.FAILED
                state.record_error(f"Failed to resume workflow: {e}")

            await self.apply(instance_id, mark_failed)
            raise ResumeFailure(instance_id, e) from e

    # ------------------------------------------------------------------
    # Direct edits
    async def edit_section(
        self, instance_id: str, section_id: str, content: str, resume: bool = True
    ) -> WorkflowState:
        """Replace the content of an approved section and stale its dependents.

        The edit and the stale marks are persisted first with the section in
        ``EDITED``; a second write settles it back to ``APPROVED``.

        A driver failure while resuming is recorded as in
        :meth:`resume_after_feedback` and raised as :class:`ResumeFailure`.
        """
        if not content or not content.strip():
            raise InvalidContent(section_id)

        def mark_edited(state: WorkflowState) -> None:
            record = state.section(section_id)
            classify_edit(record.status, section_id)
            transition(state, self.graph, section_id, SectionStatus.EDITED)
            record.content = content
            state.add_message("section_edited", f"Section {section_id} edited", section_id=section_id, role="user")
            propagate_staleness(state, self.graph, section_id)

        await self.apply(instance_id, mark_edited)
        state = await self.apply(instance_id, lambda state: settle_edit(state, self.graph, section_id))

        if resume and self.driver is not None:
            await self._run_driver(instance_id)
            state = await self.get_state(instance_id)
        return state


def settle_edit(state: WorkflowState, graph: DependencyGraph, section_id: str) -> list[str]:
    """Propagate staleness from an edited section and approve it."""
    marked = propagate_staleness(state, graph, section_id)
    transition(state, graph, section_id, SectionStatus.APPROVED)
    if state.status == InstanceStatus.COMPLETE and not state.is_complete():
        state.status = InstanceStatus.RUNNING
    return marked
