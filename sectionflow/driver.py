"""Pipeline driver advancing sections through generation and evaluation."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Set, Tuple, Union

from pydantic import ValidationError

from .collaborators import (
    Evaluator,
    GenerationContext,
    Generator,
    call_with_deadline,
    criteria_for,
    load_criteria,
    load_object,
)
from .checkpoint import CheckpointStore, get_checkpoint_store
from .config import SectionflowConfig, load_config
from .constants import (
    DEFAULT_DEADLINE_SECONDS,
    DEFAULT_PASSING_THRESHOLD,
    DEFAULT_WORKER_POOL_SIZE,
)
from .errors import CollaboratorError, EvaluationError, GenerationError
from .graph import DependencyGraph, load_dependency_graph
from .models import (
    EvaluationResult,
    InstanceStatus,
    InterruptReason,
    SectionStatus,
    WorkflowState,
)
from .orchestrator import SuspensionController, mark_interrupted, settle_edit
from .state_machine import dependencies_satisfied, transition
from .utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

_GUIDANCE_KINDS = ("regeneration_guidance", "revision_request")

GENERATION_INTERRUPTED = "interrupted: generation did not complete"


class StepOutcome(str, Enum):
    PROGRESSED = "progressed"
    INTERRUPTED = "interrupted"
    COMPLETE = "complete"
    IDLE = "idle"


class PipelineDriver:
    """Runs generation and evaluation for the sections of an instance.

    The driver only mutates state through the controller, one step per
    persisted change, and stops whenever an interrupt is raised.
    """

    def __init__(
        self,
        controller: SuspensionController,
        generator: Generator,
        evaluator: Evaluator,
        *,
        deadline: float = DEFAULT_DEADLINE_SECONDS,
        retry_policy: Optional[RetryPolicy] = None,
        criteria: Optional[Dict[str, Dict[str, Any]]] = None,
        passing_threshold: float = DEFAULT_PASSING_THRESHOLD,
        require_review: bool = True,
    ) -> None:
        self.controller = controller
        self.generator = generator
        self.evaluator = evaluator
        self.deadline = deadline
        self.retry_policy = retry_policy or RetryPolicy()
        self.criteria = criteria or {}
        self.passing_threshold = passing_threshold
        self.require_review = require_review
        self._run_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._in_flight: Set[Tuple[str, str]] = set()

    @classmethod
    def from_config(
        cls,
        controller: SuspensionController,
        generator: Generator,
        evaluator: Evaluator,
        config: SectionflowConfig,
        criteria: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> "PipelineDriver":
        return cls(
            controller,
            generator,
            evaluator,
            deadline=config.generation.deadline_seconds,
            retry_policy=RetryPolicy.from_config(config.generation),
            criteria=criteria,
            passing_threshold=config.evaluation.passing_threshold,
            require_review=config.evaluation.require_review,
        )

    @property
    def graph(self) -> DependencyGraph:
        return self.controller.graph

    async def run(self, instance_id: str) -> WorkflowState:
        """Step ``instance_id`` until it is interrupted, complete or idle."""
        async with self._run_locks[instance_id]:
            while True:
                outcome = await self.step(instance_id)
                if outcome != StepOutcome.PROGRESSED:
                    logger.info(f"Instance {instance_id} stopped: {outcome.value}")
                    break
        return await self.controller.get_state(instance_id)

    async def step(self, instance_id: str) -> StepOutcome:
        """Perform the next unit of work for ``instance_id``."""
        state = await self.controller.get_state(instance_id)
        if state.interrupt_status.is_interrupted:
            return StepOutcome.INTERRUPTED

        orphaned = [
            sid
            for sid in self.graph.sort(state.sections_with_status(SectionStatus.GENERATING))
            if (instance_id, sid) not in self._in_flight
        ]
        if orphaned:
            # Claimed by a run that died before recording a result.
            section_id = orphaned[0]
            logger.warning(f"Section {section_id} of {instance_id} was left generating")
            await self.controller.apply(
                instance_id,
                lambda s: self._record_failure(s, section_id, GENERATION_INTERRUPTED),
            )
            return StepOutcome.PROGRESSED

        edited = self.graph.sort(state.sections_with_status(SectionStatus.EDITED))
        if edited:
            # An edit was persisted without its propagation.
            await self.controller.apply(
                instance_id, lambda s: settle_edit(s, self.graph, edited[0])
            )
            return StepOutcome.PROGRESSED

        stale = [
            sid
            for sid in self.graph.sort(state.sections_with_status(SectionStatus.STALE))
            if dependencies_satisfied(state, self.graph, sid)
        ]
        if stale:
            section_id = stale[0]
            await self.controller.apply(
                instance_id,
                lambda s: mark_interrupted(
                    s,
                    section_id,
                    InterruptReason.CONTENT_REVIEW,
                    f"stale_review:{section_id}",
                    s.section(section_id).evaluation_result,
                ),
            )
            return StepOutcome.INTERRUPTED

        failed = self.graph.sort(state.sections_with_status(SectionStatus.ERROR))
        if failed:
            return await self._handle_error(instance_id, failed[0], state.sections[failed[0]].attempts)

        scope = self._scope(state)
        ready = [
            sid
            for sid in self.graph.sort(state.sections_with_status(SectionStatus.NOT_STARTED))
            if sid in scope and dependencies_satisfied(state, self.graph, sid)
        ]
        ready += self.graph.sort(state.sections_with_status(SectionStatus.NEEDS_REVISION))
        if ready:
            await self.controller.apply(instance_id, lambda s: self._enqueue(s, ready))
            return StepOutcome.PROGRESSED

        claimable = [
            sid
            for sid in self.graph.sort(state.sections_with_status(SectionStatus.QUEUED))
            if dependencies_satisfied(state, self.graph, sid)
        ]
        if claimable:
            return await self._generate(instance_id, claimable[0])

        if state.is_complete():
            if state.status != InstanceStatus.COMPLETE:
                await self.controller.apply(instance_id, self._finalize)
                logger.info(f"Instance {instance_id} complete")
            return StepOutcome.COMPLETE
        return StepOutcome.IDLE

    def _scope(self, state: WorkflowState) -> Set[str]:
        """Required sections plus everything they depend on."""
        scope: Set[str] = set()
        for section_id in state.required_sections:
            if section_id in self.graph:
                scope.add(section_id)
                scope |= self.graph.transitive_dependencies(section_id)
        return scope

    def _enqueue(self, state: WorkflowState, section_ids: Iterable[str]) -> None:
        for section_id in section_ids:
            transition(state, self.graph, section_id, SectionStatus.QUEUED)
        state.status = InstanceStatus.RUNNING

    def _finalize(self, state: WorkflowState) -> None:
        for section_id in self.graph.sort(state.sections_with_status(SectionStatus.APPROVED)):
            transition(state, self.graph, section_id, SectionStatus.COMPLETE)
        state.status = InstanceStatus.COMPLETE
        state.add_message("instance_complete", "All required sections approved")

    async def _handle_error(
        self, instance_id: str, section_id: str, attempts: int
    ) -> StepOutcome:
        if self.retry_policy.should_retry(attempts):
            logger.info(f"Retrying {section_id} after attempt {attempts}")
            await self.retry_policy.wait(attempts)

            def requeue(state: WorkflowState) -> None:
                transition(state, self.graph, section_id, SectionStatus.QUEUED)
                state.add_message("retry", f"Retrying {section_id} (attempt {attempts + 1})", section_id=section_id)

            await self.controller.apply(instance_id, requeue)
            return StepOutcome.PROGRESSED

        logger.error(f"Section {section_id} failed after {attempts} attempts")
        await self.controller.apply(
            instance_id,
            lambda s: mark_interrupted(
                s, section_id, InterruptReason.ERROR_OCCURRED, f"generation:{section_id}"
            ),
        )
        return StepOutcome.INTERRUPTED

    def _record_failure(self, state: WorkflowState, section_id: str, error: str) -> None:
        if state.sections[section_id].status != SectionStatus.GENERATING:
            return
        transition(state, self.graph, section_id, SectionStatus.ERROR, error=error)
        state.record_error(f"{section_id}: {error}")

    def _context(self, state: WorkflowState, section_id: str) -> GenerationContext:
        record = state.sections[section_id]
        upstream = {
            dep: state.sections[dep].content
            for dep in self.graph.direct_dependencies(section_id)
            if dep in state.sections
        }
        guidance: list[str] = []
        for message in state.messages:
            if message.section_id != section_id:
                continue
            if message.kind == "section_generated":
                guidance = []
            elif message.kind in _GUIDANCE_KINDS:
                guidance.append(message.content)
        return GenerationContext(
            instance_id=state.instance_id,
            section_id=section_id,
            upstream=upstream,
            previous_content=record.content or None,
            guidance=guidance,
            attempt=record.attempts,
        )

    async def _generate(self, instance_id: str, section_id: str) -> StepOutcome:
        claimed: Dict[str, GenerationContext] = {}

        def claim(state: WorkflowState) -> None:
            record = transition(state, self.graph, section_id, SectionStatus.GENERATING)
            record.attempts += 1
            claimed["context"] = self._context(state, section_id)

        await self.controller.apply(instance_id, claim)
        context = claimed["context"]
        logger.info(f"Generating {section_id} for {instance_id} (attempt {context.attempt})")

        self._in_flight.add((instance_id, section_id))
        try:
            return await self._complete_claim(instance_id, section_id, context)
        finally:
            self._in_flight.discard((instance_id, section_id))

    async def _complete_claim(
        self, instance_id: str, section_id: str, context: GenerationContext
    ) -> StepOutcome:
        try:
            content = await call_with_deadline(
                "generation",
                section_id,
                self.generator.generate(section_id, context, self.deadline),
                self.deadline,
            )
            if not isinstance(content, str) or not content.strip():
                raise GenerationError(section_id, "generator returned empty content")
            evaluation = await call_with_deadline(
                "evaluation",
                section_id,
                self.evaluator.evaluate(
                    section_id,
                    content,
                    criteria_for(self.criteria, section_id, self.passing_threshold),
                ),
                self.deadline,
            )
            evaluation = self._coerce_evaluation(section_id, evaluation)
        except CollaboratorError as e:
            logger.warning(f"Section {section_id} failed: {e}")
            await self.controller.apply(
                instance_id, lambda s: self._record_failure(s, section_id, str(e))
            )
            return StepOutcome.PROGRESSED
        except asyncio.CancelledError:
            logger.warning(f"Generation of {section_id} for {instance_id} was cancelled")
            await self.controller.apply(
                instance_id,
                lambda s: self._record_failure(s, section_id, GENERATION_INTERRUPTED),
            )
            raise

        auto_approve = evaluation.passed and not self.require_review

        def record_result(state: WorkflowState) -> None:
            record = transition(state, self.graph, section_id, SectionStatus.AWAITING_REVIEW)
            record.content = content
            record.evaluation_result = evaluation
            record.attempts = 0
            state.add_message(
                "section_generated",
                f"Generated {section_id} (score {evaluation.score:g})",
                section_id=section_id,
            )
            if auto_approve:
                transition(state, self.graph, section_id, SectionStatus.APPROVED)
                state.add_message("auto_approved", f"{section_id} passed evaluation", section_id=section_id)
                return
            reason = (
                InterruptReason.CONTENT_REVIEW
                if evaluation.passed
                else InterruptReason.EVALUATION_NEEDED
            )
            mark_interrupted(state, section_id, reason, f"evaluation:{section_id}", evaluation)

        await self.controller.apply(instance_id, record_result)
        return StepOutcome.PROGRESSED if auto_approve else StepOutcome.INTERRUPTED

    def _coerce_evaluation(self, section_id: str, evaluation: Any) -> EvaluationResult:
        if isinstance(evaluation, EvaluationResult):
            return evaluation
        try:
            return EvaluationResult.model_validate(evaluation)
        except ValidationError as e:
            raise EvaluationError(section_id, f"malformed evaluation result: {e}") from e


class WorkerPool:
    """Drive several instances concurrently with a bounded number of workers."""

    def __init__(self, driver: PipelineDriver, size: int = DEFAULT_WORKER_POOL_SIZE) -> None:
        if size < 1:
            raise ValueError("Worker pool size must be at least 1")
        self.driver = driver
        self.size = size
        self._semaphore = asyncio.Semaphore(size)

    async def _run_one(self, instance_id: str) -> WorkflowState:
        async with self._semaphore:
            return await self.driver.run(instance_id)

    async def run(
        self, instance_ids: Iterable[str]
    ) -> Dict[str, Union[WorkflowState, BaseException]]:
        """Run every instance, returning its final state or the error it raised."""
        unique = list(dict.fromkeys(instance_ids))
        results = await asyncio.gather(
            *(self._run_one(instance_id) for instance_id in unique),
            return_exceptions=True,
        )
        for instance_id, result in zip(unique, results):
            if isinstance(result, BaseException):
                logger.error(f"Instance {instance_id} failed: {result}")
        return dict(zip(unique, results))


def build_controller(
    config: Optional[SectionflowConfig] = None,
    *,
    store: Optional[CheckpointStore] = None,
    graph: Optional[DependencyGraph] = None,
    generator: Optional[Generator] = None,
    evaluator: Optional[Evaluator] = None,
) -> SuspensionController:
    """Wire a controller, and a driver when collaborators are available.

    Collaborators fall back to the import paths under ``generation`` in the
    configuration. Without both of them the controller has no driver and
    feedback is applied without resuming.
    """
    config = config or load_config()
    store = store or get_checkpoint_store(config=config)
    graph = graph or load_dependency_graph(config.dependency_map_path)
    controller = SuspensionController(store, graph)

    if generator is None and config.generation.generator:
        generator = load_object(config.generation.generator)
    if evaluator is None and config.generation.evaluator:
        evaluator = load_object(config.generation.evaluator)
    if generator is not None and evaluator is not None:
        criteria = load_criteria(config.evaluation.criteria_path)
        controller.driver = PipelineDriver.from_config(
            controller, generator, evaluator, config, criteria
        )
    else:
        logger.info("No generator/evaluator configured; running without a pipeline driver")
    return controller
