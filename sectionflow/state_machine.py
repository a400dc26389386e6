"""Per-section status lifecycle and its legal transitions."""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Optional

from .errors import DependencyNotApproved, InvalidTransition
from .graph import DependencyGraph
from .models import APPROVED_STATUSES, SectionRecord, SectionStatus, WorkflowState, utcnow

logger = logging.getLogger(__name__)

S = SectionStatus

SECTION_STATUS_TRANSITIONS: Dict[SectionStatus, FrozenSet[SectionStatus]] = {
    S.NOT_STARTED: frozenset({S.QUEUED}),
    S.QUEUED: frozenset({S.GENERATING}),
    S.GENERATING: frozenset({S.AWAITING_REVIEW, S.ERROR}),
    S.AWAITING_REVIEW: frozenset({S.APPROVED, S.NEEDS_REVISION, S.QUEUED}),
    S.APPROVED: frozenset({S.EDITED, S.STALE, S.COMPLETE}),
    S.EDITED: frozenset({S.APPROVED}),
    S.NEEDS_REVISION: frozenset({S.QUEUED}),
    S.STALE: frozenset({S.QUEUED, S.APPROVED}),
    S.ERROR: frozenset({S.QUEUED}),
    S.COMPLETE: frozenset({S.EDITED, S.STALE}),
}

# (source, target) pairs that additionally require approved prerequisites.
# Entering APPROVED is always gated.
_GATED = frozenset({(S.NOT_STARTED, S.QUEUED)})


def can_transition(current: SectionStatus, target: SectionStatus) -> bool:
    return target in SECTION_STATUS_TRANSITIONS[current]


def is_gated(current: SectionStatus, target: SectionStatus) -> bool:
    return target == S.APPROVED or (current, target) in _GATED


def unapproved_dependencies(
    state: WorkflowState, graph: DependencyGraph, section_id: str
) -> list[str]:
    """Return direct prerequisites of ``section_id`` that are not approved."""
    pending = []
    for dep in graph.direct_dependencies(section_id):
        record = state.sections.get(dep)
        if record is None or record.status not in APPROVED_STATUSES:
            pending.append(dep)
    return sorted(pending)


def dependencies_satisfied(
    state: WorkflowState, graph: DependencyGraph, section_id: str
) -> bool:
    return not unapproved_dependencies(state, graph, section_id)


def check_transition(
    state: WorkflowState,
    graph: DependencyGraph,
    section_id: str,
    target: SectionStatus,
) -> SectionRecord:
    """Validate a transition without applying it.

    Returns:
        The section record the transition would apply to.

    Raises:
        SectionNotFound: If the section is not part of the instance.
        InvalidTransition: If ``target`` is not reachable from the current status.
        DependencyNotApproved: If a gated transition has unapproved prerequisites.
    """
    record = state.section(section_id)
    current = record.status
    if not can_transition(current, target):
        raise InvalidTransition(section_id, current.value, target.value)
    if is_gated(current, target):
        pending = unapproved_dependencies(state, graph, section_id)
        if pending:
            raise DependencyNotApproved(section_id, current.value, target.value, pending)
    return record


def transition(
    state: WorkflowState,
    graph: DependencyGraph,
    section_id: str,
    target: SectionStatus,
    *,
    error: Optional[str] = None,
) -> SectionRecord:
    """Move ``section_id`` to ``target`` in place.

    ``last_error`` is set when entering ``ERROR`` and cleared on every other
    transition.
    """
    record = check_transition(state, graph, section_id, target)
    previous = record.status
    record.status = target
    record.last_updated = utcnow()
    record.last_error = error if target == S.ERROR else None
    logger.debug(f"Section {section_id}: {previous.value} -> {target.value}")
    return record
