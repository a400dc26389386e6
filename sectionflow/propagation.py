"""Stale propagation from an edited or regenerated section to its dependents."""

from __future__ import annotations

import logging

from .graph import DependencyGraph
from .models import APPROVED_STATUSES, SectionStatus, WorkflowState
from .state_machine import transition

logger = logging.getLogger(__name__)


def propagate_staleness(
    state: WorkflowState, graph: DependencyGraph, cause: str
) -> list[str]:
    """Mark approved transitive dependents of ``cause`` as stale.

    Dependents in any other status have not consumed the upstream content yet
    and are left untouched, so running this twice for the same cause yields
    the same statuses as running it once.

    Returns:
        Section ids that were marked stale by this call, in topological order.
    """

    dependents = graph.sort(graph.transitive_dependents(cause))
    logger.info(f"Found {len(dependents)} dependent sections for {cause}")

    marked: list[str] = []
    for section_id in dependents:
        record = state.sections.get(section_id)
        if record is None:
            logger.warning(f"Dependent section {section_id} not found in state")
            continue
        if record.status not in APPROVED_STATUSES:
            continue

        previous = record.status
        transition(state, graph, section_id, SectionStatus.STALE)
        record.previous_status = previous
        state.add_message(
            "stale_notice",
            f"Section {section_id} marked stale after upstream change to {cause}",
            section_id=section_id,
        )
        marked.append(section_id)
        logger.info(f"Marked section {section_id} as stale (was {previous.value})")

    if marked:
        logger.info(f"Marked {len(marked)} dependent sections as stale")
    return marked
