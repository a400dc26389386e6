"""Mapping of human feedback onto section status changes."""

from __future__ import annotations

from typing import Dict, FrozenSet, NamedTuple, Optional

from .errors import InvalidFeedbackForState, InvalidFeedbackType
from .models import FeedbackType, SectionStatus


class FeedbackDecision(NamedTuple):
    """Outcome of classifying a feedback submission."""

    new_status: SectionStatus
    propagate: bool = False


class _Rule(NamedTuple):
    preconditions: FrozenSet[SectionStatus]
    new_status: SectionStatus


FEEDBACK_RULES: Dict[FeedbackType, _Rule] = {
    FeedbackType.APPROVE: _Rule(
        frozenset({SectionStatus.AWAITING_REVIEW}), SectionStatus.APPROVED
    ),
    FeedbackType.REVISE: _Rule(
        frozenset({SectionStatus.AWAITING_REVIEW}), SectionStatus.NEEDS_REVISION
    ),
    # ERROR is accepted as a manual retry once automatic retries are exhausted.
    FeedbackType.REGENERATE: _Rule(
        frozenset(
            {SectionStatus.AWAITING_REVIEW, SectionStatus.STALE, SectionStatus.ERROR}
        ),
        SectionStatus.QUEUED,
    ),
    FeedbackType.KEEP: _Rule(frozenset({SectionStatus.STALE}), SectionStatus.APPROVED),
}

EDITABLE_STATUSES = frozenset({SectionStatus.APPROVED, SectionStatus.COMPLETE})


def parse_feedback_type(value: str | FeedbackType) -> FeedbackType:
    """Return ``value`` as a :class:`FeedbackType`.

    Raises:
        InvalidFeedbackType: If ``value`` is not a supported feedback type.
    """
    try:
        return FeedbackType(value)
    except ValueError:
        raise InvalidFeedbackType(str(value)) from None


def classify_feedback(
    current_status: SectionStatus,
    feedback_type: str | FeedbackType,
    content_reference: Optional[str] = None,
) -> FeedbackDecision:
    """Return the status a section moves to for the given feedback.

    None of the feedback types trigger stale propagation; only direct edits
    do (see :func:`classify_edit`).

    Raises:
        InvalidFeedbackType: For an unknown feedback type.
        InvalidFeedbackForState: If ``current_status`` does not satisfy the
            precondition of the feedback type.
    """
    kind = parse_feedback_type(feedback_type)
    rule = FEEDBACK_RULES[kind]
    if current_status not in rule.preconditions:
        raise InvalidFeedbackForState(kind.value, current_status.value, content_reference)
    return FeedbackDecision(new_status=rule.new_status, propagate=False)


def classify_edit(
    current_status: SectionStatus, content_reference: Optional[str] = None
) -> FeedbackDecision:
    """Classify a direct human edit.

    The section passes through ``EDITED`` and settles to ``APPROVED``;
    dependents must be re-examined for staleness.
    """
    if current_status not in EDITABLE_STATUSES:
        raise InvalidFeedbackForState("edit", current_status.value, content_reference)
    return FeedbackDecision(new_status=SectionStatus.EDITED, propagate=True)
