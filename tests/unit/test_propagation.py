"""Tests for stale propagation."""

from sectionflow.graph import DependencyGraph
from sectionflow.models import SectionStatus as S
from sectionflow.propagation import propagate_staleness
from tests.fixtures.states import approve_all, make_state


def test_root_edit_marks_child_stale():
    graph = DependencyGraph({"root": [], "child": ["root"]})
    state = make_state(graph, root=S.APPROVED, child=S.APPROVED)

    marked = propagate_staleness(state, graph, "root")

    assert marked == ["child"]
    assert state.sections["root"].status == S.APPROVED
    assert state.sections["child"].status == S.STALE
    assert state.sections["child"].previous_status == S.APPROVED


def test_propagation_reaches_transitive_dependents(graph):
    state = approve_all(graph)

    marked = propagate_staleness(state, graph, "solution")

    assert marked == ["implementation_plan", "budget", "executive_summary"]
    assert state.sections["problem_statement"].status == S.APPROVED
    notices = [m for m in state.messages if m.kind == "stale_notice"]
    assert [m.section_id for m in notices] == marked


def test_propagation_is_idempotent(graph):
    state = approve_all(graph)
    propagate_staleness(state, graph, "problem_statement")
    statuses = {sid: rec.status for sid, rec in state.sections.items()}
    message_count = len(state.messages)

    assert propagate_staleness(state, graph, "problem_statement") == []
    assert {sid: rec.status for sid, rec in state.sections.items()} == statuses
    assert len(state.messages) == message_count


def test_unconsumed_dependents_are_left_alone(graph):
    state = make_state(
        graph,
        problem_statement=S.APPROVED,
        solution=S.APPROVED,
        implementation_plan=S.AWAITING_REVIEW,
        budget=S.NOT_STARTED,
        executive_summary=S.COMPLETE,
    )

    marked = propagate_staleness(state, graph, "solution")

    assert marked == ["executive_summary"]
    assert state.sections["implementation_plan"].status == S.AWAITING_REVIEW
    assert state.sections["budget"].status == S.NOT_STARTED
    assert state.sections["executive_summary"].previous_status == S.COMPLETE


def test_missing_dependent_is_skipped(graph):
    state = approve_all(graph)
    del state.sections["budget"]

    marked = propagate_staleness(state, graph, "implementation_plan")

    assert marked == ["executive_summary"]
