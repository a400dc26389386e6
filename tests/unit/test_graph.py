"""Tests for the dependency graph."""

import pytest

from sectionflow.errors import DependencyConfigError, SectionNotFound
from sectionflow.graph import DependencyGraph, load_dependency_graph


def test_transitive_dependents_include_indirect_sections(graph):
    assert graph.transitive_dependents("problem_statement") == {
        "solution",
        "implementation_plan",
        "budget",
        "executive_summary",
    }
    assert graph.transitive_dependents("budget") == {"executive_summary"}
    assert graph.transitive_dependents("executive_summary") == frozenset()


def test_transitive_dependents_are_cached(graph):
    first = graph.transitive_dependents("solution")
    assert graph.transitive_dependents("solution") is first


def test_direct_edges(graph):
    assert graph.direct_dependencies("budget") == {"solution", "implementation_plan"}
    assert graph.direct_dependents("solution") == {
        "implementation_plan",
        "budget",
        "executive_summary",
    }
    assert graph.is_dependency_of("problem_statement", "budget")
    assert not graph.is_dependency_of("budget", "problem_statement")


def test_transitive_dependencies(graph):
    assert graph.transitive_dependencies("budget") == {
        "problem_statement",
        "solution",
        "implementation_plan",
    }
    assert graph.transitive_dependencies("problem_statement") == frozenset()


def test_topological_order_respects_dependencies(graph):
    order = graph.topological_order()
    assert set(order) == set(graph.sections)
    for section_id in order:
        for dep in graph.direct_dependencies(section_id):
            assert order.index(dep) < order.index(section_id)


def test_sort_uses_topological_position(graph):
    assert graph.sort(["executive_summary", "problem_statement", "budget"]) == [
        "problem_statement",
        "budget",
        "executive_summary",
    ]


def test_unknown_section_raises(graph):
    with pytest.raises(SectionNotFound):
        graph.transitive_dependents("appendix")


@pytest.mark.parametrize(
    "mapping",
    [
        {"a": ["b"], "b": ["a"]},
        {"a": ["c"], "b": ["a"], "c": ["b"]},
    ],
)
def test_cycles_are_rejected(mapping):
    with pytest.raises(DependencyConfigError, match="cycle"):
        DependencyGraph(mapping)


@pytest.mark.parametrize(
    "mapping, message",
    [
        ({"a": ["missing"]}, "undeclared"),
        ({"a": ["a"]}, "itself"),
        ({"a": "b", "b": []}, "must be a list"),
        ({"a": [], "b": {"a": 1}}, "must be a list"),
        ({"a": [], "b": [{"a": 1}]}, "section identifiers"),
        ({"a": [], "b": [None]}, "section identifiers"),
        ({"": []}, "Invalid section identifier"),
    ],
)
def test_malformed_maps_are_rejected(mapping, message):
    with pytest.raises(DependencyConfigError, match=message):
        DependencyGraph(mapping)


def test_null_dependencies_mean_none():
    graph = DependencyGraph({"a": None, "b": ["a"]})
    assert graph.direct_dependencies("a") == frozenset()


def test_load_bundled_map():
    graph = load_dependency_graph()
    assert "executive_summary" in graph
    assert "conclusion" in graph.transitive_dependents("problem_statement")


def test_load_map_from_env(tmp_path, monkeypatch):
    path = tmp_path / "deps.yaml"
    path.write_text("intro: []\nbody: [intro]\n")
    monkeypatch.setenv("SECTIONFLOW_DEPENDENCY_MAP", str(path))

    graph = load_dependency_graph()
    assert graph.sections == ("intro", "body")


def test_load_json_map(tmp_path):
    path = tmp_path / "deps.json"
    path.write_text('{"intro": [], "body": ["intro"]}')
    assert load_dependency_graph(path).transitive_dependents("intro") == {"body"}


def test_load_map_errors(tmp_path):
    with pytest.raises(DependencyConfigError):
        load_dependency_graph(tmp_path / "absent.yaml")

    broken = tmp_path / "broken.yaml"
    broken.write_text("a: [b\n")
    with pytest.raises(DependencyConfigError):
        load_dependency_graph(broken)

    listing = tmp_path / "list.yaml"
    listing.write_text("- a\n- b\n")
    with pytest.raises(DependencyConfigError):
        load_dependency_graph(listing)
