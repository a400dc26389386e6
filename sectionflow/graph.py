"""Static dependency graph between proposal sections."""

from __future__ import annotations

import logging
import os
from collections import deque
from pathlib import Path
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

import yaml

from .errors import DependencyConfigError, SectionNotFound

logger = logging.getLogger(__name__)

DEFAULT_DEPENDENCY_MAP = Path(__file__).parent / "data" / "dependencies.yaml"


class DependencyGraph:
    """Immutable mapping from a section to its direct prerequisites.

    The graph is validated on construction: every referenced prerequisite
    must itself be declared and the edges must not form a cycle. Reverse
    edges and transitive dependents are derived once and cached, since the
    graph never changes after load.
    """

    def __init__(self, dependencies: Mapping[str, Iterable[str]]) -> None:
        adjacency: Dict[str, FrozenSet[str]] = {}
        for section_id, deps in dependencies.items():
            if not isinstance(section_id, str) or not section_id:
                raise DependencyConfigError(f"Invalid section identifier: {section_id!r}")
            if deps is None:
                deps = []
            if not isinstance(deps, (list, tuple, set, frozenset)):
                raise DependencyConfigError(
                    f"Dependencies of {section_id} must be a list, got {type(deps).__name__}"
                )
            invalid = [d for d in deps if not isinstance(d, str) or not d]
            if invalid:
                raise DependencyConfigError(
                    f"Dependencies of {section_id} must be section identifiers, got {invalid!r}"
                )
            adjacency[section_id] = frozenset(deps)

        for section_id, deps in adjacency.items():
            unknown = sorted(d for d in deps if d not in adjacency)
            if unknown:
                raise DependencyConfigError(
                    f"Section {section_id} depends on undeclared sections: {', '.join(unknown)}"
                )
            if section_id in deps:
                raise DependencyConfigError(f"Section {section_id} depends on itself")

        self._order: Tuple[str, ...] = tuple(adjacency)
        self._dependencies = MappingProxyType(adjacency)

        dependents: Dict[str, set[str]] = {sid: set() for sid in adjacency}
        for section_id, deps in adjacency.items():
            for dep in deps:
                dependents[dep].add(section_id)
        self._dependents = MappingProxyType(
            {sid: frozenset(items) for sid, items in dependents.items()}
        )
        self._transitive_cache: Dict[str, FrozenSet[str]] = {}

        if self.has_cycle():
            raise DependencyConfigError("Dependency configuration contains a cycle")
        self._topological = self._compute_topological_order()

    # ------------------------------------------------------------------
    @property
    def sections(self) -> Tuple[str, ...]:
        """Section identifiers in configuration order."""
        return self._order

    def __contains__(self, section_id: object) -> bool:
        return section_id in self._dependencies

    def __len__(self) -> int:
        return len(self._order)

    def as_dict(self) -> Dict[str, list[str]]:
        return {sid: sorted(self._dependencies[sid]) for sid in self._order}

    def _require(self, section_id: str) -> None:
        if section_id not in self._dependencies:
            raise SectionNotFound(section_id)

    # ------------------------------------------------------------------
    def direct_dependencies(self, section_id: str) -> FrozenSet[str]:
        self._require(section_id)
        return self._dependencies[section_id]

    def direct_dependents(self, section_id: str) -> FrozenSet[str]:
        self._require(section_id)
        return self._dependents[section_id]

    def transitive_dependents(self, section_id: str) -> FrozenSet[str]:
        """Return every section that depends on ``section_id`` directly or indirectly."""
        self._require(section_id)
        cached = self._transitive_cache.get(section_id)
        if cached is not None:
            return cached

        seen: set[str] = set()
        queue = deque(self._dependents[section_id])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(self._dependents[current] - seen)

        result = frozenset(seen)
        self._transitive_cache[section_id] = result
        return result

    def transitive_dependencies(self, section_id: str) -> FrozenSet[str]:
        """Return every prerequisite of ``section_id`` directly or indirectly."""
        self._require(section_id)
        seen: set[str] = set()
        queue = deque(self._dependencies[section_id])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(self._dependencies[current] - seen)
        return frozenset(seen)

    def is_dependency_of(self, upstream: str, downstream: str) -> bool:
        """Return ``True`` if ``downstream`` depends on ``upstream`` directly or indirectly."""
        return downstream in self.transitive_dependents(upstream)

    def has_cycle(self) -> bool:
        visiting: set[str] = set()
        done: set[str] = set()

        for root in self._order:
            if root in done:
                continue
            stack = [(root, iter(sorted(self._dependencies[root])))]
            visiting.add(root)
            while stack:
                node, children = stack[-1]
                child = next(children, None)
                if child is None:
                    stack.pop()
                    visiting.discard(node)
                    done.add(node)
                    continue
                if child in visiting:
                    return True
                if child not in done:
                    visiting.add(child)
                    stack.append((child, iter(sorted(self._dependencies[child]))))
        return False

    def _compute_topological_order(self) -> Tuple[str, ...]:
        visited: set[str] = set()
        result: list[str] = []

        def visit(section_id: str) -> None:
            if section_id in visited:
                return
            visited.add(section_id)
            for dep in self._order:
                if dep in self._dependencies[section_id]:
                    visit(dep)
            result.append(section_id)

        for section_id in self._order:
            visit(section_id)
        return tuple(result)

    def topological_order(self) -> Tuple[str, ...]:
        """Sections ordered so that no section precedes its dependencies."""
        return self._topological

    def sort(self, section_ids: Iterable[str]) -> list[str]:
        """Order ``section_ids`` by their topological position."""
        position = {sid: i for i, sid in enumerate(self._topological)}
        return sorted(section_ids, key=lambda sid: position.get(sid, len(position)))


def load_dependency_graph(path: Optional[str | Path] = None) -> DependencyGraph:
    """Load the dependency graph from a JSON or YAML mapping file.

    Args:
        path: Optional path to the dependency map. Falls back to the
            ``SECTIONFLOW_DEPENDENCY_MAP`` environment variable and then to
            the bundled proposal map.

    Raises:
        DependencyConfigError: If the file is missing, malformed or cyclic.
    """

    map_path = Path(path or os.getenv("SECTIONFLOW_DEPENDENCY_MAP") or DEFAULT_DEPENDENCY_MAP)
    try:
        with open(map_path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        logger.error(f"Failed to load dependency map from {map_path}: {e}")
        raise DependencyConfigError(f"Failed to load dependency map: {e}") from e
    except yaml.YAMLError as e:
        logger.error(f"Dependency map {map_path} is not valid JSON/YAML: {e}")
        raise DependencyConfigError(f"Malformed dependency map: {e}") from e

    if not isinstance(data, dict) or not data:
        raise DependencyConfigError(
            f"Dependency map {map_path} must be a non-empty mapping of section to dependencies"
        )

    graph = DependencyGraph(data)
    logger.info(f"Dependency map loaded from {map_path} ({len(graph)} sections)")
    return graph
