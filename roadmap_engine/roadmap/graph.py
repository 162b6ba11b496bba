"""
Dependency graph for roadmap milestones.

The graph is derived on every read or update and never persisted:
``milestones_by_id`` indexes milestones by canonical id and
``dependents_by_id`` holds the reverse "depends on" edges.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from .models import Milestone, canonical_id

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    has_missing: bool
    has_circular: bool
    missing_ids: list[str]
    circular_paths: list[list[str]]
    reverse_deps_map: dict[str, list[str]]


def _cycle_key(cycle: list[str]) -> tuple[str, ...]:
    """Same cycle entered at a different node yields the same key."""
    ring = cycle[:-1]
    start = ring.index(min(ring))
    return tuple(ring[start:] + ring[:start])


class DependencyValidator:
    """Reports dangling dependency ids and dependency cycles."""

    def validate_all(self, milestones: Iterable[Milestone]) -> ValidationResult:
        edges = {m.id: list(m.dependencies) for m in milestones}
        missing = sorted({dep for deps in edges.values() for dep in deps if dep not in edges})
        cycles = self._cycles(edges)
        return ValidationResult(
            has_missing=bool(missing),
            has_circular=bool(cycles),
            missing_ids=missing,
            circular_paths=cycles,
            reverse_deps_map=self._reverse(edges),
        )

    @staticmethod
    def _cycles(edges: dict[str, list[str]]) -> list[list[str]]:
        """
        Each distinct cycle once, as a closed path such as [a, b, a].

        Walks the graph depth first with an explicit stack; a cycle shows
        up as an edge back into the node chain currently being walked.
        """
        found: dict[tuple[str, ...], list[str]] = {}
        finished: set[str] = set()

        for root in edges:
            if root in finished:
                continue
            chain: list[str] = [root]
            pending = [iter(edges[root])]
            while pending:
                dep = next(pending[-1], None)
                if dep is None:
                    finished.add(chain.pop())
                    pending.pop()
                elif dep in chain:
                    cycle = chain[chain.index(dep):] + [dep]
                    found.setdefault(_cycle_key(cycle), cycle)
                elif dep in edges and dep not in finished:
                    chain.append(dep)
                    pending.append(iter(edges[dep]))
        return list(found.values())

    @staticmethod
    def _reverse(edges: dict[str, list[str]]) -> dict[str, list[str]]:
        reverse: dict[str, list[str]] = {mid: [] for mid in edges}
        for mid, deps in edges.items():
            for dep in deps:
                reverse.setdefault(dep, []).append(mid)
        return reverse


@dataclass
class DependencyGraph:
    """Milestones by canonical id plus the reverse dependency map."""

    milestones_by_id: dict[str, Milestone] = field(default_factory=dict)
    dependents_by_id: dict[str, set[str]] = field(default_factory=dict)

    def get(self, milestone_id) -> Milestone | None:
        return self.milestones_by_id.get(canonical_id(milestone_id))

    def dependents_of(self, milestone_id) -> set[str]:
        return self.dependents_by_id.get(canonical_id(milestone_id), set())


def build_dependency_graph(
    milestones: Mapping[str, Milestone] | Iterable[Milestone],
    validate: bool = True,
) -> DependencyGraph:
    """
    Index milestones and build the reverse dependency map.

    Missing dependency ids and cycles are logged, not raised: the cascade
    terminates on cycles and missing dependencies gate progress to 0.
    """
    items = milestones.values() if isinstance(milestones, Mapping) else milestones
    graph = DependencyGraph()

    for milestone in items:
        graph.milestones_by_id[milestone.id] = milestone
        graph.dependents_by_id.setdefault(milestone.id, set())

    for milestone in graph.milestones_by_id.values():
        for dep_id in milestone.dependencies:
            graph.dependents_by_id.setdefault(dep_id, set()).add(milestone.id)

    if validate:
        result = DependencyValidator().validate_all(graph.milestones_by_id.values())
        if result.has_missing:
            logger.debug(f"Roadmap references missing milestones: {result.missing_ids}")
        for path in result.circular_paths:
            logger.warning(f"Circular milestone dependency: {' -> '.join(path)}")

    return graph


def topological_order(graph: DependencyGraph) -> list[str]:
    """
    Milestone ids ordered so dependencies come before their dependents.

    Members of a cycle cannot be ordered; they are appended in map order.
    """
    ids = list(graph.milestones_by_id)
    remaining = {
        mid: sum(
            1 for dep in graph.milestones_by_id[mid].dependencies
            if dep in graph.milestones_by_id
        )
        for mid in ids
    }
    ready = [mid for mid in ids if remaining[mid] == 0]
    order: list[str] = []

    while ready:
        current = ready.pop(0)
        order.append(current)
        for dependent in sorted(graph.dependents_of(current), key=ids.index):
            if dependent not in remaining:
                continue
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                ready.append(dependent)

    placed = set(order)
    order.extend(mid for mid in ids if mid not in placed)
    return order
