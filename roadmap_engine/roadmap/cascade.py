"""
Breadth-first propagation of recomputation through dependent milestones.
"""

from collections import deque
from collections.abc import Mapping
from typing import Any

from .domain import DomainContext
from .graph import DependencyGraph
from .history import compute_changed_fields, diff_milestone
from .models import Milestone, canonical_id
from .progress import normalise_milestone_progress


def apply_dependency_cascade(
    root_id: str,
    milestones: dict[str, Milestone],
    domain: DomainContext,
    graph: DependencyGraph,
    previous: Mapping[str, Milestone] | None = None,
) -> list[dict[str, Any]]:
    """
    Recompute every transitive dependent of ``root_id``.

    Starts from the root's direct dependents and never revisits the root or
    any node already seen, so cycles terminate. Each recomputed milestone is
    written back into ``milestones`` and ``graph``; when it differs from its
    ``previous`` snapshot a diff tagged ``cascade: True`` is recorded and its
    own dependents are queued.

    Returns:
        Cascade diffs in visiting order
    """
    root_key = canonical_id(root_id)
    previous = previous or {}
    queue = deque(sorted(graph.dependents_of(root_key)))
    visited: set[str] = set()
    cascaded: list[dict[str, Any]] = []

    while queue:
        dep_key = queue.popleft()
        if dep_key == root_key or dep_key in visited:
            continue
        visited.add(dep_key)

        current = milestones.get(dep_key)
        if current is None:
            continue

        before = previous.get(dep_key) or current
        recalculated = normalise_milestone_progress(current, domain, graph)
        milestones[dep_key] = recalculated
        graph.milestones_by_id[dep_key] = recalculated

        changed_fields = compute_changed_fields(before, recalculated)
        if not changed_fields:
            continue

        diff = diff_milestone(before, recalculated, changed_fields)
        diff["cascade"] = True
        cascaded.append(diff)
        queue.extend(sorted(graph.dependents_of(dep_key)))

    return cascaded
