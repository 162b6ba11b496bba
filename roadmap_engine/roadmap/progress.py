"""
Weighted progress and dependency gating for roadmap milestones.

A milestone's own progress is the completed share of its linked entities,
weighted by kind (tickets 1, features 3, modules 5). It is then capped by
the lowest progress among its dependencies and forced to 0 when the
milestone or any dependency is blocked.
"""

import math
from dataclasses import dataclass, replace
from typing import Any, Literal

from ..core.exceptions import UnknownStatusError
from .domain import DomainContext
from .graph import DependencyGraph
from .models import (
    DependencyDetail,
    DependencySummary,
    Milestone,
    canonical_id,
    clamp_progress,
)
from .transitions import HOLDING_STATUSES, RoadmapStatus, normalise_status

# Entity kind -> weight in the completion score
ENTITY_WEIGHTS: dict[str, int] = {
    "ticket": 1,
    "feature": 3,
    "module": 5,
}

HEALTHY_MODULE_THRESHOLD = 80

COMPLETED_TICKET_STATUSES = frozenset({"finished", "completed", "resolved"})
COMPLETED_FEATURE_KEYWORDS = (
    "deployed",
    "released",
    "completed",
    "done",
    "shipped",
    "delivered",
)
HEALTHY_MODULE_KEYWORDS = ("healthy", "stable", "ready", "completed", "deployed")

BLOCKED = "blocked"

EntityResult = bool | Literal["blocked"]


@dataclass
class ProgressResult:
    """Result of progress calculation."""

    progress: int  # 0-100
    dependency_summary: DependencySummary


def _status_text(entity: dict[str, Any] | None, *keys: str) -> str:
    if not entity:
        return ""
    for key in keys:
        value = entity.get(key)
        if value:
            return str(value).lower()
    return ""


def is_ticket_completed(ticket: dict[str, Any] | None) -> EntityResult:
    status = _status_text(ticket, "status")
    if "blocked" in status or "paused" in status:
        return BLOCKED
    return status in COMPLETED_TICKET_STATUSES


def is_feature_completed(feature: dict[str, Any] | None) -> EntityResult:
    status = _status_text(feature, "status")
    if "blocked" in status or "paused" in status:
        return BLOCKED
    return any(keyword in status for keyword in COMPLETED_FEATURE_KEYWORDS)


def is_module_healthy(module: dict[str, Any] | None) -> EntityResult:
    """A module counts as done when healthy; degraded modules are blocked."""
    if not module:
        return False
    status = _status_text(module, "status", "healthStatus")
    if "blocked" in status or "degraded" in status:
        return BLOCKED
    try:
        health = float(module.get("health"))
    except (TypeError, ValueError):
        health = math.nan
    if math.isfinite(health) and health >= HEALTHY_MODULE_THRESHOLD:
        return True
    return any(keyword in status for keyword in HEALTHY_MODULE_KEYWORDS)


def build_dependency_summary(
    milestone: Milestone, graph: DependencyGraph
) -> DependencySummary:
    """
    Classify each dependency of ``milestone`` and derive the gating ceiling.

    Missing dependencies count as pending with progress 0. The summary status
    is ``blocked`` if any dependency is blocked or paused, ``pending`` if any
    is incomplete, else ``clear``.
    """
    if not milestone.dependencies:
        return DependencySummary()

    details: list[DependencyDetail] = []
    for dep_id in milestone.dependencies:
        dependency = graph.get(dep_id)
        if dependency is None:
            details.append(DependencyDetail(id=dep_id))
            continue

        try:
            status = normalise_status(dependency.status)
        except UnknownStatusError:
            status = RoadmapStatus.PENDING.value
        progress = clamp_progress(dependency.progress)
        details.append(
            DependencyDetail(
                id=dependency.id,
                title=dependency.title,
                status=status,
                progress=progress,
                blocked=status in HOLDING_STATUSES,
                completed=status == RoadmapStatus.COMPLETED.value or progress >= 100,
                missing=False,
            )
        )

    gating_progress = 100
    blocked = satisfied = pending = missing = 0
    for detail in details:
        gating_progress = min(gating_progress, detail.progress)
        if detail.missing:
            missing += 1
            pending += 1
        elif detail.blocked:
            blocked += 1
        elif detail.completed:
            satisfied += 1
        else:
            pending += 1

    if blocked:
        status = "blocked"
    elif pending:
        status = "pending"
    else:
        status = "clear"

    return DependencySummary(
        total=len(details),
        satisfied=satisfied,
        blocked=blocked,
        pending=pending,
        missing=missing,
        gating_progress=max(0, min(100, gating_progress)),
        status=status,
        details=details,
    )


def _weighted_progress(milestone: Milestone, domain: DomainContext) -> int | None:
    """Completed share of linked entities, or None when nothing is linked."""
    total_weight = 0
    completed_weight = 0

    def add(kind: str, result: EntityResult) -> None:
        nonlocal total_weight, completed_weight
        weight = ENTITY_WEIGHTS[kind]
        total_weight += weight
        if result is True:
            completed_weight += weight

    for ticket_id in milestone.linked_tickets:
        add("ticket", is_ticket_completed(domain.tickets_by_id.get(canonical_id(ticket_id))))

    if not milestone.linked_tickets and milestone.linked_module:
        for ticket in domain.tickets_by_module.get(canonical_id(milestone.linked_module), []):
            add("ticket", is_ticket_completed(ticket))

    for feature_id in milestone.linked_features:
        add("feature", is_feature_completed(domain.features_by_id.get(canonical_id(feature_id))))

    for module_id in milestone.linked_modules:
        add("module", is_module_healthy(domain.modules_by_id.get(canonical_id(module_id))))

    if not milestone.linked_modules and milestone.linked_module:
        module = domain.modules_by_id.get(canonical_id(milestone.linked_module))
        add("module", is_module_healthy(module))

    if total_weight == 0:
        return None
    return math.floor(completed_weight / total_weight * 100 + 0.5)


def calculate_progress(
    milestone: Milestone, domain: DomainContext, graph: DependencyGraph
) -> ProgressResult:
    """
    Compute a milestone's gated progress and dependency summary.

    Falls back to the stored progress when no entities are linked.
    """
    progress = _weighted_progress(milestone, domain)
    if progress is None:
        progress = clamp_progress(milestone.progress)

    status = (milestone.status or "").lower()
    if any(holding in status for holding in HOLDING_STATUSES):
        progress = 0

    summary = build_dependency_summary(milestone, graph)
    if summary.total:
        progress = min(progress, summary.gating_progress)
        if summary.status == "blocked":
            progress = 0

    return ProgressResult(progress=max(0, min(100, progress)), dependency_summary=summary)


def normalise_milestone_progress(
    milestone: Milestone, domain: DomainContext, graph: DependencyGraph
) -> Milestone:
    """
    Return a copy of ``milestone`` with derived progress, summary and status.

    A milestone whose dependencies are blocked becomes ``blocked`` unless it
    is already ``completed``.
    """
    result = calculate_progress(milestone, domain, graph)
    try:
        status = normalise_status(milestone.status)
    except UnknownStatusError:
        status = RoadmapStatus.PENDING.value

    if (
        result.dependency_summary.status == "blocked"
        and status != RoadmapStatus.COMPLETED.value
    ):
        status = RoadmapStatus.BLOCKED.value

    return replace(
        milestone.copy(),
        status=status,
        progress=result.progress,
        dependency_summary=result.dependency_summary,
    )
