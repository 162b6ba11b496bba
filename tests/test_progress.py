"""Tests for weighted progress and dependency gating."""

import pytest

from roadmap_engine.roadmap.domain import DomainContext
from roadmap_engine.roadmap.graph import build_dependency_graph
from roadmap_engine.roadmap.models import Milestone
from roadmap_engine.roadmap.progress import (
    BLOCKED,
    build_dependency_summary,
    calculate_progress,
    is_feature_completed,
    is_module_healthy,
    is_ticket_completed,
    normalise_milestone_progress,
)


def _domain(tickets=(), features=(), modules=()):
    return DomainContext.from_entities(list(tickets), list(features), list(modules))


def _graph(*milestones):
    return build_dependency_graph(list(milestones), validate=False)


class TestEntityPredicates:
    @pytest.mark.parametrize("status", ["finished", "Completed", "RESOLVED"])
    def test_ticket_completed(self, status):
        assert is_ticket_completed({"status": status}) is True

    def test_ticket_blocked_and_open(self):
        assert is_ticket_completed({"status": "blocked-on-review"}) == BLOCKED
        assert is_ticket_completed({"status": "in_progress"}) is False
        assert is_ticket_completed(None) is False

    def test_feature_keywords(self):
        assert is_feature_completed({"status": "Shipped to prod"}) is True
        assert is_feature_completed({"status": "paused"}) == BLOCKED
        assert is_feature_completed({"status": "planned"}) is False

    def test_module_health(self):
        assert is_module_healthy({"health": 80}) is True
        assert is_module_healthy({"health": "79.9"}) is False
        assert is_module_healthy({"healthStatus": "stable"}) is True
        assert is_module_healthy({"status": "degraded", "health": 95}) == BLOCKED
        assert is_module_healthy(None) is False


class TestWeightedProgress:
    def test_weights_by_entity_kind(self):
        domain = _domain(
            tickets=[{"id": 1, "status": "finished"}, {"id": 2, "status": "open"}],
            features=[{"id": "f1", "status": "released"}],
            modules=[{"id": "m1", "health": 40}],
        )
        milestone = Milestone(
            id="a",
            linked_tickets=[1, 2],
            linked_features=["f1"],
            linked_modules=["m1"],
        )

        result = calculate_progress(milestone, domain, _graph(milestone))

        # (1 + 3) / (1 + 1 + 3 + 5) = 40%
        assert result.progress == 40

    def test_blocked_entity_counts_as_incomplete(self):
        domain = _domain(tickets=[{"id": 1, "status": "blocked"}, {"id": 2, "status": "done"}])
        milestone = Milestone(id="a", linked_tickets=[1, 2], progress=90)

        assert calculate_progress(milestone, domain, _graph(milestone)).progress == 0

    def test_unlinked_milestone_keeps_stored_progress(self):
        milestone = Milestone(id="a", progress=35)
        assert calculate_progress(milestone, _domain(), _graph(milestone)).progress == 35

    def test_linked_module_fallback(self):
        domain = _domain(
            tickets=[
                {"id": 1, "status": "finished", "modules": ["core"]},
                {"id": 2, "status": "open", "modules": ["core"]},
            ],
            modules=[{"id": "core", "path": "src/core", "health": 90}],
        )
        milestone = Milestone(id="a", linked_module="core")

        # tickets 1 of 2 plus healthy module: (1 + 5) / (2 + 5)
        assert calculate_progress(milestone, domain, _graph(milestone)).progress == 86

    def test_module_found_by_path(self):
        domain = _domain(modules=[{"id": "core", "path": "src/core", "health": 90}])
        milestone = Milestone(id="a", linked_modules=["src/core"])
        assert calculate_progress(milestone, domain, _graph(milestone)).progress == 100

    def test_own_holding_status_forces_zero(self):
        milestone = Milestone(id="a", status="paused", progress=70)
        assert calculate_progress(milestone, _domain(), _graph(milestone)).progress == 0


class TestDependencyGating:
    def test_progress_capped_by_slowest_dependency(self):
        dep_a = Milestone(id="a", status="active", progress=80)
        dep_b = Milestone(id="b", status="completed", progress=100)
        child = Milestone(id="c", progress=95, dependencies=["a", "b"])
        graph = _graph(dep_a, dep_b, child)

        result = calculate_progress(child, _domain(), graph)

        assert result.progress == 80
        summary = result.dependency_summary
        assert (summary.total, summary.satisfied, summary.pending) == (2, 1, 1)
        assert summary.gating_progress == 80
        assert summary.status == "pending"

    def test_missing_dependency_gates_to_zero(self):
        child = Milestone(id="c", progress=50, dependencies=["ghost"])
        summary = build_dependency_summary(child, _graph(child))

        assert summary.missing == 1
        assert summary.pending == 1
        assert summary.gating_progress == 0
        assert summary.details[0].missing is True

    def test_blocked_dependency_blocks_milestone(self):
        dep = Milestone(id="a", status="blocked", progress=60)
        child = Milestone(id="c", status="active", progress=40, dependencies=["a"])

        normalised = normalise_milestone_progress(child, _domain(), _graph(dep, child))

        assert normalised.status == "blocked"
        assert normalised.progress == 0
        assert normalised.dependency_summary.status == "blocked"
        assert child.status == "active"

    def test_completed_milestone_not_blocked(self):
        dep = Milestone(id="a", status="paused")
        child = Milestone(id="c", status="completed", progress=100, dependencies=["a"])

        normalised = normalise_milestone_progress(child, _domain(), _graph(dep, child))

        assert normalised.status == "completed"
        assert normalised.progress == 0

    def test_no_dependencies_clear_summary(self):
        milestone = Milestone(id="a", status="ARCHIVED")
        normalised = normalise_milestone_progress(milestone, _domain(), _graph(milestone))
        assert normalised.dependency_summary.status == "clear"
        assert normalised.dependency_summary.gating_progress == 100
        assert normalised.status == "pending"
