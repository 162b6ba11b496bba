"""
Shared fixtures for roadmap engine tests.

Every test gets its own data directory under ``tmp_path`` and fast timings
for the save debounce and lock backoff.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from roadmap_engine.core.config import RoadmapConfig
from roadmap_engine.roadmap.domain import DomainLoader
from roadmap_engine.roadmap.git_automation import GitAutomationResult, generate_completion_summary
from roadmap_engine.roadmap.orchestrator import RoadmapStateManager
from roadmap_engine.roadmap.state_store import RoadmapStateStore


class StubGitAutomation:
    """Records calls instead of running git."""

    def __init__(self, result: GitAutomationResult | None = None, error: Exception | None = None):
        self.result = result or GitAutomationResult(success=True, commit_hash="abc123")
        self.error = error
        self.commits: list[dict[str, Any]] = []
        self.summaries: list[str] = []

    async def auto_commit_milestone(self, milestone, dependency_summary=None, reason=None, actor=None):
        self.commits.append({"milestone": milestone, "reason": reason, "actor": actor})
        if self.error is not None:
            raise self.error
        return self.result

    def generate_milestone_completion_summary(self, milestone, dependency_summary=None):
        self.summaries.append(milestone.id)
        return generate_completion_summary(milestone, dependency_summary)


def milestone(milestone_id: str, **fields: Any) -> dict[str, Any]:
    """Wire-form milestone with sensible defaults."""
    data = {
        "id": milestone_id,
        "title": fields.pop("title", f"Milestone {milestone_id}"),
        "status": "pending",
        "progress": 0,
        "dependencies": [],
        "linkedTickets": [],
        "linkedFeatures": [],
        "linkedModules": [],
    }
    data.update(fields)
    return data


def write_state(config: RoadmapConfig, milestones: list[dict[str, Any]], **extra: Any) -> Path:
    """Seed the state file with the given milestones."""
    config.data_dir.mkdir(parents=True, exist_ok=True)
    payload = {
        "version": "1.0.0",
        "lastUpdated": "2024-01-01T00:00:00.000Z",
        "milestones": {m["id"]: m for m in milestones},
        "history": [],
        "summary": {"source": "manual", "ticketCount": 0, "moduleCount": 0, "featureCount": 0},
    }
    payload.update(extra)
    config.state_file.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    return config.state_file


def write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")


@pytest.fixture
def config(tmp_path: Path) -> RoadmapConfig:
    return RoadmapConfig(
        data_dir=tmp_path / "data",
        save_debounce_seconds=0.05,
        lock_base_delay=0.01,
        watcher_poll_seconds=0.02,
        watcher_debounce_seconds=0.02,
        git_automation=False,
    )


@pytest.fixture
def store(config: RoadmapConfig) -> RoadmapStateStore:
    return RoadmapStateStore(config)


@pytest.fixture
def stub_git() -> StubGitAutomation:
    return StubGitAutomation()


@pytest.fixture
def manager(config: RoadmapConfig, stub_git: StubGitAutomation) -> RoadmapStateManager:
    return RoadmapStateManager(
        store=RoadmapStateStore(config),
        domain_loader=DomainLoader(config),
        git_automation=stub_git,
    )
