"""
Git automation for completed milestones.

The orchestrator talks to a ``GitAutomation`` collaborator: it asks for a
completion summary whenever a milestone is completed without one, and for
an auto-commit when a milestone is completed manually. ``GitCommitAutomation``
is the default implementation backed by the ``git`` CLI.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, Sequence, runtime_checkable

from ..core.exceptions import ErrorContext, GitAutomationError
from ..core.safe_io import run_io
from ..core.safe_subprocess import SubprocessError, safe_run
from .models import DependencySummary, Milestone

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 60
COMMIT_PREFIX = "roadmap"


@dataclass
class GitAutomationResult:
    """Outcome of an auto-commit attempt."""

    success: bool
    reason: str | None = None
    commit_hash: str | None = None
    branch: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success}
        if self.reason is not None:
            result["reason"] = self.reason
        if self.commit_hash is not None:
            result["commitHash"] = self.commit_hash
        if self.branch is not None:
            result["branch"] = self.branch
        return result


@runtime_checkable
class GitAutomation(Protocol):
    """Collaborator contract used by the roadmap orchestrator."""

    async def auto_commit_milestone(
        self,
        milestone: Milestone,
        dependency_summary: DependencySummary | None = None,
        reason: str | None = None,
        actor: str | None = None,
    ) -> GitAutomationResult: ...

    def generate_milestone_completion_summary(
        self,
        milestone: Milestone,
        dependency_summary: DependencySummary | None = None,
    ) -> str: ...


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def generate_completion_summary(
    milestone: Milestone, dependency_summary: DependencySummary | None = None
) -> str:
    """Plain-text summary of what a completed milestone delivered."""
    title = milestone.title or milestone.id
    parts = [
        _plural(len(milestone.linked_tickets), "ticket"),
        _plural(len(milestone.linked_features), "feature"),
        _plural(len(milestone.linked_modules), "module"),
    ]
    summary = f"Milestone '{title}' completed with {', '.join(parts)} linked."
    if dependency_summary and dependency_summary.total:
        summary += (
            f" Dependencies satisfied: {dependency_summary.satisfied}"
            f"/{dependency_summary.total}."
        )
    return summary


class GitCommitAutomation:
    """
    Commits roadmap changes with the ``git`` CLI.

    Args:
        repo_dir: Working tree to commit in
        paths: Paths to stage (default: everything)
        enabled: When False, auto-commits are skipped with a reason
    """

    def __init__(
        self,
        repo_dir: str | Path,
        paths: Sequence[str | Path] | None = None,
        enabled: bool = True,
    ):
        self.repo_dir = Path(repo_dir)
        self.paths = [str(p) for p in paths] if paths else ["."]
        self.enabled = enabled

    def _run_git(self, args: list[str]) -> subprocess.CompletedProcess:
        try:
            return safe_run(["git", *args], cwd=self.repo_dir, timeout=GIT_TIMEOUT)
        except (SubprocessError, OSError) as e:
            raise GitAutomationError(
                f"git {args[0]} failed: {e}",
                context=ErrorContext(operation=f"git {args[0]}", component="git_automation"),
                cause=e,
            ) from e

    def _is_repository(self) -> bool:
        result = self._run_git(["rev-parse", "--is-inside-work-tree"])
        return result.returncode == 0 and result.stdout.strip() == "true"

    def _has_changes(self) -> bool:
        result = self._run_git(["status", "--porcelain", "--", *self.paths])
        return bool(result.stdout.strip())

    def _current_branch(self) -> str | None:
        result = self._run_git(["rev-parse", "--abbrev-ref", "HEAD"])
        return result.stdout.strip() if result.returncode == 0 else None

    def commit_message(
        self, milestone: Milestone, reason: str | None, actor: str | None
    ) -> str:
        title = milestone.title or milestone.id
        lines = [f"{COMMIT_PREFIX}: complete milestone {title}", ""]
        if milestone.completion_summary:
            lines.extend([milestone.completion_summary, ""])
        lines.append(f"Milestone: {milestone.id}")
        if reason:
            lines.append(f"Reason: {reason}")
        if actor:
            lines.append(f"Actor: {actor}")
        return "\n".join(lines)

    def _commit(
        self, milestone: Milestone, reason: str | None, actor: str | None
    ) -> GitAutomationResult:
        if not self._is_repository():
            return GitAutomationResult(success=False, reason="Not a git repository")
        if not self._has_changes():
            return GitAutomationResult(success=False, reason="No changes to commit")

        add = self._run_git(["add", "--", *self.paths])
        if add.returncode != 0:
            raise GitAutomationError(
                f"git add failed: {add.stderr.strip()}",
                context=ErrorContext(
                    operation="git add",
                    component="git_automation",
                    milestone_id=milestone.id,
                ),
            )

        commit = self._run_git(["commit", "-m", self.commit_message(milestone, reason, actor)])
        if commit.returncode != 0:
            output = commit.stdout + commit.stderr
            if "nothing to commit" in output:
                return GitAutomationResult(success=False, reason="No changes to commit")
            raise GitAutomationError(
                f"git commit failed: {commit.stderr.strip()}",
                context=ErrorContext(
                    operation="git commit",
                    component="git_automation",
                    milestone_id=milestone.id,
                ),
            )

        head = self._run_git(["rev-parse", "HEAD"])
        return GitAutomationResult(
            success=True,
            commit_hash=head.stdout.strip() or None,
            branch=self._current_branch(),
        )

    async def auto_commit_milestone(
        self,
        milestone: Milestone,
        dependency_summary: DependencySummary | None = None,
        reason: str | None = None,
        actor: str | None = None,
    ) -> GitAutomationResult:
        """
        Commit pending changes for a completed milestone.

        Returns a failed result with a reason when there is nothing to do.

        Raises:
            GitAutomationError: If a git command fails
        """
        if not self.enabled:
            return GitAutomationResult(success=False, reason="Git automation disabled")
        return await run_io(self._commit, milestone, reason, actor)

    def generate_milestone_completion_summary(
        self,
        milestone: Milestone,
        dependency_summary: DependencySummary | None = None,
    ) -> str:
        return generate_completion_summary(milestone, dependency_summary)
