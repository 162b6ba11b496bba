"""
Roadmap state orchestrator.

Coordinates the update flow: load, graph build, progress calculation,
transition validation, cascade, diff, persist and notify.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path
from typing import Any

from ..core.config import RoadmapConfig
from ..core.exceptions import EmptyUpdateError, ErrorContext, MilestoneNotFoundError
from ..core.logging import log_context, log_exception
from .cascade import apply_dependency_cascade
from .domain import DomainContext, DomainLoader
from .events import SyncEvent, SyncNotifier
from .git_automation import GitAutomation, GitAutomationResult, GitCommitAutomation
from .graph import build_dependency_graph, topological_order
from .history import (
    CASCADE_REASON,
    build_summary,
    compute_changed_fields,
    diff_milestone,
    diff_sync,
    field_changed,
    prepend_history,
)
from .models import (
    HistoryEntry,
    Milestone,
    MilestonePatch,
    RoadmapState,
    SyncResult,
    UpdateOptions,
    UpdateResult,
    canonical_id,
    utc_now_iso,
)
from .progress import normalise_milestone_progress
from .state_store import RoadmapStateStore
from .transitions import RoadmapStatus, validate_status_transition

logger = logging.getLogger(__name__)

MANUAL_REASON_PREFIX = "roadmap:manual"
MANUAL_EDIT_REASON = "roadmap:manual-edit"
MIN_COMPLETION_SUMMARY_LENGTH = 20


class RoadmapStateManager:
    """
    Single entry point for roadmap mutations.

    Args:
        store: State store owning the state file
        domain_loader: Source of tickets, features and modules
        git_automation: Optional git collaborator for completed milestones
        notifier: Subscriber list receiving ``state:sync`` events
    """

    def __init__(
        self,
        store: RoadmapStateStore,
        domain_loader: DomainLoader,
        git_automation: GitAutomation | None = None,
        notifier: SyncNotifier | None = None,
    ):
        self.store = store
        self.domain_loader = domain_loader
        self.git_automation = git_automation
        self.notifier = notifier or SyncNotifier()
        # Held from read_state() through the write of every read-modify-write
        self._update_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    async def load(self) -> RoadmapState:
        return await self.store.load()

    async def read_state(self) -> RoadmapState:
        return await self.store.read_state()

    def get_state(self) -> RoadmapState:
        return self.store.get_state()

    async def list_versions(self) -> list[dict[str, Any]]:
        return await self.store.list_versions()

    async def rollback(self, filename: str) -> RoadmapState:
        return await self.store.rollback(filename)

    def subscribe(self, callback):
        """Register a ``state:sync`` subscriber; returns an unsubscribe function."""
        return self.notifier.subscribe(callback)

    async def close(self) -> None:
        await self.store.close()

    # ------------------------------------------------------------------
    # Single-milestone update
    # ------------------------------------------------------------------

    async def update_milestone(
        self,
        milestone_id: Any,
        updates: Mapping[str, Any] | MilestonePatch,
        options: UpdateOptions | None = None,
    ) -> UpdateResult:
        """
        Apply a partial update to one milestone and cascade to its dependents.

        Updates that change nothing (directly or via the cascade) return the
        current state without writing or recording history.

        Raises:
            EmptyUpdateError: If ``updates`` carries no fields
            MilestoneNotFoundError: If no milestone has ``milestone_id``
            InvalidMilestoneFieldError: If ``updates`` names an unknown field
            UnknownStatusError: If the requested status is not a roadmap status
            InvalidStatusTransitionError: If the status change is not allowed
            StateLockError: If the state file lock could not be acquired
        """
        options = options or UpdateOptions()
        if isinstance(updates, MilestonePatch):
            if updates.is_empty():
                raise EmptyUpdateError()
        elif not updates:
            raise EmptyUpdateError()

        key = canonical_id(milestone_id)
        with log_context(milestone_id=key, reason=options.reason, actor=options.actor):
            async with self._update_lock:
                result = await self._update_locked(key, milestone_id, updates, options)
            if result.changed:
                await self._after_update(key, result, options)
            return result

    async def _update_locked(
        self,
        key: str,
        milestone_id: Any,
        updates: Mapping[str, Any] | MilestonePatch,
        options: UpdateOptions,
    ) -> UpdateResult:
        state = await self.store.read_state()
        original = state.milestones.get(key)
        if original is None:
            raise MilestoneNotFoundError(
                milestone_id,
                context=ErrorContext(operation="update_milestone", component="orchestrator"),
            )
        if isinstance(updates, MilestonePatch):
            patch = updates
        else:
            patch = MilestonePatch.from_dict(updates)

        updated = patch.apply(original)
        requested_fields = [
            name for name in patch.field_names() if field_changed(original, updated, name)
        ]
        updated.updated_at = utc_now_iso()
        if options.actor:
            updated.last_edited_by = options.actor

        domain = await self.domain_loader.load(options.overrides)
        milestones = dict(state.milestones)
        milestones[key] = updated
        graph = build_dependency_graph(milestones)

        target = normalise_milestone_progress(updated, domain, graph)
        milestones[key] = target
        graph.milestones_by_id[key] = target

        previous_status = original.status
        next_status = target.status
        status_changed = previous_status != next_status
        if status_changed:
            validate_status_transition(previous_status, next_status)

        completing = status_changed and next_status == RoadmapStatus.COMPLETED.value
        if completing:
            self._stamp_completion(target)

        changed_fields = compute_changed_fields(original, target, requested_fields)
        cascaded = apply_dependency_cascade(key, milestones, domain, graph, state.milestones)

        if not changed_fields and not cascaded:
            logger.debug(f"Milestone {key} update changed nothing")
            return UpdateResult(state=state, changed=False)

        reason_fields = changed_fields or requested_fields
        reason = options.reason or (
            f"{MANUAL_EDIT_REASON}:{'+'.join(reason_fields) or 'noop'}"
        )
        actor = options.actor
        timestamp = utc_now_iso()

        change = None
        if changed_fields:
            change = diff_milestone(original, target, changed_fields, timestamp)
            change["actor"] = actor
        for diff in cascaded:
            diff["actor"] = actor
            diff.setdefault("reason", CASCADE_REASON)

        summary = build_summary(reason, domain, timestamp)
        entry = HistoryEntry(
            reason=reason,
            timestamp=timestamp,
            actor=actor,
            summary=summary,
            changes=([change] if change else []) + cascaded,
        )
        next_state = replace(
            state,
            milestones=milestones,
            summary={**state.summary, **summary},
            history=prepend_history(state.history, entry, self.store.history_limit),
        )

        persisted = await self.store.write_immediate(next_state, create_backup=True)
        logger.info(
            f"Updated milestone {key} ({', '.join(changed_fields) or 'cascade only'}), "
            f"{len(cascaded)} dependent(s) recalculated"
        )

        return UpdateResult(
            state=persisted,
            changed=True,
            change=change,
            cascaded_changes=cascaded,
            changed_fields=changed_fields,
            reason=reason,
            timestamp=timestamp,
            status_transition=(
                {"from": previous_status, "to": next_status} if status_changed else None
            ),
        )

    async def _after_update(self, key: str, result: UpdateResult, options: UpdateOptions) -> None:
        transition = result.status_transition or {}
        if (
            transition.get("to") == RoadmapStatus.COMPLETED.value
            and not options.skip_git
            and self._allows_git(result.reason, options)
        ):
            result.git_automation_result = await self._auto_commit(
                result.state.milestones[key], result.reason, options.actor
            )

        await self.notifier.publish(
            SyncEvent(
                reason=result.reason,
                summary=result.state.summary,
                state=result.state,
                changes=([result.change] if result.change else []) + result.cascaded_changes,
                timestamp=result.timestamp,
                actor=options.actor,
            )
        )

    def _stamp_completion(self, milestone: Milestone) -> None:
        if not milestone.completed_at:
            milestone.completed_at = utc_now_iso()
        current = milestone.completion_summary
        current = current.strip() if isinstance(current, str) else ""
        if len(current) < MIN_COMPLETION_SUMMARY_LENGTH and self.git_automation is not None:
            milestone.completion_summary = (
                self.git_automation.generate_milestone_completion_summary(
                    milestone, dependency_summary=milestone.dependency_summary
                )
            )

    @staticmethod
    def _allows_git(reason: str, options: UpdateOptions) -> bool:
        # Reason-prefix inference applies unless the caller says explicitly
        if options.manual is not None:
            return options.manual
        return reason.startswith(MANUAL_REASON_PREFIX)

    async def _auto_commit(
        self, milestone: Milestone, reason: str, actor: str | None
    ) -> GitAutomationResult | None:
        if self.git_automation is None:
            return None
        try:
            result = await self.git_automation.auto_commit_milestone(
                milestone,
                dependency_summary=milestone.dependency_summary,
                reason=reason,
                actor=actor,
            )
        except Exception as e:
            log_exception(
                logger,
                f"Git automation failed for milestone {milestone.id}: {e}",
                e,
                milestone_id=milestone.id,
            )
            return GitAutomationResult(success=False, reason=str(e))

        if result is not None and result.success:
            logger.info(f"Git auto-commit created for milestone {milestone.id}")
        elif result is not None and result.reason:
            logger.warning(f"Git auto-commit skipped for milestone {milestone.id}: {result.reason}")
        return result

    # ------------------------------------------------------------------
    # Bulk re-derivation
    # ------------------------------------------------------------------

    async def _compute_sync(
        self, reason: str, overrides: Mapping[str, Any] | None
    ) -> tuple[RoadmapState, RoadmapState, list[dict[str, Any]], str, DomainContext]:
        await self.store.ensure_state_file()
        domain = await self.domain_loader.load(overrides)
        state = await self.store.read_state()

        graph = build_dependency_graph(state.milestones)
        for milestone_id in topological_order(graph):
            graph.milestones_by_id[milestone_id] = normalise_milestone_progress(
                graph.milestones_by_id[milestone_id], domain, graph
            )
        milestones = {mid: graph.milestones_by_id[mid] for mid in state.milestones}

        changes = diff_sync(state.milestones, milestones)
        timestamp = utc_now_iso()
        summary = build_summary(reason, domain, timestamp, status_breakdown=True)
        entry = HistoryEntry(reason=reason, timestamp=timestamp, summary=summary, changes=changes)
        next_state = replace(
            state,
            milestones=milestones,
            summary=summary,
            history=prepend_history(state.history, entry, self.store.history_limit),
        )
        return state, next_state, changes, timestamp, domain

    async def sync(
        self, reason: str = "sync", overrides: Mapping[str, Any] | None = None
    ) -> SyncResult:
        """
        Re-derive every milestone from the current domain entities.

        Dependency edges are untouched, no transition is enforced and git
        automation never runs. Persists immediately and notifies only when
        something changed.
        """
        with log_context(reason=reason):
            async with self._update_lock:
                state, next_state, changes, timestamp, _ = await self._compute_sync(
                    reason, overrides
                )
                if not changes:
                    logger.debug("Roadmap sync found no changes")
                    return SyncResult(
                        state=state, changed=False, reason=reason, timestamp=timestamp
                    )
                persisted = await self.store.write_immediate(next_state, create_backup=True)

            logger.info(f"Roadmap sync ({reason}) updated {len(changes)} milestone(s)")
            await self._publish_sync(persisted, reason, changes, timestamp)
            return SyncResult(
                state=persisted,
                changed=True,
                changes=changes,
                reason=reason,
                timestamp=timestamp,
            )

    def request_sync(
        self, reason: str = "sync", overrides: Mapping[str, Any] | None = None
    ) -> asyncio.Task:
        """
        Queue a best-effort sync through the debounced save queue.

        Requests arriving within the debounce window are coalesced: only the
        last one is computed and written, and one ``state:sync`` event is
        published for the batch. Every returned task resolves to the state
        the batch wrote; ``changed`` is True only for the request whose
        computation was persisted.
        """
        computed: dict[str, Any] = {}

        # Writes under the update lock itself; returning None leaves the queue
        # to resolve the batch with what is now on disk.
        async def factory() -> None:
            async with self._update_lock:
                _, next_state, changes, timestamp, _ = await self._compute_sync(
                    reason, overrides
                )
                if not changes:
                    return None
                await self.store.write_immediate(next_state, create_backup=True)
            computed.update(changes=changes, timestamp=timestamp)
            return None

        future = self.store.schedule_save(factory)

        async def wait() -> SyncResult:
            written = await future
            if not computed:
                return SyncResult(state=written, changed=False, reason=reason)
            logger.info(f"Roadmap sync ({reason}) updated {len(computed['changes'])} milestone(s)")
            await self._publish_sync(written, reason, computed["changes"], computed["timestamp"])
            return SyncResult(
                state=written,
                changed=True,
                changes=computed["changes"],
                reason=reason,
                timestamp=computed["timestamp"],
            )

        return asyncio.ensure_future(wait())

    async def _publish_sync(
        self,
        state: RoadmapState,
        reason: str,
        changes: list[dict[str, Any]],
        timestamp: str,
    ) -> None:
        await self.notifier.publish(
            SyncEvent(
                reason=reason,
                summary=state.summary,
                state=state,
                changes=changes,
                timestamp=timestamp,
            )
        )


def create_roadmap_manager(
    config: RoadmapConfig | None = None,
    git_automation: GitAutomation | None = None,
    repo_dir: str | Path | None = None,
) -> RoadmapStateManager:
    """
    Build a manager with its store, loader, git collaborator and notifier.

    Args:
        config: Settings (resolved from the environment when omitted)
        git_automation: Git collaborator; a ``GitCommitAutomation`` committing
            the state file is used when omitted
        repo_dir: Working tree for the default git collaborator
    """
    config = config or RoadmapConfig.from_env()
    if git_automation is None:
        git_automation = GitCommitAutomation(
            repo_dir or config.data_dir,
            paths=[config.state_file.resolve()],
            enabled=config.git_automation,
        )
    return RoadmapStateManager(
        store=RoadmapStateStore(config),
        domain_loader=DomainLoader(config),
        git_automation=git_automation,
        notifier=SyncNotifier(),
    )
