"""
Roadmap State Store
===================

Owns the roadmap state file: loading with corrupt-file recovery,
normalisation, locked atomic writes with backups, rollback, and the
debounced save queue.

Two write paths are exposed:

- ``write_immediate`` persists within the call. Every caller that needs its
  own write to be durable uses it.
- ``schedule_save`` enqueues a state factory and (re)arms a shared timer.
  When the timer fires the whole queue is drained as one batch: only the
  last factory is evaluated and written, and every caller in the batch
  receives that one written state (last write wins).
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Union

from ..core.config import RoadmapConfig
from ..core.exceptions import (
    ErrorContext,
    StateNotLoadedError,
    UnknownStatusError,
    ValidationError,
)
from ..core.file_lock import FileLock
from ..core.logging import Timer
from ..core.retry import LOCK_RETRY_CONFIG
from ..core.safe_io import run_io, safe_read_json, safe_read_text, safe_write_json, safe_write_text
from .backups import BackupInfo, BackupManager
from .history import prune_history
from .models import (
    DEFAULT_STATE_VERSION,
    Milestone,
    RoadmapState,
    default_summary,
    utc_now_iso,
)
from .transitions import RoadmapStatus, normalise_status

logger = logging.getLogger(__name__)

StateLike = Union[RoadmapState, Mapping[str, Any]]
StateFactory = Callable[[], Union[StateLike, None, Awaitable[Union[StateLike, None]]]]

_KNOWN_KEYS = {"version", "lastUpdated", "milestones", "history", "summary", "milestonesMap"}


@dataclass
class _PendingSave:
    factory: StateFactory
    create_backup: bool
    future: asyncio.Future


class RoadmapStateStore:
    """
    File-backed roadmap state.

    Args:
        config: Resolved settings (paths, limits, debounce, lock policy)
        backups: Backup manager; built from ``config`` when omitted
        lock: Lock guarding the state file; built from ``config`` when omitted
    """

    def __init__(
        self,
        config: RoadmapConfig,
        backups: BackupManager | None = None,
        lock: FileLock | None = None,
    ):
        self.config = config
        self.state_path = Path(config.state_file)
        self.history_limit = config.history_limit
        self.debounce_seconds = config.save_debounce_seconds
        self.backups = backups or BackupManager(
            config.backup_dir,
            max_backups=config.max_backups,
            gzip_after_seconds=config.backup_gzip_after_seconds,
        )
        self.lock = lock or FileLock(
            self.state_path,
            retry_config=replace(
                LOCK_RETRY_CONFIG,
                max_attempts=config.lock_retries,
                initial_delay=config.lock_base_delay,
            ),
        )

        self.state: RoadmapState | None = None
        self._write_lock = asyncio.Lock()
        self._queue: list[_PendingSave] = []
        self._timer: asyncio.TimerHandle | None = None
        self._flush_task: asyncio.Task | None = None
        self._processing = False

    # ------------------------------------------------------------------
    # Normalisation
    # ------------------------------------------------------------------

    def default_state(self) -> RoadmapState:
        return RoadmapState()

    def normalise_state(self, raw: StateLike | None) -> RoadmapState:
        """
        Coerce raw state into a ``RoadmapState``.

        Fills defaults, accepts milestones as a map or an array, keys them by
        canonical id, resets unknown statuses to ``pending`` and truncates
        history.
        """
        if isinstance(raw, RoadmapState):
            raw = raw.to_dict()
        if not isinstance(raw, Mapping):
            return self.default_state()

        state = RoadmapState(
            version=str(raw.get("version") or DEFAULT_STATE_VERSION),
            last_updated=raw.get("lastUpdated") or utc_now_iso(),
        )

        milestones = raw.get("milestones")
        if isinstance(milestones, list):
            entries = [
                (item.get("id"), item)
                for item in milestones
                if isinstance(item, Mapping) and item.get("id") not in (None, "")
            ]
        elif isinstance(milestones, Mapping):
            entries = list(milestones.items())
        else:
            entries = []

        for key, data in entries:
            if not isinstance(data, Mapping):
                continue
            milestone = Milestone.from_dict(data, key=key)
            milestone.status = self._coerce_status(milestone)
            state.milestones[milestone.id] = milestone

        history = raw.get("history")
        state.history = [
            dict(entry)
            for entry in prune_history(history if isinstance(history, list) else [], self.history_limit)
            if isinstance(entry, Mapping)
        ]

        summary = default_summary()
        if isinstance(raw.get("summary"), Mapping):
            summary.update(raw["summary"])
        state.summary = summary

        state.extra = {k: v for k, v in raw.items() if k not in _KNOWN_KEYS}
        return state

    @staticmethod
    def _coerce_status(milestone: Milestone) -> str:
        try:
            return normalise_status(milestone.status)
        except UnknownStatusError:
            logger.warning(
                f"Milestone {milestone.id} has unknown status {milestone.status!r}, "
                "resetting to pending",
                extra={"milestone_id": milestone.id},
            )
            return RoadmapStatus.PENDING.value

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _ensure_files(self) -> None:
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        self.backups.ensure_directory()
        if not self.state_path.exists():
            safe_write_json(self.state_path, self.default_state().to_dict())

    async def ensure_state_file(self) -> None:
        """Create the data directories and a default state file if missing."""
        await run_io(self._ensure_files)

    async def load(self) -> RoadmapState:
        """
        Load the state file into memory.

        A corrupt or unreadable file is logged and replaced by the default
        state; the old contents are lost.
        """
        await self.ensure_state_file()
        try:
            raw = await run_io(safe_read_json, self.state_path)
            self.state = self.normalise_state(raw)
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.error(
                f"Failed to load roadmap state from {self.state_path.name}, "
                "recreating defaults",
                exc_info=e,
            )
            self.state = self.default_state()
            await self.perform_write(self.state, create_backup=False)
        return self.state.copy()

    def get_state(self) -> RoadmapState:
        """Copy of the in-memory state."""
        if self.state is None:
            raise StateNotLoadedError(
                context=ErrorContext(operation="get_state", component="state_store")
            )
        return self.state.copy()

    async def read_state(self) -> RoadmapState:
        """Copy of the state, loading it first if needed."""
        if self.state is None:
            await self.load()
        return self.get_state()

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _read_existing(self) -> str:
        try:
            return safe_read_text(self.state_path, default="")
        except OSError:
            return ""

    async def perform_write(
        self, state: StateLike, create_backup: bool = True
    ) -> RoadmapState:
        """
        Normalise, stamp and atomically persist ``state``.

        Holds the state file lock for the duration. When ``create_backup`` is
        set the previous file contents are backed up first; backups are
        pruned and compacted afterwards.

        Raises:
            StateLockError: If the lock could not be acquired
        """
        await self.ensure_state_file()
        next_state = self.normalise_state(state)
        next_state.last_updated = utc_now_iso()
        serialised = json.dumps(next_state.to_dict(), indent=2, ensure_ascii=False) + "\n"

        async with self._write_lock:
            async with self.lock:
                with Timer("roadmap_state_write") as timer:
                    if create_backup:
                        existing = await run_io(self._read_existing)
                        if existing.strip():
                            await run_io(self.backups.create_backup, existing)

                    await run_io(safe_write_text, self.state_path, serialised)
                    self.state = next_state
                    await run_io(self.backups.cleanup_backups)

        logger.debug(
            f"Wrote roadmap state ({len(next_state.milestones)} milestones)",
            extra={"duration_ms": timer.duration_ms},
        )
        return next_state.copy()

    async def write_immediate(
        self, state: StateLike, create_backup: bool = True
    ) -> RoadmapState:
        """Persist ``state`` now, bypassing the save queue."""
        return await self.perform_write(state, create_backup=create_backup)

    def schedule_save(
        self, factory: StateFactory, create_backup: bool = True
    ) -> asyncio.Future:
        """
        Queue a debounced save.

        ``factory`` is called (and awaited if it returns an awaitable) only
        if it is the last one queued when the batch flushes. It may return
        ``None`` to persist nothing, in which case the batch resolves with
        the current state.

        Returns:
            Future resolving to the state written by the batch
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._queue.append(_PendingSave(factory, create_backup, future))

        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self.debounce_seconds, self._on_timer)
        return future

    @property
    def pending_saves(self) -> int:
        return len(self._queue)

    def _on_timer(self) -> None:
        self._timer = None
        self._flush_task = asyncio.ensure_future(self.process_queue())

    async def process_queue(self) -> None:
        """Drain the save queue, one write per batch."""
        if self._processing:
            return

        self._processing = True
        try:
            while self._queue:
                batch, self._queue = self._queue, []
                last = batch[-1]
                try:
                    candidate = last.factory()
                    if inspect.isawaitable(candidate):
                        candidate = await candidate
                    if candidate is None:
                        written = await self.read_state()
                    else:
                        written = await self.perform_write(
                            candidate, create_backup=last.create_backup
                        )
                except Exception as e:
                    logger.error(f"Failed to process roadmap save queue: {e}", exc_info=e)
                    for item in batch:
                        if not item.future.done():
                            item.future.set_exception(e)
                else:
                    for item in batch:
                        if not item.future.done():
                            item.future.set_result(written.copy())
        finally:
            self._processing = False

    async def flush(self) -> None:
        """Write any queued saves now instead of waiting for the timer."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._flush_task is not None and not self._flush_task.done():
            await self._flush_task
        await self.process_queue()

    async def close(self) -> None:
        """Cancel the debounce timer and drain the queue."""
        await self.flush()

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    async def list_backups(self) -> list[BackupInfo]:
        return await run_io(self.backups.list_backups)

    async def list_versions(self) -> list[dict[str, Any]]:
        """Backups newest first as ``{filename, size, modifiedAt}``."""
        return [entry.to_dict() for entry in await self.list_backups()]

    async def read_backup(self, filename: str) -> str:
        return await run_io(self.backups.read_backup, filename)

    async def rollback(self, filename: str) -> RoadmapState:
        """
        Replace the current state with a backup's contents.

        The rollback write itself is not backed up.

        Raises:
            BackupNotFoundError: If ``filename`` is not a listed backup
            ValidationError: If the backup is not valid JSON
        """
        raw = await self.read_backup(filename)
        try:
            parsed = json.loads(raw)
        except ValueError as e:
            raise ValidationError(
                f"Roadmap backup {filename} is not valid JSON",
                context=ErrorContext(operation="rollback", component="state_store"),
                cause=e,
            ) from e

        state = await self.perform_write(parsed, create_backup=False)
        logger.info(f"Rolled roadmap state back to {filename}")
        return state
