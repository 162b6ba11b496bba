"""
Domain file watcher.

Polls the ticket, feature and module files on the event loop and requests a
debounced roadmap sync when any of them is added, changed or removed.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Sequence
from pathlib import Path

from ..core.config import RoadmapConfig
from .orchestrator import RoadmapStateManager

logger = logging.getLogger(__name__)

WATCHER_REASON_PREFIX = "watcher"


def watched_files(config: RoadmapConfig) -> list[Path]:
    return [
        config.tickets_file,
        config.features_file,
        config.manual_modules_file,
        config.detected_modules_file,
    ]


class RoadmapSyncWatcher:
    """
    Triggers ``request_sync`` when watched domain files change.

    Reasons accumulate between flushes and are sent as
    ``watcher:<name>+<name>``; a deleted file contributes ``<name>:removed``.

    Args:
        manager: Manager whose ``request_sync`` is called
        paths: Files to watch
        poll_interval: Seconds between modification-time checks
        debounce: Seconds to wait after the last change before syncing
    """

    def __init__(
        self,
        manager: RoadmapStateManager,
        paths: Sequence[str | Path],
        poll_interval: float = 1.0,
        debounce: float = 0.25,
    ):
        self.manager = manager
        self.paths = [Path(p) for p in paths]
        self.poll_interval = poll_interval
        self.debounce = debounce

        self._mtimes: dict[Path, float | None] = {}
        self._reasons: list[str] = []
        self._timer: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()

    @classmethod
    def from_config(
        cls, manager: RoadmapStateManager, config: RoadmapConfig
    ) -> "RoadmapSyncWatcher":
        return cls(
            manager,
            watched_files(config),
            poll_interval=config.watcher_poll_seconds,
            debounce=config.watcher_debounce_seconds,
        )

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    @staticmethod
    def _mtime(path: Path) -> float | None:
        try:
            return os.stat(path).st_mtime_ns / 1e9
        except FileNotFoundError:
            return None

    def snapshot(self) -> None:
        """Record current modification times without raising events."""
        self._mtimes = {path: self._mtime(path) for path in self.paths}

    def check(self) -> list[str]:
        """
        Compare modification times against the last snapshot.

        Returns:
            Reasons for the files that changed
        """
        reasons = []
        for path in self.paths:
            before = self._mtimes.get(path)
            after = self._mtime(path)
            if before == after:
                continue
            self._mtimes[path] = after
            reasons.append(path.name if after is not None else f"{path.name}:removed")
        return reasons

    def start(self) -> None:
        """Begin polling on the running event loop."""
        if self.is_active:
            return
        self.snapshot()
        self._task = asyncio.ensure_future(self._poll())
        logger.info(f"Watching {len(self.paths)} roadmap domain file(s)")

    async def stop(self) -> None:
        """Stop polling and cancel any pending debounce."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._reasons.clear()

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            for reason in self.check():
                self._queue(reason)

    def _queue(self, reason: str) -> None:
        if reason not in self._reasons:
            self._reasons.append(reason)
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce, self._trigger)

    def _trigger(self) -> None:
        self._timer = None
        if not self._reasons:
            return
        reason = f"{WATCHER_REASON_PREFIX}:{'+'.join(self._reasons)}"
        self._reasons = []
        logger.debug(f"Domain files changed, requesting sync ({reason})")

        task = self.manager.request_sync(reason=reason)
        self._pending.add(task)
        task.add_done_callback(self._on_sync_done)

    def _on_sync_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Roadmap sync triggered by watcher failed: {error}", exc_info=error)
