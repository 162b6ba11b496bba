"""
``state:sync`` notifications.

The orchestrator publishes one payload per persisted update or sync to an
explicit subscriber list. A failing subscriber is logged and skipped; it
never affects the write or the other subscribers.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .models import RoadmapState

logger = logging.getLogger(__name__)

STATE_SYNC_EVENT = "state:sync"


@dataclass
class SyncEvent:
    """Payload of a ``state:sync`` notification."""

    reason: str
    summary: dict[str, Any]
    state: RoadmapState
    changes: list[dict[str, Any]]
    timestamp: str
    actor: str | None = None
    name: str = field(default=STATE_SYNC_EVENT)

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "reason": self.reason,
            "summary": self.summary,
            "state": self.state.to_dict(),
            "changes": self.changes,
            "timestamp": self.timestamp,
        }
        if self.actor is not None:
            payload["actor"] = self.actor
        return payload


Subscriber = Callable[[SyncEvent], Awaitable[None] | None]


class SyncNotifier:
    """Ordered list of ``state:sync`` subscribers."""

    def __init__(self):
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register ``callback`` for sync events.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            self.unsubscribe(callback)

        return unsubscribe

    def unsubscribe(self, callback: Subscriber) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: SyncEvent) -> None:
        """Deliver ``event`` to every subscriber in registration order."""
        for callback in list(self._subscribers):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"{STATE_SYNC_EVENT} subscriber {getattr(callback, '__name__', callback)!r} failed: {e}",
                    exc_info=e,
                )
