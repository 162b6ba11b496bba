"""
Roadmap status state machine.

``completed`` is terminal: the only transition out of it is to itself.
"""

from enum import Enum
from typing import Any

from ..core.exceptions import InvalidStatusTransitionError, UnknownStatusError


class RoadmapStatus(str, Enum):
    """Lifecycle status of a milestone."""

    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    BLOCKED = "blocked"
    COMPLETED = "completed"


ROADMAP_STATUSES: tuple[str, ...] = tuple(status.value for status in RoadmapStatus)

STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"pending", "active", "paused", "blocked", "completed"}),
    "active": frozenset({"active", "paused", "blocked", "completed"}),
    "paused": frozenset({"paused", "active", "blocked", "completed"}),
    "blocked": frozenset({"blocked", "active", "paused", "completed"}),
    "completed": frozenset({"completed"}),
}

# Statuses that hold a milestone (or a dependency) back
HOLDING_STATUSES = frozenset({"blocked", "paused"})


def normalise_status(value: Any, allow_null: bool = False) -> str | None:
    """
    Normalise a status value to one of ROADMAP_STATUSES.

    Empty values map to ``pending`` (or ``None`` when ``allow_null``).
    Case and surrounding whitespace are ignored.

    Raises:
        UnknownStatusError: If the value is not a known status
    """
    if isinstance(value, RoadmapStatus):
        return value.value
    if value is None or value == "":
        return None if allow_null else RoadmapStatus.PENDING.value
    normalised = str(value).strip().lower()
    if normalised not in STATUS_TRANSITIONS:
        raise UnknownStatusError(value)
    return normalised


def is_transition_allowed(previous: Any, next_status: Any) -> bool:
    """Return whether ``previous -> next_status`` is permitted."""
    from_status = normalise_status(previous, allow_null=True) or RoadmapStatus.PENDING.value
    to_status = normalise_status(next_status)
    allowed = STATUS_TRANSITIONS.get(from_status, STATUS_TRANSITIONS["pending"])
    return to_status in allowed


def validate_status_transition(previous: Any, next_status: Any) -> tuple[str, str]:
    """
    Validate a status change.

    Returns:
        The normalised ``(from, to)`` pair

    Raises:
        UnknownStatusError: If either status is unknown
        InvalidStatusTransitionError: If the table forbids the change
    """
    from_status = normalise_status(previous, allow_null=True) or RoadmapStatus.PENDING.value
    to_status = normalise_status(next_status)
    if not is_transition_allowed(from_status, to_status):
        raise InvalidStatusTransitionError(from_status, to_status)
    return from_status, to_status
