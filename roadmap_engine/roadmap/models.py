"""
Data models for the roadmap state engine.

Milestones and state are held as dataclasses in memory and serialised with
camelCase keys on disk (``to_dict``/``from_dict``). Milestone ids are
canonicalised to strings at ingestion; every map in the engine is keyed by
that canonical form.
"""

import copy
import math
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Any

from ..core.exceptions import EmptyUpdateError, InvalidMilestoneFieldError
from .transitions import RoadmapStatus, normalise_status

DEFAULT_STATE_VERSION = "1.0.0"
HISTORY_LIMIT = 25


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def canonical_id(value: Any) -> str:
    """Canonical string form of a milestone or entity id."""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def clamp_progress(value: Any, default: int = 0) -> int:
    """Coerce a progress value to an integer in [0, 100]."""
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    # Half-up rounding, not banker's rounding
    return max(0, min(100, math.floor(number + 0.5)))


def unique_ids(values: Any) -> list[str]:
    """Canonical, de-duplicated, order-preserving list of non-empty ids."""
    if not isinstance(values, (list, tuple, set, frozenset)):
        return []
    seen: dict[str, None] = {}
    for value in values:
        if value is None or value == "" or value is False:
            continue
        seen.setdefault(canonical_id(value), None)
    return list(seen)


def unique_links(values: Any) -> list[Any]:
    """De-duplicated, order-preserving list of non-empty entity references."""
    if not isinstance(values, (list, tuple, set, frozenset)):
        return []
    result: list[Any] = []
    seen: set[str] = set()
    for value in values:
        if value is None or value == "" or value is False:
            continue
        key = canonical_id(value)
        if key in seen:
            continue
        seen.add(key)
        result.append(value)
    return result


def _count(value: Any) -> int:
    """Non-negative integer count; anything unusable counts as 0."""
    if isinstance(value, bool):
        return 0
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, number)


@dataclass
class DependencyDetail:
    """How one dependency of a milestone currently stands."""

    id: str
    title: str = ""
    status: str = "missing"
    progress: int = 0
    blocked: bool = False
    completed: bool = False
    missing: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "progress": self.progress,
            "blocked": self.blocked,
            "completed": self.completed,
            "missing": self.missing,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DependencyDetail":
        return cls(
            id=canonical_id(data.get("id", "")),
            title=str(data.get("title") or ""),
            status=str(data.get("status") or "missing"),
            progress=clamp_progress(data.get("progress")),
            blocked=bool(data.get("blocked", False)),
            completed=bool(data.get("completed", False)),
            missing=bool(data.get("missing", False)),
        )


@dataclass
class DependencySummary:
    """Aggregate of a milestone's dependencies; ``gating_progress`` caps its progress."""

    total: int = 0
    satisfied: int = 0
    blocked: int = 0
    pending: int = 0
    missing: int = 0
    gating_progress: int = 100
    status: str = "clear"  # clear | pending | blocked
    details: list[DependencyDetail] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "satisfied": self.satisfied,
            "blocked": self.blocked,
            "pending": self.pending,
            "missing": self.missing,
            "gatingProgress": self.gating_progress,
            "status": self.status,
            "details": [detail.to_dict() for detail in self.details],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DependencySummary":
        details = data.get("details")
        if not isinstance(details, list):
            details = []
        return cls(
            total=_count(data.get("total")),
            satisfied=_count(data.get("satisfied")),
            blocked=_count(data.get("blocked")),
            pending=_count(data.get("pending")),
            missing=_count(data.get("missing")),
            gating_progress=clamp_progress(data.get("gatingProgress"), default=100),
            status=str(data.get("status") or "clear"),
            details=[
                DependencyDetail.from_dict(item)
                for item in details
                if isinstance(item, Mapping)
            ],
        )


# wire key -> attribute, in serialisation order
MILESTONE_FIELDS: dict[str, str] = {
    "id": "id",
    "title": "title",
    "description": "description",
    "status": "status",
    "progress": "progress",
    "dependencies": "dependencies",
    "linkedTickets": "linked_tickets",
    "linkedFeatures": "linked_features",
    "linkedModules": "linked_modules",
    "linkedModule": "linked_module",
    "targetDate": "target_date",
    "dependencySummary": "dependency_summary",
    "completionSummary": "completion_summary",
    "completedAt": "completed_at",
    "updatedAt": "updated_at",
    "lastEditedBy": "last_edited_by",
}

# Always written for milestones built in code rather than read from disk
CORE_FIELDS = frozenset(
    {
        "id",
        "title",
        "status",
        "progress",
        "dependencies",
        "linkedTickets",
        "linkedFeatures",
        "linkedModules",
    }
)

# What a missing key means on read; other fields default to None
_ABSENT_VALUES: dict[str, Any] = {
    "title": "",
    "status": RoadmapStatus.PENDING.value,
    "progress": 0,
    "dependencies": [],
    "linkedTickets": [],
    "linkedFeatures": [],
    "linkedModules": [],
}


@dataclass
class Milestone:
    """A roadmap node: status, progress, dependency edges and entity links."""

    id: str
    title: str = ""
    description: str | None = None
    status: str = RoadmapStatus.PENDING.value
    progress: int = 0
    dependencies: list[str] = field(default_factory=list)
    linked_tickets: list[Any] = field(default_factory=list)
    linked_features: list[Any] = field(default_factory=list)
    linked_modules: list[Any] = field(default_factory=list)
    linked_module: str | None = None
    target_date: str | None = None
    dependency_summary: DependencySummary | None = None
    completion_summary: str | None = None
    completed_at: str | None = None
    updated_at: str | None = None
    last_edited_by: str | None = None
    # Unrecognised keys (``name`` included) are carried through untouched
    extra: dict[str, Any] = field(default_factory=dict)
    # Field keys present when read from disk; None for milestones built in code
    wire_keys: frozenset[str] | None = field(default=None, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], key: Any = None) -> "Milestone":
        """
        Build a milestone from its wire form.

        The id falls back to the map key it was stored under. Status is kept
        as given (lower-cased); callers decide how to treat unknown values.
        """
        raw_id = data.get("id")
        if raw_id is None or raw_id == "":
            raw_id = key
        summary = data.get("dependencySummary")
        status = data.get("status")
        return cls(
            id=canonical_id(raw_id),
            title=str(data.get("title") or data.get("name") or ""),
            description=data.get("description"),
            status=str(status).strip().lower() if status else RoadmapStatus.PENDING.value,
            progress=clamp_progress(data.get("progress")),
            dependencies=unique_ids(data.get("dependencies")),
            linked_tickets=unique_links(data.get("linkedTickets")),
            linked_features=unique_links(data.get("linkedFeatures")),
            linked_modules=unique_links(data.get("linkedModules")),
            linked_module=data.get("linkedModule"),
            target_date=data.get("targetDate"),
            dependency_summary=(
                DependencySummary.from_dict(summary)
                if isinstance(summary, Mapping)
                else None
            ),
            completion_summary=data.get("completionSummary"),
            completed_at=data.get("completedAt"),
            updated_at=data.get("updatedAt"),
            last_edited_by=data.get("lastEditedBy"),
            extra={
                k: copy.deepcopy(v) for k, v in data.items() if k not in MILESTONE_FIELDS
            },
            wire_keys=frozenset(k for k in data if k in MILESTONE_FIELDS),
        )

    def _writes(self, wire_field: str, value: Any) -> bool:
        if self.wire_keys is None:
            return wire_field in CORE_FIELDS or value is not None
        if wire_field in self.wire_keys:
            return True
        if wire_field == "id":
            # stored under its map key only
            return False
        if wire_field == "title" and value == self.extra.get("name"):
            return False
        return value != _ABSENT_VALUES.get(wire_field)

    def to_dict(self) -> dict[str, Any]:
        """
        Wire form of the milestone.

        A milestone read from disk writes back the keys it was read with plus
        any field that has since been given a value, so an unchanged milestone
        serialises to exactly what was loaded.
        """
        result: dict[str, Any] = {}
        for wire, attr in MILESTONE_FIELDS.items():
            value = getattr(self, attr)
            if not self._writes(wire, value):
                continue
            if isinstance(value, DependencySummary):
                value = value.to_dict()
            elif isinstance(value, list):
                value = list(value)
            result[wire] = value
        for key, value in self.extra.items():
            result.setdefault(key, copy.deepcopy(value))
        return result

    def wire_value(self, wire_field: str) -> Any:
        """Value of one field in its serialised form."""
        attr = MILESTONE_FIELDS.get(wire_field)
        if attr is None:
            return copy.deepcopy(self.extra.get(wire_field))
        value = getattr(self, attr)
        if isinstance(value, DependencySummary):
            return value.to_dict()
        if isinstance(value, list):
            return list(value)
        return value

    def copy(self) -> "Milestone":
        return copy.deepcopy(self)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()

# Accepted update keys -> patch attribute
PATCH_FIELDS: dict[str, str] = {
    "title": "title",
    "name": "title",
    "description": "description",
    "status": "status",
    "progress": "progress",
    "dependencies": "dependencies",
    "linkedTickets": "linked_tickets",
    "linkedFeatures": "linked_features",
    "linkedModules": "linked_modules",
    "linkedModule": "linked_module",
    "targetDate": "target_date",
    "completionSummary": "completion_summary",
    "completedAt": "completed_at",
}

_ATTR_TO_WIRE = {attr: wire for wire, attr in MILESTONE_FIELDS.items()}


@dataclass
class MilestonePatch:
    """
    Explicit partial update of a milestone.

    Every field defaults to ``UNSET``; only fields that were supplied are
    merged. ``from_dict`` validates and sanitises each field before merge:
    progress is clamped to [0, 100] (non-numeric values are dropped),
    dependency and link lists are de-duplicated, status is normalised.
    """

    title: Any = UNSET
    description: Any = UNSET
    status: Any = UNSET
    progress: Any = UNSET
    dependencies: Any = UNSET
    linked_tickets: Any = UNSET
    linked_features: Any = UNSET
    linked_modules: Any = UNSET
    linked_module: Any = UNSET
    target_date: Any = UNSET
    completion_summary: Any = UNSET
    completed_at: Any = UNSET

    @classmethod
    def from_dict(cls, updates: Mapping[str, Any] | None) -> "MilestonePatch":
        """
        Build a patch from an update payload.

        Accepts either field keys (``{"progress": 40}``) or the single-field
        form ``{"field": "progress", "value": 40}``.

        Raises:
            EmptyUpdateError: If the payload carries no fields
            InvalidMilestoneFieldError: If a key is not an updatable field
            UnknownStatusError: If the status is not a roadmap status
        """
        payload = dict(updates or {})
        if "field" in payload:
            field_key = payload.pop("field")
            value = payload.pop("value", None)
            if field_key:
                payload[field_key] = value
        if not payload:
            raise EmptyUpdateError()

        values: dict[str, Any] = {}
        for key, value in payload.items():
            attr = PATCH_FIELDS.get(key)
            if attr is None:
                raise InvalidMilestoneFieldError(key)
            values[attr] = value

        patch = cls(**values)
        patch._sanitise()
        return patch

    def _sanitise(self) -> None:
        if self.progress is not UNSET:
            progress = clamp_progress(self.progress, default=-1)
            self.progress = UNSET if progress < 0 else progress
        if self.dependencies is not UNSET:
            self.dependencies = unique_ids(self.dependencies)
        for attr in ("linked_tickets", "linked_features", "linked_modules"):
            value = getattr(self, attr)
            if value is UNSET:
                continue
            if isinstance(value, (list, tuple, set, frozenset)):
                setattr(self, attr, unique_links(value))
            else:
                # Non-list links leave the stored value untouched
                setattr(self, attr, UNSET)
        if self.status is not UNSET:
            self.status = normalise_status(self.status)
        if self.title is not UNSET:
            self.title = "" if self.title is None else str(self.title)

    def supplied(self) -> dict[str, Any]:
        """Supplied fields keyed by attribute name."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }

    def field_names(self) -> list[str]:
        """Supplied fields by wire name."""
        return [_ATTR_TO_WIRE[name] for name in self.supplied()]

    def is_empty(self) -> bool:
        return not self.supplied()

    def apply(self, milestone: Milestone) -> Milestone:
        """Return a copy of ``milestone`` with the supplied fields merged in."""
        changes = {
            name: copy.deepcopy(value) for name, value in self.supplied().items()
        }
        patched = replace(milestone.copy(), **changes)
        if self.title is not UNSET:
            if patched.wire_keys is not None:
                patched.wire_keys = patched.wire_keys | {"title"}
            if "name" in patched.extra:
                patched.extra["name"] = patched.title
        return patched


def default_summary() -> dict[str, Any]:
    return {
        "source": "manual",
        "ticketCount": 0,
        "moduleCount": 0,
        "featureCount": 0,
    }


@dataclass
class RoadmapState:
    """The persisted roadmap: milestones keyed by canonical id plus history."""

    version: str = DEFAULT_STATE_VERSION
    last_updated: str = field(default_factory=utc_now_iso)
    milestones: dict[str, Milestone] = field(default_factory=dict)
    history: list[dict[str, Any]] = field(default_factory=list)
    summary: dict[str, Any] = field(default_factory=default_summary)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result = {
            "version": self.version,
            "lastUpdated": self.last_updated,
            "milestones": {
                key: milestone.to_dict() for key, milestone in self.milestones.items()
            },
            "history": copy.deepcopy(self.history),
            "summary": copy.deepcopy(self.summary),
        }
        for key, value in self.extra.items():
            result.setdefault(key, copy.deepcopy(value))
        return result

    def milestones_list(self) -> list[dict[str, Any]]:
        """Milestones as an array, for consumers that expect one."""
        return [{"id": m.id, **m.to_dict()} for m in self.milestones.values()]

    def get(self, milestone_id: Any) -> Milestone | None:
        return self.milestones.get(canonical_id(milestone_id))

    def copy(self) -> "RoadmapState":
        return copy.deepcopy(self)


@dataclass
class HistoryEntry:
    """One history record; every update or sync produces exactly one."""

    reason: str
    timestamp: str
    actor: str | None = None
    summary: dict[str, Any] = field(default_factory=dict)
    changes: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "reason": self.reason,
            "timestamp": self.timestamp,
            "actor": self.actor,
            "summary": copy.deepcopy(self.summary),
            "changes": copy.deepcopy(self.changes),
        }


@dataclass
class UpdateOptions:
    """
    Options for ``RoadmapStateManager.update_milestone``.

    ``manual`` overrides the ``roadmap:manual`` reason-prefix rule that
    decides whether git automation runs on completion; ``None`` keeps it.
    """

    reason: str | None = None
    actor: str | None = None
    overrides: Mapping[str, Any] | None = None
    skip_git: bool = False
    manual: bool | None = None


@dataclass
class UpdateResult:
    """Outcome of ``update_milestone``."""

    state: RoadmapState
    changed: bool = False
    change: dict[str, Any] | None = None
    cascaded_changes: list[dict[str, Any]] = field(default_factory=list)
    changed_fields: list[str] = field(default_factory=list)
    reason: str | None = None
    timestamp: str | None = None
    git_automation_result: Any = None
    status_transition: dict[str, str] | None = None


@dataclass
class SyncResult:
    """Outcome of ``sync``."""

    state: RoadmapState
    changed: bool = False
    changes: list[dict[str, Any]] = field(default_factory=list)
    reason: str = "sync"
    timestamp: str | None = None
