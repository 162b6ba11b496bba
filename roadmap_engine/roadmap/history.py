"""
Milestone change diffs and the bounded roadmap history.

Diffs are plain dicts in wire form so they can be stored in history and
published to subscribers as-is.
"""

import json
from collections.abc import Iterable, Mapping
from typing import Any

from .domain import DomainContext
from .models import HISTORY_LIMIT, HistoryEntry, Milestone, utc_now_iso

# Fields compared on every update, whether requested or not
TRACKED_FIELDS = (
    "progress",
    "status",
    "dependencies",
    "dependencySummary",
    "completionSummary",
    "completedAt",
)

CASCADE_REASON = "roadmap:dependency-cascade"


def _fingerprint(value: Any) -> str:
    return json.dumps(value, default=str)


def field_changed(previous: Milestone | None, current: Milestone | None, wire_field: str) -> bool:
    before = previous.wire_value(wire_field) if previous else None
    after = current.wire_value(wire_field) if current else None
    return _fingerprint(before) != _fingerprint(after)


def compute_changed_fields(
    previous: Milestone | None,
    current: Milestone | None,
    requested: Iterable[str] = (),
) -> list[str]:
    """Requested fields plus every tracked field whose value differs."""
    fields = list(dict.fromkeys(requested))
    for wire_field in TRACKED_FIELDS:
        if wire_field not in fields and field_changed(previous, current, wire_field):
            fields.append(wire_field)
    return fields


def diff_milestone(
    previous: Milestone,
    current: Milestone,
    changed_fields: list[str],
    updated_at: str | None = None,
) -> dict[str, Any]:
    """Structured ``{from, to}`` record for the tracked fields that changed."""
    diff: dict[str, Any] = {
        "id": current.id or previous.id,
        "title": current.title or previous.title or "",
        "updatedFields": list(changed_fields),
        "updatedAt": updated_at or utc_now_iso(),
    }
    for wire_field in TRACKED_FIELDS:
        if wire_field in changed_fields:
            diff[wire_field] = {
                "from": previous.wire_value(wire_field),
                "to": current.wire_value(wire_field),
            }
    return diff


def prune_history(history: Any, limit: int = HISTORY_LIMIT) -> list[dict[str, Any]]:
    if not isinstance(history, list):
        return []
    return history[:limit]


def prepend_history(
    history: list[dict[str, Any]],
    entry: HistoryEntry | Mapping[str, Any],
    limit: int = HISTORY_LIMIT,
) -> list[dict[str, Any]]:
    """New history list with ``entry`` first, truncated to ``limit``."""
    record = entry.to_dict() if isinstance(entry, HistoryEntry) else dict(entry)
    return prune_history([record, *history], limit)


def build_summary(
    reason: str,
    domain: DomainContext,
    timestamp: str | None = None,
    status_breakdown: bool = False,
) -> dict[str, Any]:
    """Roadmap summary block recorded with each history entry."""
    summary: dict[str, Any] = {
        "source": reason,
        "ticketCount": len(domain.tickets),
        "moduleCount": len(domain.modules),
        "featureCount": len(domain.features),
    }
    if timestamp:
        summary["generatedAt"] = timestamp
    if status_breakdown:
        summary["statusBreakdown"] = domain.ticket_status_breakdown()
    return summary


def diff_sync(
    previous: Mapping[str, Milestone],
    current: Mapping[str, Milestone],
    removed_from: Mapping[str, Milestone] | None = None,
) -> list[dict[str, Any]]:
    """
    Per-milestone records of what a sync changed.

    A record is produced when progress, status or the dependency summary
    differs. Milestones present in ``removed_from`` (defaults to
    ``previous``) but absent from ``current`` get a ``removed`` record.
    """
    changes: list[dict[str, Any]] = []
    now = utc_now_iso()

    for milestone_id, milestone in current.items():
        before = previous.get(milestone_id)
        progress_before = before.progress if before else None
        status_before = before.status if before else None
        summary_changed = field_changed(before, milestone, "dependencySummary")

        if (
            progress_before == milestone.progress
            and status_before == milestone.status
            and not summary_changed
        ):
            continue

        record: dict[str, Any] = {
            "id": milestone_id,
            "title": milestone.title or (before.title if before else ""),
            "progress": {"from": progress_before, "to": milestone.progress},
            "status": {"from": status_before, "to": milestone.status},
            "dependencies": list(milestone.dependencies),
            "updatedAt": now,
        }
        if summary_changed:
            record["dependencySummary"] = {
                "from": before.wire_value("dependencySummary") if before else None,
                "to": milestone.wire_value("dependencySummary"),
            }
        changes.append(record)

    baseline = previous if removed_from is None else removed_from
    for milestone_id, before in baseline.items():
        if milestone_id in current:
            continue
        changes.append(
            {
                "id": milestone_id,
                "title": before.title or "",
                "removed": True,
                "progress": {"from": before.progress, "to": None},
                "status": {"from": before.status, "to": None},
                "dependencies": list(before.dependencies),
                "dependencySummary": {
                    "from": before.wire_value("dependencySummary"),
                    "to": None,
                },
                "updatedAt": now,
            }
        )

    return changes
