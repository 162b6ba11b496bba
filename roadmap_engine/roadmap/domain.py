"""
Domain entity loader.

Reads the ticket, feature and module files the roadmap links to and indexes
them by canonical id. Each payload may be wrapped (``{"tickets": [...]}``)
or a bare list. Request-scoped overrides replace individual files so a
caller can compute against entities it is about to write.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..core.config import RoadmapConfig
from ..core.safe_io import run_io
from .models import canonical_id

logger = logging.getLogger(__name__)

OVERRIDE_KEYS = ("tickets", "features", "detectedModules", "manualModules")


def load_json(path: str | Path, fallback: Any) -> Any:
    """
    Parse a JSON file, returning ``fallback`` when it is missing.

    Unreadable or malformed files are logged and also yield ``fallback``.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return fallback
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to read {path.name}, using fallback: {e}")
        return fallback


def _unwrap(payload: Any, key: str) -> list[Any]:
    if isinstance(payload, Mapping) and isinstance(payload.get(key), list):
        items = payload[key]
    elif isinstance(payload, list):
        items = payload
    else:
        return []
    return [item for item in items if isinstance(item, Mapping)]


@dataclass
class DomainContext:
    """Loaded entities plus the indexes progress calculation reads."""

    tickets: list[dict[str, Any]] = field(default_factory=list)
    features: list[dict[str, Any]] = field(default_factory=list)
    modules: list[dict[str, Any]] = field(default_factory=list)
    tickets_by_id: dict[str, dict[str, Any]] = field(default_factory=dict)
    tickets_by_module: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    features_by_id: dict[str, dict[str, Any]] = field(default_factory=dict)
    modules_by_id: dict[str, dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_entities(
        cls,
        tickets: list[dict[str, Any]],
        features: list[dict[str, Any]],
        modules: list[dict[str, Any]],
    ) -> "DomainContext":
        context = cls(tickets=tickets, features=features, modules=modules)

        for ticket in tickets:
            if ticket.get("id") is not None:
                context.tickets_by_id[canonical_id(ticket["id"])] = ticket
            module_ids = ticket.get("modules")
            if isinstance(module_ids, list):
                for module_id in module_ids:
                    if not module_id:
                        continue
                    context.tickets_by_module.setdefault(
                        canonical_id(module_id), []
                    ).append(ticket)

        for feature in features:
            if feature.get("id") is not None:
                context.features_by_id[canonical_id(feature["id"])] = feature

        for module in modules:
            if module.get("id") is None:
                continue
            context.modules_by_id[canonical_id(module["id"])] = module
            if module.get("path"):
                context.modules_by_id[str(module["path"])] = module

        return context

    def ticket_status_breakdown(self) -> dict[str, int]:
        """Number of tickets per status."""
        breakdown: dict[str, int] = {}
        for ticket in self.tickets:
            status = ticket.get("status") or "unknown"
            breakdown[status] = breakdown.get(status, 0) + 1
        return breakdown


class DomainLoader:
    """Loads domain entities from the data directory."""

    def __init__(self, config: RoadmapConfig):
        self.config = config

    def _read(self, overrides: Mapping[str, Any]) -> DomainContext:
        def payload(key: str, path: Path, fallback: Any) -> Any:
            if key in overrides:
                return overrides[key]
            return load_json(path, fallback)

        tickets = _unwrap(
            payload("tickets", self.config.tickets_file, {"tickets": [], "nextId": 1}),
            "tickets",
        )
        features = _unwrap(
            payload("features", self.config.features_file, {"features": [], "nextId": 1}),
            "features",
        )
        detected = _unwrap(
            payload("detectedModules", self.config.detected_modules_file, []),
            "modules",
        )
        manual = _unwrap(
            payload("manualModules", self.config.manual_modules_file, []),
            "modules",
        )
        return DomainContext.from_entities(tickets, features, detected + manual)

    async def load(self, overrides: Mapping[str, Any] | None = None) -> DomainContext:
        """Load and index tickets, features and modules."""
        return await run_io(self._read, dict(overrides or {}))
