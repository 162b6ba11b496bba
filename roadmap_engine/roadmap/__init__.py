"""
Roadmap State Engine
====================

Persisted milestone graph with weighted progress, dependency gating,
cascading recalculation, a status state machine, backups and rollback.
"""

from .domain import DomainContext, DomainLoader
from .events import STATE_SYNC_EVENT, SyncEvent, SyncNotifier
from .git_automation import GitAutomation, GitAutomationResult, GitCommitAutomation
from .models import (
    DependencySummary,
    Milestone,
    MilestonePatch,
    RoadmapState,
    SyncResult,
    UpdateOptions,
    UpdateResult,
)
from .orchestrator import RoadmapStateManager, create_roadmap_manager
from .state_store import RoadmapStateStore
from .transitions import RoadmapStatus
from .watcher import RoadmapSyncWatcher

__all__ = [
    "DependencySummary",
    "DomainContext",
    "DomainLoader",
    "GitAutomation",
    "GitAutomationResult",
    "GitCommitAutomation",
    "Milestone",
    "MilestonePatch",
    "RoadmapState",
    "RoadmapStateManager",
    "RoadmapStateStore",
    "RoadmapStatus",
    "RoadmapSyncWatcher",
    "STATE_SYNC_EVENT",
    "SyncEvent",
    "SyncNotifier",
    "SyncResult",
    "UpdateOptions",
    "UpdateResult",
    "create_roadmap_manager",
]
