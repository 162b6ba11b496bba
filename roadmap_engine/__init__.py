"""
roadmap-engine
==============

Local persistence and consistency engine for a project roadmap of
milestones linked to tickets, features and code modules.
"""

__version__ = "1.0.0"

__all__ = [
    "RoadmapConfig",
    "RoadmapStateManager",
    "UpdateOptions",
    "create_roadmap_manager",
]


def __getattr__(name):
    """Lazy imports keep `import roadmap_engine` light."""
    if name == "RoadmapConfig":
        from .core.config import RoadmapConfig

        return RoadmapConfig
    elif name in ("RoadmapStateManager", "create_roadmap_manager", "UpdateOptions"):
        from . import roadmap as _roadmap

        return getattr(_roadmap, name)

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
