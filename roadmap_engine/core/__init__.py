"""
Shared infrastructure for the roadmap engine: configuration, logging,
errors, retry, file I/O and the state file lock.

Names are resolved lazily so ``import roadmap_engine.core`` does not pull
in YAML or dotenv until configuration is actually needed.
"""

import importlib

_EXPORTS = {
    "RoadmapConfig": "config",
    "get_logger": "logging",
    "configure_logging": "logging",
    "set_correlation_id": "logging",
    "log_context": "logging",
    "Timer": "logging",
    "timed": "logging",
    "RoadmapError": "exceptions",
    "ConfigurationError": "exceptions",
    "ValidationError": "exceptions",
    "StateLockError": "exceptions",
    "is_retryable": "exceptions",
    "RetryConfig": "retry",
    "RetryResult": "retry",
    "async_retry_with_result": "retry",
    "FileLock": "file_lock",
}

__all__ = list(_EXPORTS)


def __getattr__(name):
    module = _EXPORTS.get(name)
    if module is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    return getattr(importlib.import_module(f".{module}", __name__), name)
