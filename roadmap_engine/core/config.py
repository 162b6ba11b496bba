"""
Core configuration for the roadmap engine.

Settings are resolved in this order (later wins):

1. Built-in defaults (``RoadmapConfig`` field defaults)
2. A YAML settings file named by ``ROADMAP_CONFIG`` or passed explicitly
3. Environment variables, after loading a ``.env`` file when one exists

Example:
    >>> from roadmap_engine.core.config import RoadmapConfig
    >>> config = RoadmapConfig.from_env()
    >>> config.state_file.name
    'roadmap-state.json'
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .exceptions import ErrorContext, InvalidConfigError

STATE_FILE_NAME = "roadmap-state.json"
BACKUP_SUBDIR = Path("backups") / "roadmap"
TICKETS_FILE_NAME = "tickets.json"
FEATURES_FILE_NAME = "features.json"
DETECTED_MODULES_FILE_NAME = "modules-detected.json"
MANUAL_MODULES_FILE_NAME = "modules.json"

CONFIG_PATH_VAR = "ROADMAP_CONFIG"
"""str: Environment variable naming an optional YAML settings file."""

# field name -> environment variable
ENV_VARS = {
    "data_dir": "ROADMAP_DATA_DIR",
    "state_file": "ROADMAP_STATE_FILE",
    "backup_dir": "ROADMAP_BACKUP_DIR",
    "history_limit": "ROADMAP_HISTORY_LIMIT",
    "max_backups": "ROADMAP_MAX_BACKUPS",
    "backup_gzip_after_seconds": "ROADMAP_BACKUP_GZIP_AFTER",
    "save_debounce_seconds": "ROADMAP_SAVE_DEBOUNCE",
    "lock_retries": "ROADMAP_LOCK_RETRIES",
    "lock_base_delay": "ROADMAP_LOCK_BASE_DELAY",
    "git_automation": "ROADMAP_GIT_AUTOMATION",
    "watcher_debounce_seconds": "ROADMAP_WATCH_DEBOUNCE",
    "watcher_poll_seconds": "ROADMAP_WATCH_POLL",
    "log_level": "ROADMAP_LOG_LEVEL",
    "structured_logs": "ROADMAP_LOG_JSON",
}

_INT_FIELDS = {"history_limit", "max_backups", "lock_retries"}
_FLOAT_FIELDS = {
    "backup_gzip_after_seconds",
    "save_debounce_seconds",
    "lock_base_delay",
    "watcher_debounce_seconds",
    "watcher_poll_seconds",
}
_BOOL_FIELDS = {"git_automation", "structured_logs"}
_PATH_FIELDS = {"data_dir", "state_file", "backup_dir"}

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class RoadmapConfig:
    """Resolved settings for one roadmap engine instance."""

    data_dir: Path = Path("data")
    state_file: Path | None = None
    backup_dir: Path | None = None
    history_limit: int = 25
    max_backups: int = 5
    backup_gzip_after_seconds: float = 24 * 60 * 60
    save_debounce_seconds: float = 1.0
    lock_retries: int = 5
    lock_base_delay: float = 0.1
    git_automation: bool = True
    watcher_debounce_seconds: float = 0.25
    watcher_poll_seconds: float = 1.0
    log_level: str = "INFO"
    structured_logs: bool = False

    def __post_init__(self):
        # Derived paths follow data_dir unless set explicitly
        object.__setattr__(self, "data_dir", Path(self.data_dir))
        if self.state_file is None:
            object.__setattr__(self, "state_file", self.data_dir / STATE_FILE_NAME)
        else:
            object.__setattr__(self, "state_file", Path(self.state_file))
        if self.backup_dir is None:
            object.__setattr__(self, "backup_dir", self.data_dir / BACKUP_SUBDIR)
        else:
            object.__setattr__(self, "backup_dir", Path(self.backup_dir))

        for name in _INT_FIELDS | _FLOAT_FIELDS:
            value = getattr(self, name)
            if value < 0 or (name in ("history_limit", "lock_retries") and value < 1):
                raise InvalidConfigError(
                    f"{name} must be positive, got {value!r}",
                    context=ErrorContext(component="config", extra={"field": name}),
                )

    @property
    def tickets_file(self) -> Path:
        return self.data_dir / TICKETS_FILE_NAME

    @property
    def features_file(self) -> Path:
        return self.data_dir / FEATURES_FILE_NAME

    @property
    def detected_modules_file(self) -> Path:
        return self.data_dir / DETECTED_MODULES_FILE_NAME

    @property
    def manual_modules_file(self) -> Path:
        return self.data_dir / MANUAL_MODULES_FILE_NAME

    def with_overrides(self, **overrides: Any) -> "RoadmapConfig":
        """Return a copy with the given fields replaced (paths re-derived)."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        if "data_dir" in overrides:
            # Let derived paths follow the new data dir unless given
            if self.state_file == self.data_dir / STATE_FILE_NAME:
                values["state_file"] = None
            if self.backup_dir == self.data_dir / BACKUP_SUBDIR:
                values["backup_dir"] = None
        values.update(overrides)
        return replace(self, **values)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RoadmapConfig":
        """Build a config from a mapping of field names to raw values."""
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, raw in data.items():
            name = key.replace("-", "_")
            if name not in known:
                raise InvalidConfigError(
                    f"Unknown roadmap setting: {key}",
                    context=ErrorContext(component="config"),
                )
            if raw is None:
                continue
            values[name] = _coerce(name, raw)
        return cls(**values)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "RoadmapConfig":
        """Load settings from a YAML file (top-level mapping)."""
        path = Path(path)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise InvalidConfigError(
                f"Could not read roadmap config {path}: {e}",
                context=ErrorContext(component="config"),
                cause=e,
            ) from e
        if not isinstance(data, Mapping):
            raise InvalidConfigError(
                f"Roadmap config {path} must contain a mapping",
                context=ErrorContext(component="config"),
            )
        settings = data.get("roadmap", data)
        return cls.from_mapping(settings)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        env_file: str | Path | None = None,
        config_file: str | Path | None = None,
    ) -> "RoadmapConfig":
        """
        Resolve settings from YAML, ``.env`` and environment variables.

        Args:
            environ: Environment mapping (defaults to os.environ)
            env_file: Explicit .env path; ``.env`` in the cwd is used when present
            config_file: Explicit YAML path; falls back to $ROADMAP_CONFIG
        """
        if environ is None:
            dotenv_path = Path(env_file) if env_file else Path.cwd() / ".env"
            if dotenv_path.exists():
                load_dotenv(dotenv_path, override=False)
            environ = os.environ

        yaml_path = config_file or environ.get(CONFIG_PATH_VAR)
        base = cls.from_yaml(yaml_path) if yaml_path else cls()

        overrides: dict[str, Any] = {}
        for name, var in ENV_VARS.items():
            raw = environ.get(var)
            if raw is None or raw == "":
                continue
            overrides[name] = _coerce(name, raw)

        if not overrides:
            return base
        return base.with_overrides(**overrides)


def _coerce(name: str, raw: Any) -> Any:
    try:
        if name in _INT_FIELDS:
            return int(raw)
        if name in _FLOAT_FIELDS:
            return float(raw)
        if name in _BOOL_FIELDS:
            if isinstance(raw, bool):
                return raw
            text = str(raw).strip().lower()
            if text in _TRUTHY:
                return True
            if text in _FALSY:
                return False
            raise ValueError(f"not a boolean: {raw!r}")
        if name in _PATH_FIELDS:
            return Path(os.path.expanduser(str(raw)))
        return str(raw)
    except (TypeError, ValueError) as e:
        raise InvalidConfigError(
            f"Invalid value for {name}: {raw!r}",
            context=ErrorContext(component="config", extra={"field": name}),
            cause=e,
        ) from e
