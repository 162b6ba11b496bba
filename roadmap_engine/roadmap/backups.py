"""
Roadmap state backups.

Before each backed-up write the previous state file is copied to
``roadmap-state-<timestamp>.json`` in the backup directory. After the write
only the newest ``max_backups`` files are kept, and kept plaintext backups
older than ``gzip_after_seconds`` are compressed to ``.json.gz``.

Methods here are blocking; the state store runs them through ``run_io``.
"""

from __future__ import annotations

import gzip
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..core.exceptions import BackupNotFoundError, ErrorContext

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "roadmap-state-"
BACKUP_SUFFIX = ".json"
GZIP_SUFFIX = ".gz"


def backup_timestamp(now: datetime | None = None) -> str:
    """ISO timestamp with ``:`` and ``.`` replaced so it is filename safe."""
    now = now or datetime.now(timezone.utc)
    iso = now.isoformat(timespec="microseconds").replace("+00:00", "Z")
    return iso.replace(":", "-").replace(".", "-")


@dataclass
class BackupInfo:
    """A backup file in the backup directory."""

    filename: str
    path: Path
    size: int
    mtime: float

    @property
    def compressed(self) -> bool:
        return self.filename.endswith(GZIP_SUFFIX)

    def to_dict(self) -> dict[str, Any]:
        modified = datetime.fromtimestamp(self.mtime, tz=timezone.utc)
        return {
            "filename": self.filename,
            "size": self.size,
            "modifiedAt": modified.isoformat(timespec="milliseconds").replace(
                "+00:00", "Z"
            ),
        }


class BackupManager:
    """
    Creates, prunes, compresses and serves state backups.

    Args:
        backup_dir: Directory holding the backups
        max_backups: Number of backups retained after each write
        gzip_after_seconds: Age after which plaintext backups are compressed
    """

    def __init__(
        self,
        backup_dir: str | Path,
        max_backups: int = 5,
        gzip_after_seconds: float = 24 * 60 * 60,
    ):
        self.backup_dir = Path(backup_dir)
        self.max_backups = max_backups
        self.gzip_after_seconds = gzip_after_seconds

    def ensure_directory(self) -> None:
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    def create_backup(self, contents: str) -> Path:
        """Write ``contents`` to a new timestamped backup file."""
        self.ensure_directory()
        stem = f"{BACKUP_PREFIX}{backup_timestamp()}"
        path = self.backup_dir / f"{stem}{BACKUP_SUFFIX}"
        counter = 1
        while path.exists() or path.with_name(path.name + GZIP_SUFFIX).exists():
            path = self.backup_dir / f"{stem}-{counter}{BACKUP_SUFFIX}"
            counter += 1

        with open(path, "x", encoding="utf-8") as f:
            f.write(contents)
        logger.debug(f"Created roadmap backup {path.name}")
        return path

    def _entries(self) -> list[BackupInfo]:
        try:
            names = os.listdir(self.backup_dir)
        except FileNotFoundError:
            return []

        entries = []
        for name in names:
            path = self.backup_dir / name
            try:
                stat = path.stat()
            except FileNotFoundError:
                continue
            if not path.is_file():
                continue
            entries.append(
                BackupInfo(filename=name, path=path, size=stat.st_size, mtime=stat.st_mtime)
            )
        # Newest first; filename breaks ties between writes in the same tick
        entries.sort(key=lambda entry: (entry.mtime, entry.filename), reverse=True)
        return entries

    def _compress(self, entry: BackupInfo) -> Path:
        target = entry.path.with_name(entry.filename + GZIP_SUFFIX)
        with open(entry.path, "rb") as src:
            data = src.read()
        try:
            with gzip.open(target, "wb") as dst:
                dst.write(data)
        except OSError:
            target.unlink(missing_ok=True)
            raise
        # Keep the original age so retention order is unchanged
        os.utime(target, (entry.mtime, entry.mtime))
        entry.path.unlink()
        return target

    def cleanup_backups(self) -> None:
        """
        Prune backups beyond ``max_backups`` and compress old plaintext ones.

        Compression failures are logged and leave the plaintext in place.
        """
        entries = self._entries()
        kept, pruned = entries[: self.max_backups], entries[self.max_backups :]

        for entry in pruned:
            try:
                entry.path.unlink()
                logger.debug(f"Pruned roadmap backup {entry.filename}")
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Failed to prune backup {entry.filename}: {e}")

        now = time.time()
        for entry in kept:
            if entry.compressed or now - entry.mtime <= self.gzip_after_seconds:
                continue
            try:
                target = self._compress(entry)
                logger.debug(f"Compressed roadmap backup {entry.filename} -> {target.name}")
            except OSError as e:
                logger.warning(f"Failed to gzip backup {entry.filename}: {e}")

    def list_backups(self) -> list[BackupInfo]:
        """Backups newest first."""
        self.ensure_directory()
        return self._entries()

    def read_backup(self, filename: str) -> str:
        """
        Return the text of a listed backup, decompressing ``.gz`` files.

        Raises:
            BackupNotFoundError: If ``filename`` is not in the backup directory
        """
        entry = next(
            (item for item in self.list_backups() if item.filename == filename),
            None,
        )
        if entry is None:
            raise BackupNotFoundError(
                filename,
                context=ErrorContext(operation="read_backup", component="backups"),
            )

        if entry.compressed:
            with gzip.open(entry.path, "rb") as f:
                return f.read().decode("utf-8")
        return entry.path.read_text(encoding="utf-8")
