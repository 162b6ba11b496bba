"""
File Locking Utilities
======================

Cross-process exclusive lock for the roadmap state file.

Approach:
- The lock is a sibling ``<path>.lock`` file created with ``O_CREAT | O_EXCL``.
- Its content is a random 32-hex-char token identifying the holder.
- Contention (``FileExistsError``) is retried with exponential backoff
  (see ``LOCK_RETRY_CONFIG``); exhausting the retries raises ``StateLockError``.
- Release unlinks the file only while it still contains our token. This is
  best effort, not a fencing scheme: a stale lock left by a crashed holder
  stays until removed by hand.
"""

from __future__ import annotations

import logging
import os
import secrets
from pathlib import Path

from .exceptions import ErrorContext, StateLockError
from .retry import LOCK_RETRY_CONFIG, RetryConfig, async_retry_with_result
from .safe_io import run_io

logger = logging.getLogger(__name__)

LOCK_FAILURE_MESSAGE = "Failed to acquire roadmap state lock"


class FileLock:
    """
    Exclusive-create lockfile with token ownership.

    Usable as an async context manager:

        async with FileLock(state_path):
            ...

    Args:
        filepath: Path of the file being protected (lock file: sibling `*.lock`)
        retry_config: Backoff policy for contended acquisition
    """

    def __init__(
        self,
        filepath: str | Path,
        retry_config: RetryConfig | None = None,
    ):
        self.filepath = Path(filepath)
        self.retry_config = retry_config or LOCK_RETRY_CONFIG
        self.token: str | None = None

    @property
    def lock_path(self) -> Path:
        """Get lock file path (separate .lock file)."""
        return self.filepath.parent / f"{self.filepath.name}.lock"

    @property
    def held(self) -> bool:
        return self.token is not None

    def _create_lock_file(self, token: str) -> None:
        """Create the lock file exclusively; raises FileExistsError when held."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        try:
            os.write(fd, token.encode("utf-8"))
        finally:
            os.close(fd)

    def _remove_if_owner(self, token: str) -> bool:
        try:
            current = self.lock_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return False
        if current != token:
            return False
        self.lock_path.unlink(missing_ok=True)
        return True

    async def _try_create(self, token: str) -> None:
        await run_io(self._create_lock_file, token)

    async def acquire(self) -> str:
        """
        Acquire the lock, retrying with backoff while another holder has it.

        Returns:
            The token written to the lock file

        Raises:
            StateLockError: If every attempt found the lock held
        """
        token = secrets.token_hex(16)
        result = await async_retry_with_result(
            self._try_create, token, config=self.retry_config
        )
        if result.failed:
            raise StateLockError(
                LOCK_FAILURE_MESSAGE,
                context=ErrorContext(
                    component="file_lock",
                    extra={
                        "lock_path": str(self.lock_path),
                        "attempts": result.attempts,
                    },
                ),
                cause=result.last_exception,
            )
        self.token = token
        logger.debug(
            f"Acquired lock {self.lock_path.name} after {result.attempts} attempt(s)"
        )
        return token

    async def release(self) -> None:
        """Release the lock if this instance still owns it."""
        if self.token is None:
            return
        token, self.token = self.token, None
        try:
            removed = await run_io(self._remove_if_owner, token)
        except OSError as e:
            logger.warning(f"Failed to release lock {self.lock_path}: {e}")
            return
        if not removed:
            logger.debug(f"Lock {self.lock_path.name} already released or taken over")

    async def __aenter__(self) -> "FileLock":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.release()
        return False


__all__ = [
    "FileLock",
    "LOCK_FAILURE_MESSAGE",
]
