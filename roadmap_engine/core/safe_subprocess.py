"""
Guarded subprocess calls.

Git automation shells out through ``safe_run``: output is captured as text,
every call has a timeout, and a short deny-list stops destructive or
privilege-escalating command lines before they reach the OS.

    result = safe_run(["git", "status", "--porcelain"], cwd=repo_dir, timeout=30)
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path
from typing import Sequence

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60

# Each entry is an executable followed by arguments that must all be present
BLOCKED_COMMANDS = (
    ("rm", "-rf", "/"),
    ("mkfs",),
    ("dd", "if=/dev/zero"),
    ("chmod", "-R", "777", "/"),
)
PRIVILEGE_PREFIXES = ("sudo", "su", "doas")


class SubprocessError(Exception):
    pass


class CommandBlockedError(SubprocessError):
    pass


class CommandTimeoutError(SubprocessError):
    pass


def _as_text(command: str | Sequence[str]) -> str:
    if isinstance(command, str):
        return command.strip()
    return " ".join(map(str, command)).strip()


def _as_argv(command: str | Sequence[str]) -> list[str]:
    if not isinstance(command, str):
        return [str(arg) for arg in command]
    try:
        return shlex.split(command)
    except ValueError:
        return command.split()


def _executable(argv: list[str]) -> str:
    return Path(argv[0]).name.lower()


def _blocked_by(argv: list[str], blocked: tuple[str, ...]) -> bool:
    name, *required = blocked
    executable = _executable(argv)
    if executable != name and not executable.startswith(f"{name}."):
        return False
    return all(arg in argv[1:] for arg in required)


def is_command_safe(command: str | Sequence[str]) -> tuple[bool, str]:
    """
    Return ``(True, "")`` or ``(False, reason)`` for a command line.

    Only the executable and its own flags are matched, so free-text
    arguments such as a commit message never trip the deny-list.
    """
    argv = _as_argv(command)
    if not argv:
        return True, ""
    hit = next((b for b in BLOCKED_COMMANDS if _blocked_by(argv, b)), None)
    if hit:
        return False, f"Command contains blocked pattern: {' '.join(hit)}"
    executable = _executable(argv)
    if executable in PRIVILEGE_PREFIXES:
        return False, f"Command starts with dangerous prefix: {executable}"
    return True, ""


def safe_run(
    command: Sequence[str],
    cwd: Path | str | None = None,
    timeout: int = DEFAULT_TIMEOUT,
    check: bool = False,
    env: dict | None = None,
) -> subprocess.CompletedProcess:
    """
    Run ``command`` without a shell and capture stdout and stderr as text.

    Raises CommandBlockedError for a denied command line and
    CommandTimeoutError when ``timeout`` seconds pass. With ``check`` a
    non-zero exit raises subprocess.CalledProcessError.
    """
    allowed, reason = is_command_safe(command)
    if not allowed:
        raise CommandBlockedError(reason)

    argv = list(command)
    try:
        completed = subprocess.run(
            argv, cwd=cwd, env=env, timeout=timeout, capture_output=True, text=True
        )
    except subprocess.TimeoutExpired as e:
        logger.warning(f"{argv[0]} killed after {timeout}s: {_as_text(argv)}")
        raise CommandTimeoutError(f"Command timed out after {timeout}s") from e

    if check:
        completed.check_returncode()
    return completed
