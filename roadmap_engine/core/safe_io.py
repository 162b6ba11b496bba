"""
File helpers for the roadmap data directory.

Everything the engine persists (the state file, its backups, the domain
files it reads) goes through these helpers so that encoding is always
UTF-8 and a reader never sees a half-written state file. Coroutines call
them through ``run_io`` so the event loop stays free while the disk works:

    await run_io(safe_write_json, state_path, state.to_dict())
    tickets = await run_io(safe_read_json, tickets_path, default=[])
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import json
import os
import sys
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

T = TypeVar("T")

ENCODING = "utf-8"


async def run_io(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Await a blocking call on the default executor."""
    call = functools.partial(func, *args, **kwargs)
    return await asyncio.get_running_loop().run_in_executor(None, call)


def _atomic_replace(src: str | Path, dst: str | Path) -> None:
    try:
        os.replace(src, dst)
    except OSError:
        # Windows refuses to replace a file another process holds open.
        # Unlink then rename is not atomic but is the only way through.
        if sys.platform != "win32":
            raise
        with contextlib.suppress(FileNotFoundError):
            os.unlink(dst)
        os.rename(src, dst)


def safe_write_text(path: Path | str, content: str, encoding: str = ENCODING) -> None:
    """
    Replace ``path`` with ``content``.

    The text lands in a hidden sibling first and is fsynced before being
    renamed over the target, so the target holds either the old or the new
    content. Missing parent directories are created. On failure the sibling
    is removed and the error propagates.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, scratch = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding=encoding) as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        _atomic_replace(scratch, target)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(scratch)
        raise


def safe_write_json(path: Path | str, data: Any, indent: int = 2, encoding: str = ENCODING) -> None:
    """Pretty-print ``data`` (non-ASCII kept as is) plus a final newline, atomically."""
    safe_write_text(path, json.dumps(data, indent=indent, ensure_ascii=False) + "\n", encoding)


def safe_read_text(path: Path | str, encoding: str = ENCODING, default: str | None = None) -> str:
    """Read ``path``; a missing file yields ``default`` unless that is None."""
    source = Path(path)
    if source.exists():
        return source.read_text(encoding=encoding)
    if default is None:
        raise FileNotFoundError(f"File not found: {source}")
    return default


def safe_read_json(path: Path | str, encoding: str = ENCODING, default: Any = None) -> Any:
    """
    Parse the JSON document at ``path``.

    With a non-None ``default``, a missing file or a document that does not
    parse yields the default. Without one, FileNotFoundError or
    json.JSONDecodeError propagates to the caller.
    """
    source = Path(path)
    if not source.exists():
        if default is None:
            raise FileNotFoundError(f"File not found: {source}")
        return default
    try:
        return json.loads(source.read_text(encoding=encoding))
    except json.JSONDecodeError:
        if default is None:
            raise
        return default
