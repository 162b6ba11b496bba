"""
Roadmap Logging
===============

Logging setup for the roadmap engine.

Two output shapes are supported: a coloured single-line console format for
the CLI and a JSON-lines format for log collectors. Both pick up the active
log context (milestone id, sync reason, actor) and the correlation id of the
current CLI invocation or sync run, which live in context variables and so
follow a coroutine across awaits.
"""

import asyncio
import contextlib
import contextvars
import functools
import json
import logging
import sys
import time
import traceback
import uuid
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from typing import Any

_correlation: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "roadmap_correlation", default=None
)
_fields: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "roadmap_log_fields", default={}
)

# LogRecord attributes copied into JSON output when a caller passes them via extra=
RECORD_EXTRAS = ("duration_ms", "error_code", "component", "milestone_id")

_LEVEL_COLOURS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_PLAIN = "\033[0m"


def _exception_block(exc_info) -> dict[str, Any]:
    exc_type, exc_value, _ = exc_info
    return {
        "type": exc_type.__name__ if exc_type else None,
        "message": str(exc_value) if exc_value is not None else None,
        "traceback": "".join(traceback.format_exception(*exc_info)),
    }


class StructuredFormatter(logging.Formatter):
    """Render each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.filename}:{record.lineno}",
        }
        if correlation := _correlation.get():
            entry["correlation_id"] = correlation
        if fields := _fields.get():
            entry["context"] = dict(fields)
        entry.update(
            {name: getattr(record, name) for name in RECORD_EXTRAS if hasattr(record, name)}
        )
        if record.exc_info:
            entry["exception"] = _exception_block(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Coloured one-line output for terminals."""

    def _tags(self) -> str:
        tags = []
        if correlation := _correlation.get():
            tags.append(f"[{correlation[:8]}]")
        if milestone_id := _fields.get().get("milestone_id"):
            tags.append(f"[{milestone_id}]")
        return "".join(f" {tag}" for tag in tags)

    def format(self, record: logging.LogRecord) -> str:
        colour = _LEVEL_COLOURS.get(record.levelno, _PLAIN)
        text = record.getMessage()
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            text = f"{text} ({duration:.1f}ms)"

        line = f"{colour}{record.levelname:8}{_PLAIN}{self._tags()} {record.name}: {text}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(
    level: int | str = logging.INFO,
    structured: bool = False,
    log_file: str | None = None,
) -> None:
    """
    Replace the root logger's handlers with the roadmap engine's.

    Console output goes to stderr so the CLI can print JSON results on
    stdout. When ``log_file`` is given it always receives JSON lines.
    """
    root = logging.getLogger()
    root.setLevel(_resolve_level(level))
    for existing in list(root.handlers):
        root.removeHandler(existing)

    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(StructuredFormatter() if structured else ConsoleFormatter())
    root.addHandler(stream)

    if log_file:
        to_file = logging.FileHandler(log_file)
        to_file.setFormatter(StructuredFormatter())
        root.addHandler(to_file)


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Tag subsequent records in this context; a uuid4 is minted when none is given."""
    value = correlation_id or str(uuid.uuid4())
    _correlation.set(value)
    return value


def get_correlation_id() -> str | None:
    return _correlation.get()


def get_log_context() -> dict[str, Any]:
    return dict(_fields.get())


def clear_log_context() -> None:
    _fields.set({})
    _correlation.set(None)


@contextlib.contextmanager
def log_context(**fields: Any) -> Iterator[dict[str, Any]]:
    """
    Attach fields to every record logged inside the block.

    Fields set to None are ignored. Nested blocks layer on top of the outer
    ones and the outer fields come back on exit.

        with log_context(milestone_id="ms-1", reason="roadmap:manual-edit"):
            logger.info("Updating milestone")
    """
    merged = {**_fields.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _fields.set(merged)
    try:
        yield merged
    finally:
        _fields.reset(token)


class Timer:
    """Wall-clock stopwatch used around state reads and writes."""

    def __init__(self, name: str = "operation"):
        self.name = name
        self.started = 0.0
        self.duration_ms = 0.0

    def __enter__(self) -> "Timer":
        self.started = time.perf_counter()
        return self

    def __exit__(self, *exc_info) -> None:
        self.duration_ms = (time.perf_counter() - self.started) * 1000


def timed(logger: logging.Logger | None = None, level: int = logging.DEBUG):
    """Log "<name> completed" with duration_ms after each call of the wrapped function."""

    def decorator(func: Callable) -> Callable:
        target = logger or logging.getLogger(func.__module__)

        def report(timer: Timer) -> None:
            extra = {"duration_ms": timer.duration_ms}
            target.log(level, f"{func.__name__} completed", extra=extra)

        if asyncio.iscoroutinefunction(func):

            @functools.wraps(func)
            async def run_async(*args: Any, **kwargs: Any) -> Any:
                with Timer(func.__name__) as timer:
                    result = await func(*args, **kwargs)
                report(timer)
                return result

            return run_async

        @functools.wraps(func)
        def run(*args: Any, **kwargs: Any) -> Any:
            with Timer(func.__name__) as timer:
                result = func(*args, **kwargs)
            report(timer)
            return result

        return run

    return decorator


def log_exception(
    logger: logging.Logger,
    message: str,
    exc: BaseException,
    level: int = logging.ERROR,
    **extra: Any,
) -> None:
    """Log ``exc`` with its traceback; error_code is the exception class name."""
    logger.log(
        level,
        message,
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={"error_code": type(exc).__name__, **extra},
    )
