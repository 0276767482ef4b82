"""
Fibcalc Engine - Structured Logging

One log line per event, JSON in deployed environments and a short colored
line on a developer console. Each line carries the bound fields of the
current task (service, request_id, index) plus any `extra=` keys listed
in LOGGED_EXTRAS.

DEBUG/INFO go to stdout, WARNING and above to stderr.

Usage:
    from fibcalc.core.logging import LogContext, get_logger

    logger = get_logger(__name__)

    with LogContext(index=12):
        logger.info("Computing")  # line includes index=12
"""

from __future__ import annotations

import json
import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Iterator, Mapping

_bound_fields: ContextVar[Mapping[str, Any]] = ContextVar(
    "fibcalc_log_fields", default=MappingProxyType({})
)


def get_current_context() -> dict[str, Any]:
    """Fields bound to the current task."""
    return dict(_bound_fields.get())


def set_context(**fields: Any) -> None:
    """Bind fields for the rest of the current task."""
    _bound_fields.set(MappingProxyType({**_bound_fields.get(), **fields}))


def clear_context() -> None:
    _bound_fields.set(MappingProxyType({}))


@contextmanager
def LogContext(**fields: Any) -> Iterator[None]:
    """
    Bind fields to every log line emitted inside the block.

    Usage:
        with LogContext(request_id="ab12cd34"):
            logger.info("Handling request")
    """
    token = _bound_fields.set(MappingProxyType({**_bound_fields.get(), **fields}))
    try:
        yield
    finally:
        _bound_fields.reset(token)


# =============================================================================
# Credential scrubbing
# =============================================================================

# A key containing any of these fragments never has its value logged
SENSITIVE_KEY_PARTS = ("password", "secret", "token", "dsn", "database_url", "redis_url")


def redact_sensitive(data: Any, depth: int = 10) -> Any:
    """Copy of `data` with credential-looking values replaced."""
    if depth <= 0:
        return "[TRUNCATED]"
    if isinstance(data, dict):
        return {
            key: "[REDACTED]"
            if any(part in str(key).lower() for part in SENSITIVE_KEY_PARTS)
            else redact_sensitive(value, depth - 1)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact_sensitive(item, depth - 1) for item in data]
    return data


# =============================================================================
# Formatters
# =============================================================================

# Keys passed through `extra=` that are copied into JSON lines
LOGGED_EXTRAS = (
    "request_id",
    "method",
    "path",
    "status_code",
    "duration_ms",
    "client_ip",
    "index",
    "value",
    "channel",
    "error_code",
    "attempt",
    "origin",
)


class StructuredJsonFormatter(logging.Formatter):
    """
    One JSON object per record:

        {"ts": "...", "level": "INFO", "logger": "fibcalc.workers.compute",
         "message": "Computed fib(12) = 233", "service": "fibcalc-worker",
         "index": 12, "value": 233, "duration_ms": 0.02}
    """

    def __init__(self, include_traceback: bool = True):
        super().__init__()
        self.include_traceback = include_traceback

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_bound_fields.get())
        entry.update(
            (key, getattr(record, key))
            for key in LOGGED_EXTRAS
            if getattr(record, key, None) is not None
        )

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, _ = record.exc_info
            entry["exception"] = {"type": exc_type.__name__, "message": str(exc)}
            if self.include_traceback:
                entry["exception"]["traceback"] = self.formatException(record.exc_info)

        return json.dumps(redact_sensitive(entry), default=str, ensure_ascii=False)


class ColoredConsoleFormatter(logging.Formatter):
    """`HH:MM:SS.mmm LEVEL logger [request_id=.., index=..] message` for local runs."""

    PALETTE = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        fields = _bound_fields.get()
        tags = ", ".join(f"{key}={fields[key]}" for key in ("request_id", "index") if key in fields)
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]

        line = (
            f"{clock} {self.PALETTE.get(record.levelno, '')}{record.levelname:<8}{self.RESET}"
            f" {record.name}{f' [{tags}]' if tags else ''} {record.getMessage()}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# =============================================================================
# Setup
# =============================================================================


class _UpToLevel(logging.Filter):
    def __init__(self, ceiling: int):
        super().__init__()
        self.ceiling = ceiling

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno <= self.ceiling


def _stream_handlers(formatter: logging.Formatter, level: int) -> list[logging.Handler]:
    out = logging.StreamHandler(sys.stdout)
    out.setLevel(level)
    out.addFilter(_UpToLevel(logging.INFO))

    err = logging.StreamHandler(sys.stderr)
    err.setLevel(max(level, logging.WARNING))

    for handler in (out, err):
        handler.setFormatter(formatter)
    return [out, err]


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    service_name: str = "fibcalc",
) -> None:
    """
    Replace the root handlers for a fibcalc process.

    Args:
        level: DEBUG, INFO, WARNING or ERROR
        json_output: JSON lines when True, colored console otherwise
        service_name: Bound as `service` on every line
    """
    numeric_level = logging.getLevelName(level.upper())
    root = logging.getLogger()
    root.setLevel(numeric_level)
    root.handlers.clear()

    formatter = StructuredJsonFormatter() if json_output else ColoredConsoleFormatter()
    for handler in _stream_handlers(formatter, numeric_level):
        root.addHandler(handler)

    set_context(service=service_name)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class Timer:
    """
    Wall-clock timer for a block.

        with Timer() as t:
            value = fib(index)
        logger.info("done", extra={"duration_ms": t.elapsed_ms})
    """

    def __init__(self) -> None:
        self._started: float | None = None
        self._stopped: float | None = None

    def __enter__(self) -> "Timer":
        self._started = time.perf_counter()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._stopped = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        if self._started is None:
            return 0.0
        return ((self._stopped or time.perf_counter()) - self._started) * 1000
