"""
Academy Logging

Purpose
-------
One logging pipeline for every Academy component. Records are handed to a
bounded in-memory queue and written by a background listener, so services
running on the event loop never block on console or file I/O.

Sinks
-----
- Console: human-readable lines in development, JSON lines when
  ``LOG_JSON`` is set or in production.
- ``academy.json.log`` under ``Config.LOGS_DIR``: always JSON, rotated at
  UTC midnight.

Context
-------
``LogContext`` binds learner/request fields (``user_id``, ``actor_id``,
``operation``, ``correlation_id``, ...) to every record emitted inside the
block, across ``await`` points. Values passed through ``extra=`` on a single
call take precedence over the bound context.

Usage
-----
    from src.core.logging.logger import LogContext, get_logger

    log = get_logger(__name__)

    async with LogContext(user_id=user_id, operation="submit_command"):
        log.info("Lab submission received", extra={"lab_id": lab_id})

Dependencies
------------
- src.core.config.config.Config (level, format switches, log directory)
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import uuid
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from logging import Logger
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

from src.core.config.config import Config

LOG_FILE_NAME = "academy.json.log"
LOG_FILE_BACKUPS = 3
LOG_QUEUE_SIZE = 10_000

TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s%(context_suffix)s"
TEXT_DATE_FORMAT = "%H:%M:%S"

# Fields a LogContext may bind; anything else passed to it is kept as extra.
CONTEXT_FIELDS = (
    "correlation_id",
    "user_id",
    "actor_id",
    "operation",
    "event_name",
)

# Attributes every LogRecord has; never repeated under "extra".
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
) | {"message", "asctime", "taskName", "context_suffix"}

_context: ContextVar[Dict[str, Any]] = ContextVar("academy_log_context", default={})

_listener: Optional[QueueListener] = None
_queue: Optional["queue.Queue[logging.LogRecord]"] = None
_dropped_records = 0


# ============================================================================
# Settings
# ============================================================================


def _level() -> int:
    name = str(getattr(Config, "LOG_LEVEL", "INFO") or "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _json_console() -> bool:
    flag = getattr(Config, "LOG_JSON", None)
    if flag is None:
        return str(getattr(Config, "ENVIRONMENT", "")).lower() == "production"
    return bool(flag)


def _logs_dir() -> Path:
    return Path(Config.LOGS_DIR).resolve()


# ============================================================================
# Record enrichment
# ============================================================================


class ContextFilter(logging.Filter):
    """Stamp the bound LogContext onto each record; explicit extras win."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        for key, value in _context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


def _extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line; context fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "at": f"{record.module}:{record.lineno}",
        }

        extras = _extras(record)
        for key in CONTEXT_FIELDS:
            if extras.get(key) is not None:
                payload[key] = extras.pop(key)
        if extras:
            payload["extra"] = extras

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Console lines with bound context appended as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        pairs = [
            f"{key}={getattr(record, key)}"
            for key in CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        ]
        record.context_suffix = f" ({', '.join(pairs)})" if pairs else ""
        return super().format(record)


# ============================================================================
# Queue plumbing
# ============================================================================


class _DroppingQueueHandler(QueueHandler):
    """Never blocks: records are discarded when the queue is full."""

    def enqueue(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        global _dropped_records
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            _dropped_records += 1


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    if _json_console():
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter(TEXT_FORMAT, datefmt=TEXT_DATE_FORMAT))
    return handler


def _file_handler() -> logging.Handler:
    directory = _logs_dir()
    directory.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        filename=str(directory / LOG_FILE_NAME),
        when="midnight",
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
        utc=True,
    )
    handler.setFormatter(JSONFormatter())
    return handler


def setup_logging() -> None:
    """Install the queue handler on the root logger. Idempotent."""
    global _listener, _queue, _dropped_records

    if _listener is not None:
        return

    level = _level()
    sinks: List[logging.Handler] = [_console_handler(), _file_handler()]
    for sink in sinks:
        sink.setLevel(level)

    _queue = queue.Queue(LOG_QUEUE_SIZE)
    _dropped_records = 0
    _listener = QueueListener(_queue, *sinks, respect_handler_level=True)
    _listener.start()

    handler = _DroppingQueueHandler(_queue)
    handler.addFilter(ContextFilter())

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)

    for noisy in ("sqlalchemy.engine", "aiosqlite", "asyncio", "testcontainers"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={
            "log_level": logging.getLevelName(level),
            "json_console": _json_console(),
            "logs_dir": str(_logs_dir()),
        },
    )


def shutdown_logging() -> None:
    """Flush queued records and detach the pipeline."""
    global _listener, _queue

    if _listener is None:
        return

    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, _DroppingQueueHandler):
            root.removeHandler(handler)

    _listener.stop()
    for sink in _listener.handlers:
        sink.close()

    _listener = None
    _queue = None


def get_logging_health() -> Dict[str, Any]:
    return {
        "running": _listener is not None,
        "queued": _queue.qsize() if _queue is not None else 0,
        "dropped": _dropped_records,
    }


# ============================================================================
# Public API
# ============================================================================


def get_logger(name: str) -> Logger:
    return logging.getLogger(name)


def get_log_context() -> Dict[str, Any]:
    return dict(_context.get())


def set_log_context(**fields: Any) -> None:
    """Merge ``fields`` into the current context; ``None`` values are ignored."""
    merged = dict(_context.get())
    merged.update({key: value for key, value in fields.items() if value is not None})
    _context.set(merged)


def clear_log_context() -> None:
    _context.set({})


class LogContext:
    """
    Bind fields to every record logged inside a ``with``/``async with`` block.

    A ``correlation_id`` is generated when neither the caller nor an outer
    context supplies one, so nested blocks share their parent's id.
    """

    def __init__(self, **fields: Any) -> None:
        self._fields = {key: value for key, value in fields.items() if value is not None}
        self._token: Optional[Token[Dict[str, Any]]] = None

    def __enter__(self) -> "LogContext":
        merged = {**_context.get(), **self._fields}
        merged.setdefault("correlation_id", uuid.uuid4().hex[:12])
        self._token = _context.set(merged)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _context.reset(self._token)
            self._token = None

    async def __aenter__(self) -> "LogContext":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)

    @property
    def correlation_id(self) -> Optional[str]:
        return _context.get().get("correlation_id") if self._token is not None else None


setup_logging()
