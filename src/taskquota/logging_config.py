"""Logging configuration for taskquota.

Two formats are available:
- **dev** (default): human-readable lines with time, level and logger name.
- **json**: one JSON object per line for log aggregation.

Call :func:`setup_logging` once at the entry point; modules use
``logging.getLogger(__name__)``.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path


class JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line.

    Fields: timestamp, level, logger, message, plus any *extra* keys
    attached to the record.
    """

    _BUILTIN_ATTRS = frozenset({
        "args", "created", "exc_info", "exc_text", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs", "message", "msg",
        "name", "pathname", "process", "processName", "relativeCreated",
        "stack_info", "thread", "threadName", "taskName",
    })

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in self._BUILTIN_ATTRS and not key.startswith("_"):
                log_entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


DEV_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DEV_DATEFMT = "%H:%M:%S"

DEFAULT_LOG_FILE = Path.home() / ".taskquota" / "taskquota.log"

# Chatty dependency loggers capped at WARNING.
_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "aiosqlite")


def _resolve_level(level: int | str | None, warn: bool = True) -> int:
    if level is None:
        level = os.environ.get("LOG_LEVEL", "INFO")
    if isinstance(level, int):
        return level
    resolved = getattr(logging, level.upper(), None)
    if not isinstance(resolved, int):
        if warn:
            print(
                f"WARNING: Invalid LOG_LEVEL '{level}', falling back to INFO",
                file=sys.stderr,
            )
        return logging.INFO
    return resolved


def _install(handler: logging.Handler, level: int) -> None:
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging(
    fmt: str | None = None,
    level: int | str | None = None,
) -> None:
    """Configure the root logger.

    Parameters
    ----------
    fmt:
        ``"json"`` or ``"dev"`` (default).  Falls back to ``LOG_FORMAT``.
    level:
        Level name or number.  Falls back to ``LOG_LEVEL``, then ``INFO``.
    """
    fmt = fmt or os.environ.get("LOG_FORMAT", "dev")
    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(DEV_FORMAT, datefmt=DEV_DATEFMT))
    _install(handler, _resolve_level(level))


def setup_file_logging(
    log_file: Path | None = None,
    level: int | str | None = None,
) -> None:
    """Send all logging to a rotating file (used by ``taskquota serve --log-file``)."""
    log_file = log_file or DEFAULT_LOG_FILE
    log_file.parent.mkdir(parents=True, exist_ok=True)
    resolved = _resolve_level(level, warn=False)

    handler = RotatingFileHandler(
        log_file, maxBytes=10 * 1024 * 1024, backupCount=3, encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(DEV_FORMAT, datefmt=DEV_DATEFMT))
    handler.setLevel(resolved)
    _install(handler, resolved)
