"""Structured JSON logging for sidero.

Writes JSONL either to a rotating log file (5MB, 3 backups) or to stderr.
Stdout carries the protocol stream and is never used for logs.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

_LOGGER_NAME = "sidero"
_setup_lock = threading.Lock()
_MAX_BYTES = 5 * 1024 * 1024  # 5MB
_BACKUP_COUNT = 3
# Strings longer than this are logged as their length only (code, rule bodies).
_MAX_LOGGED_STRING = 200


class _JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for attr, key in (
            ("tool", "tool"),
            ("args_data", "args"),
            ("request_id", "request_id"),
            ("job_id", "job_id"),
            ("duration_ms", "duration_ms"),
            ("error", "error"),
        ):
            if hasattr(record, attr):
                entry[key] = getattr(record, attr)
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = str(record.exc_info[1])
        return json.dumps(entry, default=str)


def summarize_args(arguments: Any) -> Any:
    """Return a log-safe copy of tool arguments.

    Long strings (inline code, rule text) are replaced by a length marker so
    their contents never reach the log.
    """
    if isinstance(arguments, dict):
        return {k: summarize_args(v) for k, v in arguments.items()}
    if isinstance(arguments, list):
        return [summarize_args(v) for v in arguments]
    if isinstance(arguments, str) and len(arguments) > _MAX_LOGGED_STRING:
        return f"<{len(arguments)} chars>"
    return arguments


def setup_logging(log_file: Path | None = None, *, level: int = logging.INFO) -> logging.Logger:
    """Attach a JSON handler to the ``sidero`` logger.

    With *log_file* the records go to a rotating file, otherwise to stderr.
    Repeated calls with the same target are idempotent.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    target = os.path.abspath(str(log_file)) if log_file is not None else None

    with _setup_lock:
        for h in logger.handlers[:]:
            if target is not None and isinstance(h, RotatingFileHandler) and h.baseFilename == target:
                return logger
            if target is None and getattr(h, "_sidero_stderr", False):
                return logger
            if isinstance(h, RotatingFileHandler) or getattr(h, "_sidero_stderr", False):
                # Different target: drop the stale handler.
                logger.removeHandler(h)
                h.close()

        handler: logging.Handler
        if target is not None:
            Path(target).parent.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(target, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT)
        else:
            handler = logging.StreamHandler(sys.stderr)
            handler._sidero_stderr = True  # type: ignore[attr-defined]
        handler.setFormatter(_JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(level)
    return logger
