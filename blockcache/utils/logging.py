"""
Logging setup for the block cache.

Log calls attach their context through ``extra=`` and both formatters keep
it. The common fields:

- ``slot``, ``endpoint``: a resolution call and its request-log entry.
- ``program_id``, ``count``: program-filtered counting.
- ``start_slot``, ``end_slot``, ``sampled``: a sampled range analysis.
- ``window``, ``event_start``, ``event_end``: the comparison windows.
- ``processed``, ``total``: batch progress while resolving many slots.
- ``error``, ``status``: a per-item failure that was skipped.

The console format appends them as ``key=value`` after the message; the JSON
format (``LOG_JSON=true``) writes them as top-level keys.

Usage:
    from blockcache.utils.logging import configure_logging, get_logger

    configure_logging(level="INFO", json_logs=False)
    log = get_logger(__name__)
    log.info("Block resolved", extra={"slot": 374563500, "cache_hit": True})
"""

from __future__ import annotations

import json
import logging
import logging.config
from typing import Any, Dict, Optional

CONSOLE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Attributes every LogRecord carries; anything else came in through `extra=`.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
    | {"message", "asctime", "taskName"}
)


def _context_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Fields passed through `extra=`, flattening a nested ``extra`` dict."""
    fields = {
        key: value
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRS and key != "extra"
    }
    nested = getattr(record, "extra", None)
    if isinstance(nested, dict):
        fields.update(nested)
    return fields


def _json_formatter(record: logging.LogRecord) -> str:
    payload: Dict[str, Any] = {
        "level": record.levelname,
        "logger": record.name,
        "message": record.getMessage(),
        **_context_fields(record),
    }
    if record.exc_info:
        payload["exc_info"] = logging.Formatter().formatException(record.exc_info)
    if record.stack_info:
        payload["stack_info"] = record.stack_info
    return json.dumps(payload, default=str)


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        return _json_formatter(record)


class ConsoleFormatter(logging.Formatter):
    """Pipe-separated line with the record's context fields appended."""

    def __init__(self) -> None:
        super().__init__(fmt=CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        fields = _context_fields(record)
        if not fields:
            return line
        return line + " | " + " ".join(f"{key}={value}" for key, value in fields.items())


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
) -> None:
    """
    Configure root logging for the CLI and scripts.

    Parameters
    ----------
    level : str
        Logging level name, usually ``Settings.log_level``.
    json_logs : bool
        Emit JSON lines instead of console lines (``Settings.log_json``).
    """
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {"()": ConsoleFormatter},
                "json": {"()": JsonFormatter},
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "json" if json_logs else "console",
                    "level": level,
                    "stream": "ext://sys.stderr",
                }
            },
            "root": {
                "handlers": ["default"],
                "level": level,
            },
            # httpx logs every request at INFO
            "loggers": {"httpx": {"level": "WARNING"}},
        }
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Module logger; the root logger when `name` is None."""
    return logging.getLogger(name)


__all__ = ["ConsoleFormatter", "JsonFormatter", "configure_logging", "get_logger"]
