"""Logging utilities for the Claude Agents SDK."""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

ROOT_LOGGER_NAME = "claude_agents_sdk"
LOG_LEVEL_ENV = "CLAUDE_AGENTS_SDK_LOG_LEVEL"

_LOG_RECORD_FIELDS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "message",
    "asctime",
    "stacklevel",
    "taskName",
}


class StructuredFormatter(logging.Formatter):
    """Formatter with ISO timestamps that appends ``extra=`` fields as JSON."""

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return timestamp.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _LOG_RECORD_FIELDS and not key.startswith("_")
        }
        if extras:
            try:
                serialized = json.dumps(extras, sort_keys=True, ensure_ascii=True, default=str)
            except (TypeError, ValueError):
                serialized = str(extras)
            return f"{message} | {serialized}"
        return message


_configured = False
_file_handler: Optional[logging.Handler] = None


def _level_from_env(default: int = logging.WARNING) -> int:
    level_name = os.getenv(LOG_LEVEL_ENV, "").upper()
    if not level_name:
        return default
    level = getattr(logging, level_name, None)
    return level if isinstance(level, int) else default


def configure_logging(
    level: Optional[int | str] = None,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """Attach handlers to the SDK's root logger.

    The console handler writes to stderr so it never mixes with protocol
    output. Calling again replaces the level and, when given, the log file.
    """
    global _configured, _file_handler

    root = logging.getLogger(ROOT_LOGGER_NAME)
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.WARNING)
    console_level = level if isinstance(level, int) else _level_from_env()
    root.setLevel(logging.DEBUG)
    root.propagate = False

    if not _configured:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(StructuredFormatter("%(levelname)s: %(message)s"))
        root.addHandler(console_handler)
        _configured = True
    for handler in root.handlers:
        if handler is not _file_handler:
            handler.setLevel(console_level)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        if _file_handler is not None:
            root.removeHandler(_file_handler)
            _file_handler.close()
        # UTF-8 so non-ASCII tool output does not break on Windows code pages.
        _file_handler = logging.FileHandler(log_file, encoding="utf-8")
        _file_handler.setLevel(logging.DEBUG)
        _file_handler.setFormatter(StructuredFormatter("%(asctime)s [%(levelname)s] %(message)s"))
        root.addHandler(_file_handler)

    return root


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger in the SDK namespace.

    Without ``configure_logging`` the SDK stays quiet unless
    ``CLAUDE_AGENTS_SDK_LOG_LEVEL`` is set, in which case a console
    handler is attached on first use.
    """
    global _configured
    if not _configured and os.getenv(LOG_LEVEL_ENV):
        configure_logging()
    if not name or name == ROOT_LOGGER_NAME:
        return logging.getLogger(ROOT_LOGGER_NAME)
    if not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


__all__ = [
    "ROOT_LOGGER_NAME",
    "LOG_LEVEL_ENV",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
]
