"""Process-wide logging setup and log-safe value rendering."""

from __future__ import annotations

import logging
import re
import sys
import threading
from pathlib import Path

from llm_action_gateway.config import load_settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Newlines and other control characters would let model or user text forge log lines.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")
_MAX_VALUE_LENGTH = 512

_logging_configured = False
_logging_lock = threading.Lock()

_logger = logging.getLogger(__name__)


def _formatter() -> logging.Formatter:
    return logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)


def _file_handler(log_file: str) -> logging.Handler | None:
    try:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file, encoding="utf-8")
    except OSError as exc:
        _logger.warning("Cannot write log file %s, logging to stderr only: %s", log_file, exc)
        return None
    handler.setFormatter(_formatter())
    return handler


def configure_logging() -> None:
    """Route gateway logs to stderr, plus the configured log file if any.

    Level and file come from :func:`load_settings` (``LOG_LEVEL``,
    ``LOG_FILE``). An unknown level name falls back to INFO.
    """
    global _logging_configured

    settings = load_settings().logging
    level = logging.getLevelName(settings.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    stderr = logging.StreamHandler(sys.stderr)
    stderr.setFormatter(_formatter())
    handlers: list[logging.Handler] = [stderr]
    if settings.file:
        file_handler = _file_handler(settings.file)
        if file_handler is not None:
            handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    _logging_configured = True


def get_logger(name: str) -> logging.Logger:
    """Module logger, configuring the process on first use."""
    if not _logging_configured:
        with _logging_lock:
            if not _logging_configured:
                configure_logging()
    return logging.getLogger(name)


def sanitize_log_value(value: object) -> str:
    """Single-line, length-capped rendering of ``value`` for log messages."""
    if value is None:
        return "-"
    text = _CONTROL_CHARS.sub("_", str(value))
    if len(text) <= _MAX_VALUE_LENGTH:
        return text
    return text[:_MAX_VALUE_LENGTH] + "..."
