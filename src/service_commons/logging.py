"""
Structured JSON logging shared by marketplace services.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import UTC, datetime
from logging.handlers import TimedRotatingFileHandler
from typing import Any

VALID_LOG_LEVELS: frozenset[str] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# Attributes every LogRecord carries; anything else came in through `extra=`.
_RECORD_ATTRS: frozenset[str] = frozenset(
    {
        "args",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)


class JSONFormatter(logging.Formatter):
    """Render each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a record, nesting caller-supplied context under "extra"."""
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(
                timespec="seconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}
        if context:
            entry["extra"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class DailyRotatingFileHandler(TimedRotatingFileHandler):
    """Midnight-rotating handler writing to <directory>/YYYY-MM-DD.log."""

    def __init__(self, directory: str) -> None:
        self._directory = directory
        super().__init__(self._todays_file(), when="midnight", utc=True)

    def _todays_file(self) -> str:
        return os.path.join(self._directory, datetime.now(tz=UTC).strftime("%Y-%m-%d") + ".log")

    def doRollover(self) -> None:  # noqa: N802
        if self.stream:
            self.stream.close()
            self.stream = None  # type: ignore[assignment]
        self.baseFilename = os.path.abspath(self._todays_file())
        if not self.delay:
            self.stream = self._open()
        self.rolloverAt = self.computeRollover(int(time.time()))


def setup_logging(level: str, service_name: str, log_directory: str | None) -> logging.Logger:
    """
    Configure JSON logging for a service namespace.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL (case-insensitive)
        service_name: Root logger name for the service
        log_directory: Directory for daily log files, or None for stdout only

    Returns:
        The configured service root logger

    Raises:
        ValueError: If level is not a recognised log level
    """
    normalized = level.upper()
    if normalized not in VALID_LOG_LEVELS:
        raise ValueError(f"Invalid log level: {level}. Must be one of {sorted(VALID_LOG_LEVELS)}")
    numeric_level = getattr(logging, normalized)

    logger = logging.getLogger(service_name)
    logger.setLevel(numeric_level)
    logger.handlers.clear()
    logger.propagate = False

    formatter = JSONFormatter()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_directory:
        os.makedirs(log_directory, exist_ok=True)
        handlers.append(DailyRotatingFileHandler(directory=log_directory))

    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def get_named_logger(service_name: str, logger_name: str) -> logging.Logger:
    """Return a logger nested under the service namespace."""
    return logging.getLogger(f"{service_name}.{logger_name}")
