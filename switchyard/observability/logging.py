"""Structured logging for Switchyard.

Modules log through ``logging.getLogger(__name__)``. configure_logging()
installs a handler on the ``switchyard`` logger with either a JSON or a
human-readable formatter, and log_context() binds fields that both
formatters attach to every record emitted inside the block.

Example:
    Basic usage::

        import logging
        from switchyard.observability.logging import configure_logging, log_context

        configure_logging(level="DEBUG", json_format=True)
        logger = logging.getLogger("switchyard.workflow")

        with log_context(workflow="checkout", step="pay"):
            logger.info("Step started")  # Includes workflow and step

    Structured data on a single record::

        logger.info("Switched", extra={"structured_data": {"app": "admin"}})
"""

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import IO, Any

ROOT_LOGGER_NAME = "switchyard"

_context_fields: ContextVar[dict[str, Any] | None] = ContextVar(
    "switchyard_log_context", default=None
)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Attributes:
        include_location: Whether to include file/line/function in output.
        extra_fields: Additional fields to include in every log record.
    """

    def __init__(
        self,
        include_location: bool = False,
        extra_fields: dict[str, Any] | None = None,
    ) -> None:
        super().__init__()
        self.include_location = include_location
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "message": record.getMessage(),
            "logger": record.name,
        }

        if self.include_location:
            log_data["location"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }

        context = _context_fields.get()
        if context:
            log_data["context"] = dict(context)

        structured_data = getattr(record, "structured_data", None)
        if structured_data:
            log_data["data"] = dict(structured_data)

        if record.exc_info and record.exc_info[0] is not None:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        for key, value in self.extra_fields.items():
            log_data.setdefault(key, value)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class HumanReadableFormatter(logging.Formatter):
    """Human-readable formatter with optional ANSI colors."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__()
        self.use_colors = use_colors and self._supports_color()

    @staticmethod
    def _supports_color() -> bool:
        if os.environ.get("NO_COLOR"):
            return False
        return hasattr(sys.stderr, "isatty") and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]

        if self.use_colors:
            color = self.COLORS.get(record.levelname, "")
            level = f"{color}{record.levelname:8}{self.RESET}"
        else:
            level = f"{record.levelname:8}"

        line = f"{timestamp} {level} [{record.name}] {record.getMessage()}"

        context = _context_fields.get()
        if context:
            fields = " ".join(f"{k}={v}" for k, v in context.items())
            line += f" | {fields}"

        structured_data = getattr(record, "structured_data", None)
        if structured_data:
            line += f" | data={json.dumps(structured_data, default=str)}"

        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"

        return line


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    include_location: bool = False,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Configure the ``switchyard`` logger.

    Replaces any handler previously installed by this function, so it
    can be called again (e.g. by the CLI after reading configuration).

    Args:
        level: Minimum log level.
        json_format: Use JSON format for output.
        include_location: Include file/line/function in JSON output.
        stream: Output stream (defaults to sys.stderr).

    Returns:
        The configured package logger.

    Example:
        >>> configure_logging(level="DEBUG", json_format=True)
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.handlers.clear()
    root_logger.propagate = False

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)

    formatter: logging.Formatter
    if json_format:
        formatter = StructuredFormatter(include_location=include_location)
    else:
        formatter = HumanReadableFormatter()

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    return root_logger


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Context manager for temporary log context.

    Adds the specified fields to all log messages within the context,
    then restores the previous context on exit. Nested blocks inherit
    and may override outer fields.

    Example:
        >>> with log_context(workflow="signup"):
        ...     with log_context(step="create_user"):
        ...         logger.info("Running")  # workflow and step
    """
    current = dict(_context_fields.get() or {})
    current.update(kwargs)
    token = _context_fields.set(current)
    try:
        yield
    finally:
        _context_fields.reset(token)


def get_context() -> dict[str, Any]:
    """Get a copy of the current logging context."""
    current = _context_fields.get()
    return dict(current) if current else {}
