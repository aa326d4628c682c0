"""Structured logging configuration for diskbridge.

Provides JSON-structured logging for log aggregation and human-readable
logging for development. Log lines emitted inside one storage call chain
share an operation ID so a multi-step remote operation can be followed.
"""

import json
import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from diskbridge.core.config import settings

# Context variable for operation correlation ID
operation_id_var: ContextVar[str] = ContextVar("operation_id", default="")


class JSONFormatter(logging.Formatter):
    """JSON log formatter for log aggregation systems."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        operation_id = operation_id_var.get()
        if operation_id:
            log_data["operation_id"] = operation_id

        # Add extra fields from record
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        return json.dumps(log_data, default=str)


class DevelopmentFormatter(logging.Formatter):
    """Human-readable log formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[41m",  # Red background
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with colors and operation ID."""
        color = self.COLORS.get(record.levelname, "")
        reset = self.RESET if color else ""

        operation_id = operation_id_var.get()
        op_part = f"[{operation_id[:8]}] " if operation_id else ""

        timestamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")
        message = f"{timestamp} {color}{record.levelname:8}{reset} {op_part}{record.name}: {record.getMessage()}"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


def setup_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    """Configure application logging.

    Args:
        level: Root log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Defaults to LOG_LEVEL from settings.
        json_logs: If True, use JSON formatting. Otherwise use development formatter.
            Defaults to LOG_JSON_FORMAT from settings.
    """
    if level is None:
        level = settings.LOG_LEVEL
    if json_logs is None:
        json_logs = settings.LOG_JSON_FORMAT

    handler = logging.StreamHandler(sys.stdout)

    if json_logs:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(DevelopmentFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    return str(uuid.uuid4())


def get_operation_id() -> str:
    """Get the operation ID for the current context, or empty string."""
    return operation_id_var.get()


@contextmanager
def operation_scope(operation_id: str | None = None) -> Iterator[str]:
    """Tag every log line emitted inside the block with one operation ID.

    Nested scopes reuse the outer ID so a whole call chain shares it.
    """
    current = operation_id_var.get()
    if current and operation_id is None:
        yield current
        return

    token = operation_id_var.set(operation_id or generate_operation_id())
    try:
        yield operation_id_var.get()
    finally:
        operation_id_var.reset(token)
