"""Structured JSON logging configuration."""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import IO, Any

# Extra attributes copied from log records into the JSON line
CONTEXT_FIELDS = (
    "audit_id",
    "login_name",
    "title",
    "vault_id",
    "transaction_id",
    "file_id",
    "candidate",
    "status_code",
    "error_code",
    "attachment_mode",
    "latency_ms",
)

# Loggers that only add transport chatter at INFO
QUIET_LOGGERS = ("httpcore", "httpx", "multipart", "python_multipart")

# Server loggers that install their own plain-text handlers
SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    """Format log records as JSON lines for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def setup_logging(log_level: str = "INFO", stream: IO[str] | None = None) -> logging.Handler:
    """Send every log line, uvicorn's included, through one JSON handler.

    Args:
        log_level: Logging level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        stream: Destination stream; stdout when omitted.

    Returns:
        The handler installed on the root logger.
    """
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level.upper())

    for name in SERVER_LOGGERS:
        server_logger = logging.getLogger(name)
        server_logger.handlers.clear()
        server_logger.propagate = True

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return handler
