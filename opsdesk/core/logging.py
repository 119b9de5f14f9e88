"""
OpsDesk - Centralized Logging
=============================
Safe logging setup with request_id injection.
Every decide() call binds "<source>:<id>" as the request id so all log lines
of one decision can be correlated.
"""

import json
import logging
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Optional

from opsdesk.core.config import get_settings

# Context variable for request_id (async-safe)
_request_id_var: ContextVar[str] = ContextVar("request_id", default="-")

RequestIdToken = Token[str]


def set_request_id(request_id: str) -> RequestIdToken:
    """
    Set request_id for current context.

    Returns:
        Token that can be used to reset to previous value.
    """
    return _request_id_var.set(request_id or "-")


def reset_request_id(token: RequestIdToken) -> None:
    """Reset request_id to previous value using token."""
    _request_id_var.reset(token)


def get_request_id() -> str:
    """Get request_id from current context, default '-'."""
    return _request_id_var.get()


class RequestIdFilter(logging.Filter):
    """
    Logging filter that injects request_id into every log record.
    Falls back to "-" if no request context is available.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id") or record.request_id is None:
            record.request_id = get_request_id()
        return True


class SafeFormatter(logging.Formatter):
    """
    Formatter that safely handles missing fields.
    Prevents KeyError crashes when fields are missing.
    """

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "request_id") or record.request_id is None:
            record.request_id = "-"
        return super().format(record)


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.
    Only used when JSON_LOGS=true.
    """

    EXTRA_FIELDS = ("source", "kind", "stage", "decision", "actor", "table", "handler")

    def format(self, record: logging.LogRecord) -> str:
        request_id = getattr(record, "request_id", "-") or "-"

        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in self.EXTRA_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


# Track if logging has been setup
_logging_initialized = False


def setup_logging(
    level: Optional[str] = None,
    json_format: Optional[bool] = None,
) -> logging.Logger:
    """
    Setup logging with request_id support.

    Safe to call multiple times - only initializes once.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Default from config.
        json_format: Use JSON format. Default from config.

    Returns:
        The root OpsDesk logger.
    """
    global _logging_initialized

    if _logging_initialized:
        return logging.getLogger("opsdesk")

    settings = get_settings()

    if level is None:
        level = settings.LOG_LEVEL
    if isinstance(level, int):
        log_level = level
    else:
        log_level = getattr(logging, str(level).upper(), logging.INFO)

    if json_format is None:
        json_format = settings.JSON_LOGS

    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = SafeFormatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())
    handler.setLevel(log_level)

    opsdesk_logger = logging.getLogger("opsdesk")
    opsdesk_logger.setLevel(log_level)
    opsdesk_logger.handlers = []
    opsdesk_logger.addHandler(handler)
    opsdesk_logger.propagate = False

    # Suppress noisy loggers
    for noisy in ("httpx", "httpcore", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _logging_initialized = True
    return opsdesk_logger


def reset_logging() -> None:
    """Drop handlers and allow setup_logging() to run again. For tests."""
    global _logging_initialized
    logger = logging.getLogger("opsdesk")
    logger.handlers = []
    logger.propagate = True
    _logging_initialized = False


def get_logger(name: str = "opsdesk") -> logging.Logger:
    """
    Get a logger with the given name.

    Automatically prefixes with 'opsdesk.' if not already prefixed.
    Does not configure handlers; call setup_logging() from the application.
    """
    if not name.startswith("opsdesk"):
        name = f"opsdesk.{name}"

    return logging.getLogger(name)


__all__ = [
    "setup_logging",
    "reset_logging",
    "get_logger",
    "get_request_id",
    "set_request_id",
    "reset_request_id",
    "RequestIdFilter",
    "SafeFormatter",
    "JSONFormatter",
]
