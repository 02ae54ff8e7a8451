"""Structured logging configuration for the rate limiter.

This module provides a structured logging setup using Python's standard
logging module with JSON formatting for production environments.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from ipgate.app.core.config import settings


# Attributes every LogRecord carries; anything else came in through extra=
_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message",
    "asctime", "taskName", "timestamp", "logger", "level", "source",
))


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs log records as JSON objects for consumption by log aggregation
    systems like ELK Stack or Grafana Loki.
    """

    # Contextual fields for request tracking
    CONTEXT_FIELDS = [
        "request_id",    # Request ID from X-Request-ID header
        "client_ip",     # Rate limit identity
        "path",          # Request path
        "method",        # HTTP method
        "decision",      # allow | deny
        "status_code",   # HTTP response status
    ]

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON string representation of the log record
        """
        record.message = record.getMessage()

        log_data: Dict[str, Any] = {
            "timestamp": datetime.now().astimezone().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        for field in self.CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None and value != "-":
                log_data[field] = value

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key in self.CONTEXT_FIELDS:
                continue
            log_data.setdefault("extra", {})[key] = value

        if record.exc_info and record.exc_info != (None, None, None):
            log_data["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Logging filter that adds contextual fields to log records.

    Adds "-" placeholders for client_ip, request_id and the other
    contextual fields so text format strings never fail on a missing key.
    """

    CONTEXT_DEFAULTS = {
        "request_id": "-",
        "client_ip": "-",
        "path": "-",
        "method": "-",
        "decision": "-",
        "status_code": "-",
    }

    def filter(self, record: logging.LogRecord) -> bool:
        for field, default in self.CONTEXT_DEFAULTS.items():
            if not hasattr(record, field):
                setattr(record, field, default)
        return True


class MaxLevelFilter(logging.Filter):
    """Pass only records below a level.

    Keeps stdout free of records that the stderr handler already prints.
    """

    def __init__(self, max_level: int | str = logging.ERROR):
        super().__init__()
        if isinstance(max_level, str):
            max_level = logging.getLevelName(max_level.upper())
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.max_level


def get_logging_config() -> Dict[str, Any]:
    """Get logging configuration dictionary.

    Returns:
        Logging configuration dict compatible with logging.config.dictConfig
    """
    log_format = getattr(settings, "log_format", "text").lower()
    log_level = getattr(settings, "log_level", "INFO").upper()

    formatters = {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        },
        "structured": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s - client_ip=%(client_ip)s - path=%(path)s - decision=%(decision)s"
        },
    }

    if log_format == "json":
        formatters["json"] = {
            "()": "ipgate.app.core.logging.JSONFormatter",
        }
        default_formatter = "json"
    else:
        default_formatter = "structured" if log_format == "structured" else "standard"

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": default_formatter,
            "stream": sys.stdout,
            "filters": ["context", "below_error"],
        },
        "error_console": {
            "class": "logging.StreamHandler",
            "level": "ERROR",
            "formatter": default_formatter,
            "stream": sys.stderr,
            "filters": ["context"],
        },
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {
            "context": {
                "()": "ipgate.app.core.logging.ContextFilter",
            },
            # ERROR and above go to error_console only
            "below_error": {
                "()": "ipgate.app.core.logging.MaxLevelFilter",
                "max_level": "ERROR",
            },
        },
        "handlers": handlers,
        "loggers": {
            "ipgate": {
                "level": log_level,
                "handlers": ["console", "error_console"],
                "propagate": False,
            },
            "uvicorn": {
                "level": log_level,
                "handlers": ["console", "error_console"],
                "propagate": False,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console", "error_console"],
        },
    }


def setup_logging() -> None:
    """Configure logging for the application."""
    logging.config.dictConfig(get_logging_config())

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)


def get_logger(name: str = "ipgate") -> logging.Logger:
    """Get a logger instance with the specified name."""
    return logging.getLogger(name)


def get_log_context(
    client_ip: Optional[str] = None,
    request_id: Optional[str] = None,
    path: Optional[str] = None,
    **extra
) -> Dict[str, Any]:
    """Create a log context dictionary for use with extra parameter.

    Example:
        >>> logger.warning(
        ...     "Client banned",
        ...     extra=get_log_context(client_ip="203.0.113.7", ban_until=1700000300)
        ... )
    """
    context = {
        "client_ip": client_ip,
        "request_id": request_id,
        "path": path,
    }
    context.update(extra)
    return {k: v for k, v in context.items() if v is not None}
