"""
Standardized Logging Configuration

This module provides the structured logging setup for the emergency engine.
Supports JSON logging for production and human-readable format for development.

Two logger flavours share one handler: stdlib loggers (``logging.getLogger``)
used by the notification layer, and structlog loggers used by the background
engine components. ``setup_logging`` wires structlog to render through stdlib.
"""

import json
import logging
import os
import sys
import traceback
from contextvars import ContextVar, Token
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import structlog


# =============================================================================
# Configuration
# =============================================================================


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    PRETTY = "pretty"
    SIMPLE = "simple"


DEFAULT_LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
DEFAULT_LOG_FORMAT = os.getenv("LOG_FORMAT", "json" if os.getenv("ENVIRONMENT") == "production" else "pretty")
SERVICE_NAME = os.getenv("SERVICE_NAME", "cfb-emergency-engine")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

_RESERVED_ATTRS = {
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "lineno", "funcName", "created",
    "msecs", "relativeCreated", "thread", "threadName",
    "processName", "process", "message", "exc_info", "exc_text",
    "stack_info", "taskName",
}


# =============================================================================
# Custom Formatters
# =============================================================================


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        result: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "service": SERVICE_NAME,
            "environment": ENVIRONMENT,
        }

        context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        context.update(LogContext.all())
        if context:
            result["context"] = context

        if record.exc_info:
            result["stack_trace"] = "".join(traceback.format_exception(*record.exc_info))
            result["error"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
            }

        return json.dumps(result, default=str)


class PrettyFormatter(logging.Formatter):
    """Human-readable log formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",   # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with colors."""
        color = self.COLORS.get(record.levelname, "")

        timestamp = datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        level = f"{color}{record.levelname:8}{self.RESET}"
        logger = f"\033[90m{record.name}\033[0m"

        message = f"{timestamp} | {level} | {logger} | {record.getMessage()}"

        extra_fields = [
            f"{key}={value}"
            for key, value in record.__dict__.items()
            if not key.startswith("_") and key not in _RESERVED_ATTRS
        ]
        if extra_fields:
            message += f" | {' '.join(extra_fields)}"

        if record.exc_info:
            message += f"\n{''.join(traceback.format_exception(*record.exc_info))}"

        return message


class SimpleFormatter(logging.Formatter):
    """Simple log formatter without colors."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record simply."""
        timestamp = datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S")
        return f"{timestamp} [{record.levelname}] {record.name}: {record.getMessage()}"


# =============================================================================
# Logger Setup
# =============================================================================


def setup_logging(
    level: str = DEFAULT_LOG_LEVEL,
    format: str = DEFAULT_LOG_FORMAT,
    service_name: Optional[str] = None,
) -> None:
    """
    Configure logging for the engine.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format (json, pretty, simple)
        service_name: Service name for log entries
    """
    global SERVICE_NAME

    if service_name:
        SERVICE_NAME = service_name

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if format == LogFormat.JSON or format == "json":
        formatter: logging.Formatter = JSONFormatter()
    elif format == LogFormat.PRETTY or format == "pretty":
        formatter = PrettyFormatter()
    else:
        formatter = SimpleFormatter()

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # structlog events are rendered into the message and handed to stdlib
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(key_order=["event"], sort_keys=True),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    root_logger.info(
        "Logging configured",
        extra={
            "level": level,
            "format": format,
            "service": SERVICE_NAME,
        }
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


# =============================================================================
# Context Logging
# =============================================================================


_log_context: ContextVar[Dict[str, Any]] = ContextVar("cfb_log_context", default={})


class LogContext:
    """
    Scoped fields added to every log record written inside the block.

    Backed by a context variable, so each asyncio task sees only the
    fields its own blocks set.

    Usage:
        with LogContext(campaign_id="cmp_abc123"):
            logger.info("Dispatching notifications")
    """

    def __init__(self, **kwargs: Any):
        self._kwargs = kwargs
        self._token: Optional[Token] = None

    def __enter__(self) -> "LogContext":
        self._token = _log_context.set({**_log_context.get(), **self._kwargs})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """Get a value from the current context."""
        return _log_context.get().get(key, default)

    @classmethod
    def clear(cls) -> None:
        """Clear the current context."""
        _log_context.set({})

    @classmethod
    def all(cls) -> Dict[str, Any]:
        """Get all context values."""
        return dict(_log_context.get())


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that automatically includes context in log records.

    Usage:
        logger = ContextLogger(logging.getLogger(__name__))
        logger.info("Message")  # Automatically includes context
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """Process log message, adding context."""
        kwargs["extra"] = {**LogContext.all(), **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_context_logger(name: str) -> ContextLogger:
    """
    Get a context-aware logger.

    Args:
        name: Logger name

    Returns:
        ContextLogger instance
    """
    return ContextLogger(logging.getLogger(name), {})


__all__ = [
    "LogLevel",
    "LogFormat",
    "JSONFormatter",
    "PrettyFormatter",
    "SimpleFormatter",
    "setup_logging",
    "get_logger",
    "LogContext",
    "ContextLogger",
    "get_context_logger",
]
