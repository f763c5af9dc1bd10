# Engine-wide infrastructure

from cfb_core.core.logging import (
    LogLevel,
    LogFormat,
    LogContext,
    setup_logging,
    get_logger,
    get_context_logger,
)

__all__ = [
    "LogLevel",
    "LogFormat",
    "LogContext",
    "setup_logging",
    "get_logger",
    "get_context_logger",
]
