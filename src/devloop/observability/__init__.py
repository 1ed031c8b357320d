"""Observability module for devloop.

Structured logging shared by the metrics store, history buffers, detectors
and persistence layer.
"""

from devloop.observability.logging import (
    LoggingConfig,
    LogMode,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    set_console_logging,
    unbind_context,
)

__all__ = [
    "LogMode",
    "LoggingConfig",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "set_console_logging",
    "unbind_context",
]
