"""Structured logging configuration for devloop.

Configures structlog with a shared processor chain. Development mode renders
human-readable console lines; production mode renders JSON. A daily rotating
file handler keeps a JSON copy under ``~/.devloop/logs/``.

Standard log keys:
- scope_id: Scope identifier (task, phase, PRD or PRD set)
- prd_id: PRD scope a detector or history stream belongs to
- kind: Scope kind
- issue_type: Detector issue type
- stream: History stream identifier

Event naming convention:
- dot.notation, domain.entity.verb_past_tense
- e.g. "metrics.scope.started", "detection.issue.detected"

Usage:
    from devloop.observability import configure_logging, get_logger, bind_context

    configure_logging(LoggingConfig(mode=LogMode.PROD))
    log = get_logger(__name__)

    bind_context(prd_id="prd-auth")
    log.info("metrics.scope.completed", scope_id="task-1", status="completed")
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from functools import partial
import logging
from logging.handlers import TimedRotatingFileHandler
import os
from pathlib import Path
import sys
from typing import Any

from pydantic import BaseModel, Field
import structlog


class LogMode(str, Enum):
    """Logging output mode."""

    DEV = "dev"
    PROD = "prod"


class LoggingConfig(BaseModel):
    """Configuration for structured logging.

    Attributes:
        mode: Output mode (dev for human-readable, prod for JSON).
        log_level: Minimum log level to output.
        log_dir: Directory for log files. Defaults to ~/.devloop/logs/.
        max_log_days: Number of days to retain log files.
        enable_file_logging: Whether to write logs to files.
    """

    mode: LogMode = Field(default=LogMode.DEV)
    log_level: str = Field(default="INFO")
    log_dir: Path = Field(default_factory=lambda: Path.home() / ".devloop" / "logs")
    max_log_days: int = Field(default=7, ge=1, le=365)
    enable_file_logging: bool = Field(default=True)

    model_config = {"frozen": True}


_configured: bool = False
_current_config: LoggingConfig | None = None
_console_logging_enabled: bool = True


def _get_mode_from_env() -> LogMode:
    """Read the mode from DEVLOOP_LOG_MODE, defaulting to DEV."""
    env_mode = os.environ.get("DEVLOOP_LOG_MODE", "dev").lower()
    if env_mode == "prod":
        return LogMode.PROD
    return LogMode.DEV


def _get_log_level(level_str: str) -> int:
    """Convert a level name to its logging constant (INFO when unknown)."""
    level = logging.getLevelNamesMapping().get(level_str.upper())
    return logging.INFO if level is None else level


def _setup_file_handler(config: LoggingConfig) -> TimedRotatingFileHandler | None:
    """Create the daily rotating file handler, or None when disabled."""
    if not config.enable_file_logging:
        return None

    config.log_dir.mkdir(parents=True, exist_ok=True)

    handler = TimedRotatingFileHandler(
        filename=str(config.log_dir / "devloop.log"),
        when="midnight",
        interval=1,
        backupCount=config.max_log_days,
        encoding="utf-8",
        utc=True,
    )
    # structlog renders the full line; the handler only writes it out
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.setLevel(_get_log_level(config.log_level))
    return handler


def _get_shared_processors() -> list[Any]:
    """Processors that prepare the event dict before rendering."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.CallsiteParameterAdder(
            parameters=[
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.LINENO,
            ]
        ),
    ]


def _get_console_processors(mode: LogMode) -> list[Any]:
    """Full processor chain including the mode-specific renderer."""
    processors = _get_shared_processors()
    processors.append(structlog.processors.format_exc_info)

    if mode == LogMode.DEV:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.append(structlog.processors.JSONRenderer())

    return processors


def set_console_logging(enabled: bool) -> None:
    """Enable or disable console log output (the CLI disables it for --json)."""
    global _console_logging_enabled
    _console_logging_enabled = enabled


def is_console_logging_enabled() -> bool:
    return _console_logging_enabled


_METHOD_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "msg": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "exception": logging.ERROR,
    "critical": logging.CRITICAL,
    "fatal": logging.CRITICAL,
}


class _TeeLogger:
    """Writes each rendered line to stderr and to the rotating log file.

    structlog calls the method named after the level; every such method
    resolves to ``write`` with the matching stdlib level.
    """

    def __init__(self, file_handler: TimedRotatingFileHandler | None = None) -> None:
        self._file_handler = file_handler

    def write(self, message: str, level: int = logging.INFO) -> None:
        if _console_logging_enabled:
            print(message, file=sys.stderr)
        if self._file_handler is not None:
            self._file_handler.emit(
                logging.makeLogRecord({"name": "devloop", "levelno": level, "msg": message})
            )

    def __call__(self, message: str) -> None:
        self.write(message)

    def __getattr__(self, name: str) -> Callable[[str], None]:
        level = _METHOD_LEVELS.get(name)
        if level is None:
            raise AttributeError(name)
        return partial(self.write, level=level)


def _tee_logger_factory(
    file_handler: TimedRotatingFileHandler | None,
) -> Callable[..., _TeeLogger]:
    def factory(*_args: Any) -> _TeeLogger:
        return _TeeLogger(file_handler)

    return factory


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Configure structlog for the process.

    Call once at startup. Reconfiguring replaces the root handlers, so it is
    safe to call again (tests do).

    Args:
        config: Logging configuration. If None, uses defaults with the mode
            taken from DEVLOOP_LOG_MODE.
    """
    global _configured, _current_config

    if config is None:
        config = LoggingConfig(mode=_get_mode_from_env())

    _current_config = config
    log_level = _get_log_level(config.log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    file_handler = _setup_file_handler(config)
    if file_handler:
        root_logger.addHandler(file_handler)

    structlog.configure(
        processors=_get_console_processors(config.mode),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=_tee_logger_factory(file_handler),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a bound structlog logger.

    Loggers are lazy proxies, so module-level ``log = get_logger(__name__)``
    picks up configuration applied later by ``configure_logging``.
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context variables included in every subsequent log entry.

    The run context binds ``prd_id`` for the duration of a PRD execution.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove context variables from the logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()


def get_current_config() -> LoggingConfig | None:
    return _current_config


def is_configured() -> bool:
    return _configured


def reset_logging() -> None:
    """Reset module state and structlog defaults. Used by tests."""
    global _configured, _current_config
    _configured = False
    _current_config = None
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()
