"""Pydantic models for devloop configuration.

This module defines the configuration schema using Pydantic v2.
All configuration validation happens through these models.

Classes:
    MetricsConfig: Scope store, history and snapshot settings
    AlertsConfig: Alert emitter settings
    LoggingConfig: Logging configuration
    DevLoopConfig: Top-level configuration combining all sections

Detector tuning (``DetectorConfig``, ``DetectionConfig``) lives with the
detectors in ``devloop.detection.models`` and is re-exported here.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from devloop.detection.models import DetectionConfig, DetectorConfig, IssueType
from devloop.observability.logging import LoggingConfig as RuntimeLoggingConfig
from devloop.observability.logging import LogMode


class MetricsConfig(BaseModel, frozen=True):
    """Scope store, history buffer and snapshot configuration.

    Attributes:
        history_capacity: Samples kept per history stream
        incident_capacity: Incidents kept per detector state
        snapshot_path: Snapshot file (relative to config dir unless absolute)
        flush_interval_seconds: Interval of the background snapshot flush
        stale_scope_minutes: Idle time after which in-progress PRD sets are
            finalized as blocked by ``finalize_stale``
    """

    history_capacity: int = Field(default=100, ge=1)
    incident_capacity: int = Field(default=50, ge=1)
    snapshot_path: str = "data/metrics.json"
    flush_interval_seconds: float = Field(default=5.0, gt=0.0)
    stale_scope_minutes: float = Field(default=60.0, gt=0.0)

    @field_validator("snapshot_path")
    @classmethod
    def expand_snapshot_path(cls, v: str) -> str:
        """Expand ~ in snapshot_path."""
        return str(Path(v).expanduser()) if v.startswith("~") else v


class AlertsConfig(BaseModel, frozen=True):
    """Alert emitter configuration.

    Attributes:
        buffer_size: Events retained for polling
    """

    buffer_size: int = Field(default=1000, ge=1)


class LoggingConfig(BaseModel, frozen=True):
    """Logging configuration.

    Attributes:
        level: Log level (debug, info, warning, error)
        mode: dev for console lines, prod for JSON
        log_dir: Log directory (relative to config dir unless absolute)
        max_log_days: Days of rotated log files to keep
        enable_file_logging: Whether to write the rotating log file
    """

    level: Literal["debug", "info", "warning", "error"] = "info"
    mode: Literal["dev", "prod"] = "dev"
    log_dir: str = "logs"
    max_log_days: int = Field(default=7, ge=1, le=365)
    enable_file_logging: bool = True

    def to_runtime(self, config_dir: Path) -> RuntimeLoggingConfig:
        """Build the structlog configuration for this section."""
        log_dir = Path(self.log_dir).expanduser()
        if not log_dir.is_absolute():
            log_dir = config_dir / log_dir
        return RuntimeLoggingConfig(
            mode=LogMode(self.mode),
            log_level=self.level.upper(),
            log_dir=log_dir,
            max_log_days=self.max_log_days,
            enable_file_logging=self.enable_file_logging,
        )


class DevLoopConfig(BaseModel, frozen=True):
    """Top-level devloop configuration.

    It validates against config.yaml in ~/.devloop/.

    Attributes:
        metrics: Scope store, history and snapshot configuration
        detection: Per-issue detector tuning
        alerts: Alert emitter configuration
        logging: Logging configuration
    """

    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def get_default_config() -> DevLoopConfig:
    """Get the default devloop configuration.

    Every detector is listed explicitly so ``config init`` writes a file
    showing all thresholds.

    Returns:
        DevLoopConfig with all default values populated.
    """
    return DevLoopConfig(
        detection=DetectionConfig(
            detectors={issue: DetectorConfig.for_issue(issue) for issue in IssueType},
        ),
    )


def get_config_dir() -> Path:
    """Get the devloop configuration directory path.

    Returns:
        Path to ~/.devloop/
    """
    return Path.home() / ".devloop"
