"""Unit tests for devloop.config.models module."""

from pathlib import Path

from pydantic import ValidationError
import pytest

from devloop.config.models import (
    DevLoopConfig,
    LoggingConfig,
    MetricsConfig,
    get_config_dir,
    get_default_config,
)
from devloop.detection.models import IssueType
from devloop.observability.logging import LogMode


class TestMetricsConfig:
    """Test MetricsConfig defaults and validation."""

    def test_defaults(self) -> None:
        """Defaults match the documented values."""
        config = MetricsConfig()
        assert config.history_capacity == 100
        assert config.incident_capacity == 50
        assert config.snapshot_path == "data/metrics.json"
        assert config.flush_interval_seconds == 5.0

    def test_capacity_must_be_positive(self) -> None:
        """A zero history capacity is rejected."""
        with pytest.raises(ValidationError):
            MetricsConfig(history_capacity=0)

    def test_snapshot_path_expands_home(self) -> None:
        """~ in snapshot_path is expanded."""
        config = MetricsConfig(snapshot_path="~/metrics.json")
        assert config.snapshot_path == str(Path.home() / "metrics.json")


class TestLoggingConfig:
    """Test the logging section."""

    def test_to_runtime_resolves_relative_dir(self, tmp_path: Path) -> None:
        """A relative log_dir is resolved against the config dir."""
        runtime = LoggingConfig(level="debug", mode="prod").to_runtime(tmp_path)
        assert runtime.log_dir == tmp_path / "logs"
        assert runtime.log_level == "DEBUG"
        assert runtime.mode is LogMode.PROD

    def test_invalid_level(self) -> None:
        """Unknown levels are rejected."""
        with pytest.raises(ValidationError):
            LoggingConfig(level="verbose")  # type: ignore[arg-type]


class TestDevLoopConfig:
    """Test the top-level config."""

    def test_frozen(self) -> None:
        """Configuration is immutable."""
        config = DevLoopConfig()
        with pytest.raises(ValidationError):
            config.metrics = MetricsConfig()  # type: ignore[misc]

    def test_default_config_lists_every_detector(self) -> None:
        """The default file shows every detector threshold."""
        config = get_default_config()
        assert set(config.detection.detectors) == set(IssueType)
        deadlock = config.detection.for_issue(IssueType.TASK_DEPENDENCY_DEADLOCK)
        assert deadlock.alert_threshold == 30.0

    def test_config_dir(self) -> None:
        """The config dir lives under the home directory."""
        assert get_config_dir() == Path.home() / ".devloop"
