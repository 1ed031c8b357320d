"""Unit tests for devloop.config.loader module."""

from pathlib import Path

import pytest
import yaml

from devloop.config.loader import (
    SNAPSHOT_PATH_ENV,
    create_default_config,
    ensure_config_dir,
    get_snapshot_path,
    load_config,
    load_config_or_default,
)
from devloop.config.models import DevLoopConfig, MetricsConfig
from devloop.core.errors import ConfigError
from devloop.detection.models import IssueType


class TestEnsureConfigDir:
    """Test directory creation."""

    def test_creates_subdirectories(self, tmp_path: Path) -> None:
        """data/ and logs/ are created."""
        config_dir = ensure_config_dir(tmp_path / "devloop")
        assert (config_dir / "data").is_dir()
        assert (config_dir / "logs").is_dir()


class TestCreateDefaultConfig:
    """Test default config creation."""

    def test_writes_loadable_yaml(self, tmp_path: Path) -> None:
        """The written file loads back as the default config."""
        path = create_default_config(tmp_path)
        config = load_config(path)
        assert config.metrics.history_capacity == 100
        assert set(config.detection.detectors) == set(IssueType)

    def test_refuses_to_overwrite(self, tmp_path: Path) -> None:
        """An existing file is kept unless overwrite is set."""
        create_default_config(tmp_path)
        with pytest.raises(ConfigError):
            create_default_config(tmp_path)
        assert create_default_config(tmp_path, overwrite=True).exists()


class TestLoadConfig:
    """Test YAML loading."""

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file raises ConfigError naming the file."""
        with pytest.raises(ConfigError) as exc_info:
            load_config(tmp_path / "config.yaml")
        assert exc_info.value.config_file == str(tmp_path / "config.yaml")

    def test_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        """An empty document yields defaults."""
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path) == DevLoopConfig()

    def test_partial_override(self, tmp_path: Path) -> None:
        """Only the given keys change."""
        path = tmp_path / "config.yaml"
        path.write_text(
            yaml.dump(
                {
                    "metrics": {"history_capacity": 20},
                    "detection": {"detectors": {"ai_provider_instability": {"min_samples": 5}}},
                }
            )
        )
        config = load_config(path)
        assert config.metrics.history_capacity == 20
        provider = config.detection.for_issue(IssueType.AI_PROVIDER_INSTABILITY)
        assert provider.min_samples == 5
        assert provider.alert_threshold == 0.10

    def test_malformed_yaml(self, tmp_path: Path) -> None:
        """Unparseable YAML raises ConfigError."""
        path = tmp_path / "config.yaml"
        path.write_text("metrics: [unclosed")
        with pytest.raises(ConfigError, match="parse"):
            load_config(path)

    def test_validation_errors_listed(self, tmp_path: Path) -> None:
        """Validation errors name the offending key."""
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"metrics": {"history_capacity": 0}}))
        with pytest.raises(ConfigError) as exc_info:
            load_config(path)
        assert "metrics.history_capacity" in exc_info.value.message

    def test_or_default_without_file(self, tmp_path: Path) -> None:
        """load_config_or_default falls back when the file is missing."""
        assert load_config_or_default(tmp_path / "config.yaml") == DevLoopConfig()


class TestSnapshotPath:
    """Test snapshot path resolution."""

    def test_relative_to_config_dir(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A relative path is resolved against the config dir."""
        monkeypatch.delenv(SNAPSHOT_PATH_ENV, raising=False)
        path = get_snapshot_path(DevLoopConfig(), tmp_path)
        assert path == tmp_path / "data" / "metrics.json"

    def test_absolute_path(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """An absolute path is used as is."""
        monkeypatch.delenv(SNAPSHOT_PATH_ENV, raising=False)
        target = tmp_path / "elsewhere.json"
        config = DevLoopConfig(metrics=MetricsConfig(snapshot_path=str(target)))
        assert get_snapshot_path(config, Path("/unused")) == target

    def test_env_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """DEVLOOP_SNAPSHOT_PATH wins over the file."""
        monkeypatch.setenv(SNAPSHOT_PATH_ENV, str(tmp_path / "env.json"))
        assert get_snapshot_path(DevLoopConfig(), tmp_path) == tmp_path / "env.json"
