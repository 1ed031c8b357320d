"""devloop configuration module.

Pydantic models for configuration validation and YAML loading from
~/.devloop/config.yaml.
"""

from devloop.config.loader import (
    create_default_config,
    ensure_config_dir,
    get_snapshot_path,
    load_config,
    load_config_or_default,
)
from devloop.config.models import (
    AlertsConfig,
    DetectionConfig,
    DetectorConfig,
    DevLoopConfig,
    LoggingConfig,
    MetricsConfig,
    get_config_dir,
    get_default_config,
)

__all__ = [
    # Models
    "AlertsConfig",
    "DetectionConfig",
    "DetectorConfig",
    "DevLoopConfig",
    "LoggingConfig",
    "MetricsConfig",
    # Functions
    "create_default_config",
    "ensure_config_dir",
    "get_config_dir",
    "get_default_config",
    "get_snapshot_path",
    "load_config",
    "load_config_or_default",
]
