"""Configuration loading and management for devloop.

This module provides functions for loading, creating, and validating
devloop configuration files.

Functions:
    load_config: Load configuration from ~/.devloop/config.yaml
    load_config_or_default: Like load_config, falling back to defaults
    create_default_config: Create the default configuration file
    ensure_config_dir: Ensure ~/.devloop/ directory exists
    get_snapshot_path: Get the snapshot path from env var or config
"""

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError
import yaml

# Load .env file from current directory and ~/.devloop/
load_dotenv()  # Current directory .env
load_dotenv(Path.home() / ".devloop" / ".env")  # Global .env

from devloop.config.models import (  # noqa: E402
    DevLoopConfig,
    get_config_dir,
    get_default_config,
)
from devloop.core.errors import ConfigError  # noqa: E402

SNAPSHOT_PATH_ENV = "DEVLOOP_SNAPSHOT_PATH"


def ensure_config_dir(config_dir: Path | None = None) -> Path:
    """Ensure the configuration directory exists.

    Creates ~/.devloop/ (or ``config_dir``) with its data/ and logs/
    subdirectories if they don't exist.

    Returns:
        Path to the configuration directory.
    """
    if config_dir is None:
        config_dir = get_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)

    (config_dir / "data").mkdir(exist_ok=True)
    (config_dir / "logs").mkdir(exist_ok=True)

    return config_dir


def _model_to_yaml_dict(model: DevLoopConfig) -> dict[str, Any]:
    """Convert the config model to a YAML-serializable dict."""
    return model.model_dump(mode="json")


def create_default_config(
    config_dir: Path | None = None,
    *,
    overwrite: bool = False,
) -> Path:
    """Create the default configuration file.

    Args:
        config_dir: Directory to create the file in. Defaults to ~/.devloop/
        overwrite: If True, overwrite an existing file. Defaults to False.

    Returns:
        Path to the written config.yaml.

    Raises:
        ConfigError: If the file exists and overwrite=False.
    """
    config_dir = ensure_config_dir(config_dir)
    config_path = config_dir / "config.yaml"

    if config_path.exists() and not overwrite:
        raise ConfigError(
            f"Configuration file already exists: {config_path}",
            config_file=str(config_path),
        )

    config_dict = _model_to_yaml_dict(get_default_config())
    with config_path.open("w") as f:
        yaml.dump(
            config_dict,
            f,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )

    return config_path


def load_config(config_path: Path | None = None) -> DevLoopConfig:
    """Load configuration from YAML file.

    Loads and validates configuration from the specified path or
    the default ~/.devloop/config.yaml.

    Args:
        config_path: Path to config file. Defaults to ~/.devloop/config.yaml.

    Returns:
        Validated DevLoopConfig instance.

    Raises:
        ConfigError: If file doesn't exist, is malformed, or fails validation.
    """
    if config_path is None:
        config_path = get_config_dir() / "config.yaml"

    if not config_path.exists():
        raise ConfigError(
            f"Configuration file not found: {config_path}. "
            "Run `devloop config init` to create default configuration.",
            config_file=str(config_path),
        )

    try:
        with config_path.open() as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse configuration file: {e}",
            config_file=str(config_path),
            details={"yaml_error": str(e)},
        ) from e

    if config_dict is None:
        config_dict = {}

    try:
        return DevLoopConfig.model_validate(config_dict)
    except PydanticValidationError as e:
        error_messages = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            error_messages.append(f"  - {loc}: {msg}")

        raise ConfigError(
            "Configuration validation failed:\n" + "\n".join(error_messages),
            config_file=str(config_path),
            details={"validation_errors": e.errors()},
        ) from e


def load_config_or_default(config_path: Path | None = None) -> DevLoopConfig:
    """Load configuration, using defaults when the file does not exist.

    A file that exists but is invalid still raises ``ConfigError``.
    """
    path = config_path or get_config_dir() / "config.yaml"
    if not path.exists():
        return DevLoopConfig()
    return load_config(path)


def get_snapshot_path(config: DevLoopConfig, config_dir: Path | None = None) -> Path:
    """Get the snapshot file path.

    Priority:
        1. DEVLOOP_SNAPSHOT_PATH environment variable
        2. config.yaml metrics.snapshot_path, relative to the config dir

    Returns:
        Absolute path of the snapshot file.
    """
    env_path = os.environ.get(SNAPSHOT_PATH_ENV, "").strip()
    if env_path:
        return Path(env_path).expanduser()

    path = Path(config.metrics.snapshot_path)
    if path.is_absolute():
        return path
    return (config_dir or get_config_dir()) / path
