"""Config command group for devloop.

Create and display the YAML configuration.
"""

from pathlib import Path
from typing import Annotated

import typer

from devloop.cli.formatters.panels import print_error, print_success
from devloop.cli.formatters.tables import create_key_value_table, print_table
from devloop.config.loader import (
    create_default_config,
    get_snapshot_path,
    load_config_or_default,
)
from devloop.config.models import get_config_dir
from devloop.core.errors import ConfigError
from devloop.detection.models import IssueType

app = typer.Typer(
    name="config",
    help="Manage devloop configuration.",
    no_args_is_help=True,
)


@app.command()
def init(
    config_dir: Annotated[
        Path | None,
        typer.Option("--dir", "-d", help="Configuration directory (default ~/.devloop)."),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite an existing config.yaml."),
    ] = False,
) -> None:
    """Write a config.yaml listing every default setting."""
    try:
        path = create_default_config(config_dir, overwrite=force)
    except ConfigError as e:
        print_error(e.message, title="Configuration Error")
        raise typer.Exit(1) from e
    print_success(f"Configuration written to {path}")


@app.command()
def show(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to config.yaml."),
    ] = None,
) -> None:
    """Display the effective configuration.

    Detector entries not present in the file are shown with their defaults.
    """
    try:
        config = load_config_or_default(config_path)
    except ConfigError as e:
        print_error(e.message, title="Configuration Error")
        raise typer.Exit(1) from e

    config_dir = config_path.parent if config_path else get_config_dir()
    data: dict[str, object] = {
        "config_path": config_path or config_dir / "config.yaml",
        "snapshot_path": get_snapshot_path(config, config_dir),
    }
    for section in ("metrics", "alerts", "logging"):
        for key, value in getattr(config, section).model_dump(mode="json").items():
            data[f"{section}.{key}"] = value
    print_table(create_key_value_table(data, "Current Configuration"))

    detectors: dict[str, object] = {}
    for issue in IssueType:
        detector = config.detection.for_issue(issue)
        state = "on" if detector.enabled else "off"
        detectors[issue.value] = f"{state}, threshold {detector.alert_threshold:g}"
    print_table(create_key_value_table(detectors, "Detectors"))


__all__ = ["app"]
