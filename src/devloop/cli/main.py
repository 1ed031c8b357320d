"""devloop CLI main entry point.

This module defines the main Typer application and registers
all command groups for the devloop CLI.
"""

from typing import Annotated

import typer

from devloop import __version__
from devloop.cli.commands import config, metrics
from devloop.cli.formatters import console
from devloop.observability.logging import LoggingConfig, configure_logging

# Create the main Typer app
app = typer.Typer(
    name="devloop",
    help="devloop - Dev-loop metrics and anomaly detection",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Register command groups
app.add_typer(metrics.app, name="metrics")
app.add_typer(config.app, name="config")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]devloop[/] version [green]{__version__}[/]")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logs on the console."),
    ] = False,
) -> None:
    """devloop - Dev-loop metrics and anomaly detection.

    Inspects the task, phase, PRD and PRD-set metrics a running engine
    persists to its snapshot file.

    Use [bold cyan]devloop COMMAND --help[/] for command-specific help.
    """
    configure_logging(
        LoggingConfig(
            log_level="DEBUG" if verbose else "WARNING",
            enable_file_logging=False,
        )
    )


__all__ = ["app", "main"]
