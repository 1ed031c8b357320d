"""devloop CLI module.

This module provides the command-line interface for inspecting dev-loop
metrics, built with Typer for CLI framework and Rich for output.
"""

from devloop.cli.main import app

__all__ = ["app"]
