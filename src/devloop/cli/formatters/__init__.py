"""Rich formatters for CLI output.

This module provides a shared Console instance for consistent terminal
output across the devloop CLI.

Semantic Colors:
- green: success
- yellow: warning
- red: error
- blue: info
"""

from rich.console import Console
from rich.theme import Theme

# Semantic color theme for consistent output
DEVLOOP_THEME = Theme(
    {
        "success": "green",
        "warning": "yellow",
        "error": "red",
        "info": "blue",
        "muted": "dim",
        "highlight": "bold cyan",
    }
)

# Shared Console instance for all CLI modules
console = Console(theme=DEVLOOP_THEME)

__all__ = ["console", "DEVLOOP_THEME"]
