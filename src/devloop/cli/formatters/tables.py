"""Rich tables for scope and configuration data.

Provides table formatting utilities with consistent styling for the
devloop CLI.
"""

from collections.abc import Iterable
from typing import Any

from rich.table import Table

from devloop.cli.formatters import console
from devloop.metrics.scope import Scope


def create_table(
    title: str | None = None,
    *,
    show_header: bool = True,
    show_lines: bool = False,
    border_style: str = "blue",
    header_style: str = "bold cyan",
) -> Table:
    """Create a Rich Table with consistent devloop styling.

    Example:
        table = create_table("Scopes")
        table.add_column("Scope", style="cyan")
        table.add_row("task-1")
        print_table(table)
    """
    return Table(
        title=title,
        show_header=show_header,
        show_lines=show_lines,
        border_style=border_style,
        header_style=header_style,
        row_styles=["", "dim"],
    )


def create_key_value_table(
    data: dict[str, Any],
    title: str | None = None,
    *,
    key_style: str = "cyan",
    value_style: str = "white",
) -> Table:
    """Create a two-column table for key-value data."""
    table = create_table(title, show_header=False)
    table.add_column("Key", style=key_style, no_wrap=True)
    table.add_column("Value", style=value_style)

    for key, value in data.items():
        table.add_row(str(key), str(value))

    return table


def create_scope_table(scopes: Iterable[Scope], title: str | None = None) -> Table:
    """Create a table with one row per scope, status colored by outcome."""
    table = create_table(title)
    table.add_column("Scope", style="cyan", no_wrap=True)
    table.add_column("Kind")
    table.add_column("Parent", style="muted")
    table.add_column("Status", justify="center")
    table.add_column("Completed", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")

    for scope in scopes:
        status = scope.status.value
        table.add_row(
            scope.id,
            scope.kind.value,
            scope.parent_id or "-",
            f"[{_get_status_style(status)}]{status}[/]",
            str(scope.counters.completed),
            str(scope.counters.failed),
            format_rate(scope.counters.success_rate),
            str(scope.tokens.input + scope.tokens.output),
            f"${scope.tokens.cost:.4f}",
        )

    return table


def create_timing_table(scope: Scope) -> Table:
    """Create a table of a scope's timing breakdown."""
    table = create_table("Timings")
    table.add_column("Category", style="cyan", no_wrap=True)
    table.add_column("Count", justify="right")
    table.add_column("Total ms", justify="right")
    table.add_column("Avg ms", justify="right")

    for category, totals in sorted(scope.timings.items()):
        table.add_row(
            category,
            str(totals.count),
            f"{totals.total_ms:.1f}",
            f"{totals.avg_ms:.1f}",
        )

    return table


def format_rate(rate: float) -> str:
    return f"{rate:.1%}"


def _get_status_style(status: str) -> str:
    """Get semantic style for a scope status value."""
    if status == "completed":
        return "success"
    elif status in ("in_progress", "blocked"):
        return "warning"
    elif status == "failed":
        return "error"
    return ""


def print_table(table: Table) -> None:
    """Print a Rich Table to the shared console."""
    console.print(table)


__all__ = [
    "create_key_value_table",
    "create_scope_table",
    "create_table",
    "create_timing_table",
    "format_rate",
    "print_table",
]
