"""Metrics command group for devloop.

Read-only views of the scope snapshot written by a running engine.
"""

from pathlib import Path
from typing import Annotated

import typer

from devloop.cli.formatters import console
from devloop.cli.formatters.panels import print_error, print_info
from devloop.cli.formatters.tables import (
    create_key_value_table,
    create_scope_table,
    create_timing_table,
    format_rate,
    print_table,
)
from devloop.config.loader import get_snapshot_path, load_config_or_default
from devloop.core.errors import ConfigError
from devloop.metrics.aggregates import safe_rate
from devloop.metrics.scope import Scope, ScopeKind, StoreSnapshot
from devloop.observability.logging import set_console_logging
from devloop.persistence.snapshot import SnapshotStore

app = typer.Typer(
    name="metrics",
    help="Inspect recorded dev-loop metrics.",
    no_args_is_help=True,
)

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to config.yaml."),
]
SnapshotOption = Annotated[
    Path | None,
    typer.Option("--snapshot", "-s", help="Snapshot file (overrides configuration)."),
]


def _load_snapshot(config_path: Path | None, snapshot_path: Path | None) -> StoreSnapshot:
    """Load the snapshot or exit with an error panel."""
    if snapshot_path is None:
        try:
            config = load_config_or_default(config_path)
        except ConfigError as e:
            print_error(e.message, title="Configuration Error")
            raise typer.Exit(1) from e
        snapshot_path = get_snapshot_path(config)

    result = SnapshotStore(snapshot_path).load()
    if result.is_err:
        print_error(result.error.message, title="Snapshot Error")
        raise typer.Exit(1)
    if result.value is None:
        print_info(f"No snapshot found at {snapshot_path}")
        raise typer.Exit(0)
    return result.value


@app.command("list")
def list_scopes(
    kind: Annotated[
        ScopeKind | None,
        typer.Option("--kind", "-k", help="Only show scopes of this kind."),
    ] = None,
    config_path: ConfigOption = None,
    snapshot_path: SnapshotOption = None,
) -> None:
    """List recorded scopes."""
    snapshot = _load_snapshot(config_path, snapshot_path)
    scopes = snapshot.of_kind(kind) if kind else list(snapshot.scopes)
    if not scopes:
        print_info("No scopes recorded.")
        return
    title = f"{kind.value} scopes" if kind else "Scopes"
    print_table(create_scope_table(sorted(scopes, key=lambda s: s.start_time), title))


@app.command()
def show(
    scope_id: Annotated[str, typer.Argument(help="Scope to display.")],
    kind: Annotated[
        ScopeKind | None,
        typer.Option("--kind", "-k", help="Kind of the scope when ids repeat across kinds."),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the raw scope as JSON."),
    ] = False,
    config_path: ConfigOption = None,
    snapshot_path: SnapshotOption = None,
) -> None:
    """Show one scope with its counters, tokens and timings."""
    if as_json:
        set_console_logging(False)
    snapshot = _load_snapshot(config_path, snapshot_path)
    scope = snapshot.get(scope_id, kind)
    if scope is None:
        print_error(f"Scope not found: {scope_id}")
        raise typer.Exit(1)

    if as_json:
        console.print_json(scope.model_dump_json())
        return

    print_table(create_key_value_table(_scope_overview(scope), f"Scope {scope.id}"))
    if scope.timings:
        print_table(create_timing_table(scope))


@app.command()
def summary(
    config_path: ConfigOption = None,
    snapshot_path: SnapshotOption = None,
) -> None:
    """Summarize the snapshot across all scope kinds."""
    snapshot = _load_snapshot(config_path, snapshot_path)
    roots = [scope for scope in snapshot.scopes if not _has_parent(snapshot, scope)]

    data: dict[str, object] = {"saved_at": snapshot.saved_at.isoformat()}
    for kind in ScopeKind:
        data[f"{kind.value} scopes"] = len(snapshot.of_kind(kind))

    # Roots carry every descendant's tasks and tokens through roll-up.
    completed = sum(scope.rollup.completed for scope in roots)
    failed = sum(scope.rollup.failed for scope in roots)
    data["tasks completed"] = completed
    data["tasks failed"] = failed
    data["task success rate"] = format_rate(safe_rate(completed, completed + failed))
    data["input tokens"] = sum(scope.tokens.input for scope in roots)
    data["output tokens"] = sum(scope.tokens.output for scope in roots)
    data["cost"] = f"${sum(scope.tokens.cost for scope in roots):.4f}"
    print_table(create_key_value_table(data, "Metrics Summary"))


def _has_parent(snapshot: StoreSnapshot, scope: Scope) -> bool:
    parent_key = scope.parent_key
    return parent_key is not None and snapshot.get(parent_key[1], parent_key[0]) is not None


def _scope_overview(scope: Scope) -> dict[str, object]:
    overview: dict[str, object] = {
        "kind": scope.kind.value,
        "parent": scope.parent_id or "-",
        "status": scope.status.value,
        "started": scope.start_time.isoformat(),
        "ended": scope.end_time.isoformat() if scope.end_time else "-",
        "duration_ms": scope.duration_ms if scope.duration_ms is not None else "-",
        "total": scope.counters.total,
        "completed": scope.counters.completed,
        "failed": scope.counters.failed,
        "blocked": scope.counters.blocked,
        "success rate": format_rate(scope.counters.success_rate),
        "tasks below": f"{scope.rollup.completed}/{scope.rollup.total} completed",
        "input tokens": scope.tokens.input,
        "output tokens": scope.tokens.output,
        "cost": f"${scope.tokens.cost:.4f}",
    }
    for key, value in scope.metadata.items():
        overview[f"meta.{key}"] = value
    return overview


__all__ = ["app"]
