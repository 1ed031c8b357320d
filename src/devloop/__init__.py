"""devloop - Dev-loop metrics aggregation and anomaly detection.

Records task, phase, PRD and PRD-set metrics as scopes roll up through
their hierarchy, and watches each PRD execution for degradation, stalls
and deadlocks.

Example:
    # Using CLI
    devloop metrics summary
    devloop metrics show prd-auth --json

    # Using Python
    from devloop.engine import create_run_context
    from devloop.metrics import ScopeKind, ScopeStatus
"""

__version__ = "0.1.0"

__all__ = ["__version__", "main"]


def main() -> None:
    """Main entry point for the devloop CLI.

    This function invokes the Typer app from devloop.cli.main.
    """
    from devloop.cli.main import app

    app()
