"""Error hierarchy for the devloop metrics engine.

Exceptions here are used two ways: raised for collaborator bugs that must
surface loudly (a duplicate scope), and carried inside ``Result`` for expected
failures at the persistence boundary.

Exception Hierarchy:
    DevLoopError (base)
    ├── ScopeError           - Scope store coordination failures
    │   ├── DuplicateScopeError - start_scope on an id that already exists
    │   └── UnknownScopeError   - operation on an id that was never started
    ├── ConfigError          - Configuration loading and validation issues
    └── PersistenceError     - Snapshot read/write issues
"""

from typing import Any


class DevLoopError(Exception):
    """Base exception for all devloop errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dict with additional context.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class ScopeError(DevLoopError):
    """Error raised by scope store operations.

    Attributes:
        scope_id: Identifier of the scope involved.
        kind: Scope kind value (task, phase, prd, prd_set) if known.
    """

    def __init__(
        self,
        message: str,
        *,
        scope_id: str | None = None,
        kind: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.scope_id = scope_id
        self.kind = kind


class DuplicateScopeError(ScopeError):
    """Raised when a scope of the same kind and id is started while still running.

    This is the only store operation that fails loudly, because it signals a
    bug in the collaborator that owns the unit of work.
    """


class UnknownScopeError(ScopeError):
    """A scope id that was never started.

    Never raised from ``record_*`` paths; those log a warning instead. Used as
    the error value of ``Result`` returns on query helpers.
    """


class ConfigError(DevLoopError):
    """Error from configuration operations.

    Attributes:
        config_key: The configuration key that caused the error.
        config_file: Path to the config file if applicable.
    """

    def __init__(
        self,
        message: str,
        *,
        config_key: str | None = None,
        config_file: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.config_key = config_key
        self.config_file = config_file


class PersistenceError(DevLoopError):
    """Error from snapshot storage operations.

    Attributes:
        operation: The operation that failed (e.g., "write", "parse").
        path: The snapshot file involved if applicable.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        path: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.operation = operation
        self.path = path
