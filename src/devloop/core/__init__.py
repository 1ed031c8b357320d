"""devloop core module - shared types and errors."""

from devloop.core.errors import (
    ConfigError,
    DevLoopError,
    DuplicateScopeError,
    PersistenceError,
    ScopeError,
    UnknownScopeError,
)
from devloop.core.types import Payload, Rate, Result, ScopeId

__all__ = [
    # Types
    "Result",
    "Payload",
    "Rate",
    "ScopeId",
    # Errors
    "DevLoopError",
    "ScopeError",
    "DuplicateScopeError",
    "UnknownScopeError",
    "ConfigError",
    "PersistenceError",
]
