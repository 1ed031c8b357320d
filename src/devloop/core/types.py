"""Core types for devloop - Result type and shared aliases.

This module provides:
- Result[T, E]: explicit success/failure values for expected failures
- Type aliases used across metrics and detection modules
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast


@dataclass(frozen=True, slots=True)
class Result[T, E]:
    """Either an Ok value or an Err value.

    Expected failures (unreadable snapshot, failed write) travel as ``Result``
    so callers decide whether to log, retry or fall back. Exceptions stay
    reserved for programming errors.

    Usage:
        result = store.load()
        if result.is_ok:
            snapshot = result.value
        else:
            log.error("persistence.snapshot.load_failed", error=str(result.error))
    """

    _value: T | None
    _error: E | None
    _is_ok: bool

    @classmethod
    def ok(cls, value: T) -> Result[T, E]:
        """Wrap a success value."""
        return cls(_value=value, _error=None, _is_ok=True)

    @classmethod
    def err(cls, error: E) -> Result[T, E]:
        """Wrap an error value."""
        return cls(_value=None, _error=error, _is_ok=False)

    @property
    def is_ok(self) -> bool:
        return self._is_ok

    @property
    def is_err(self) -> bool:
        return not self._is_ok

    def __repr__(self) -> str:
        if self._is_ok:
            return f"Ok({self._value!r})"
        return f"Err({self._error!r})"

    @property
    def value(self) -> T:
        """The Ok value. Raises ValueError on an Err result."""
        if not self._is_ok:
            msg = "Cannot access value on Err result"
            raise ValueError(msg)
        return cast(T, self._value)

    @property
    def error(self) -> E:
        """The Err value. Raises ValueError on an Ok result."""
        if self._is_ok:
            msg = "Cannot access error on Ok result"
            raise ValueError(msg)
        return cast(E, self._error)

    def unwrap(self) -> T:
        """Return the Ok value or raise ValueError carrying the error."""
        if self._is_ok:
            return cast(T, self._value)
        raise ValueError(str(self._error))

    def unwrap_or(self, default: T) -> T:
        """Return the Ok value, or ``default`` when this is an Err."""
        if self._is_ok:
            return cast(T, self._value)
        return default

    def map[U](self, fn: Callable[[T], U]) -> Result[U, E]:
        """Apply ``fn`` to the Ok value; pass an Err through unchanged."""
        if self._is_ok:
            return Result.ok(fn(cast(T, self._value)))
        return Result.err(cast(E, self._error))


ScopeId = str
"""Identifier of a scope (task, phase, PRD or PRD set)."""

Payload = dict[str, Any]
"""JSON-serializable event or ingestion payload."""

Rate = float
"""A ratio between 0.0 and 1.0."""
