"""Unit tests for devloop.core.errors module."""

from devloop.core.errors import (
    ConfigError,
    DevLoopError,
    DuplicateScopeError,
    PersistenceError,
    ScopeError,
    UnknownScopeError,
)


class TestDevLoopError:
    """Test DevLoopError base class."""

    def test_stores_message(self) -> None:
        """DevLoopError stores the message."""
        error = DevLoopError("test message")
        assert error.message == "test message"
        assert str(error) == "test message"

    def test_default_empty_details(self) -> None:
        """DevLoopError defaults to empty details."""
        assert DevLoopError("test").details == {}

    def test_str_with_details(self) -> None:
        """String representation includes details."""
        error = DevLoopError("test", details={"key": "value"})
        assert "test" in str(error)
        assert "key" in str(error)


class TestScopeErrors:
    """Test the scope error family."""

    def test_duplicate_scope_error_carries_scope(self) -> None:
        """DuplicateScopeError records the scope id and kind."""
        error = DuplicateScopeError("exists", scope_id="task-1", kind="task")
        assert isinstance(error, ScopeError)
        assert isinstance(error, DevLoopError)
        assert error.scope_id == "task-1"
        assert error.kind == "task"

    def test_unknown_scope_error_is_scope_error(self) -> None:
        """UnknownScopeError inherits from ScopeError."""
        error = UnknownScopeError("missing", scope_id="ghost")
        assert isinstance(error, ScopeError)
        assert error.kind is None


class TestConfigError:
    """Test ConfigError."""

    def test_stores_key_and_file(self) -> None:
        """ConfigError stores the offending key and file."""
        error = ConfigError("bad", config_key="metrics.history_capacity", config_file="c.yaml")
        assert error.config_key == "metrics.history_capacity"
        assert error.config_file == "c.yaml"


class TestPersistenceError:
    """Test PersistenceError."""

    def test_stores_operation_and_path(self) -> None:
        """PersistenceError stores the failed operation and path."""
        error = PersistenceError("disk full", operation="write", path="/tmp/m.json")
        assert error.operation == "write"
        assert error.path == "/tmp/m.json"
        assert str(error) == "disk full"
