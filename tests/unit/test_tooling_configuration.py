"""Test that packaging and tooling are configured correctly."""

from pathlib import Path
import tomllib

ROOT = Path(__file__).parent.parent.parent


def _pyproject() -> dict:
    return tomllib.loads((ROOT / "pyproject.toml").read_text())


def _names(deps: list[str]) -> set[str]:
    return {dep.split(">=")[0].split("==")[0].split("[")[0] for dep in deps}


def test_runtime_dependencies_configured():
    """Test that all runtime dependencies are in pyproject.toml."""
    dep_names = _names(_pyproject()["project"]["dependencies"])

    for dep in ["typer", "pydantic", "structlog", "rich", "pyyaml", "python-dotenv"]:
        assert dep in dep_names, f"Required dependency '{dep}' not found in pyproject.toml"


def test_test_dependencies_configured():
    """Test that the test extra carries the pytest stack."""
    dep_names = _names(_pyproject()["project"]["optional-dependencies"]["test"])

    for dep in ["pytest", "pytest-asyncio", "pytest-cov"]:
        assert dep in dep_names


def test_ruff_line_length():
    """Test that ruff line length is set to 100."""
    assert _pyproject()["tool"]["ruff"]["line-length"] == 100


def test_mypy_strict():
    """Test that mypy runs in strict mode."""
    assert _pyproject()["tool"]["mypy"]["strict"] is True


def test_pytest_asyncio_mode():
    """Test that pytest asyncio_mode is set to 'auto'."""
    pytest_config = _pyproject()["tool"]["pytest"]["ini_options"]
    assert pytest_config["asyncio_mode"] == "auto", "pytest asyncio_mode should be 'auto'"


def test_console_script_points_at_main():
    """Test that the devloop script targets devloop:main."""
    assert _pyproject()["project"]["scripts"]["devloop"] == "devloop:main"


def test_py_typed_exists():
    """Test that py.typed marker exists."""
    assert (ROOT / "src" / "devloop" / "py.typed").is_file()
