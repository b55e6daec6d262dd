"""Test fixtures for integration and unit tests."""

from pathlib import Path

_FIXTURES_DIR = Path(__file__).parent


def fixture_path(*parts: str) -> Path:
    """Resolve a path relative to the test/fixtures/ directory."""
    return _FIXTURES_DIR.joinpath(*parts)


def sample_config_dir() -> str:
    """A complete config folder: automation.json, profile.json, targets/demo.json."""
    return str(fixture_path("config"))
