"""Pytest configuration for promotex tests."""
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _no_spinner(monkeypatch):
    """Rich live displays interfere with captured output."""
    monkeypatch.setenv("PROMOTEX_SPINNER", "0")


def pytest_sessionfinish(session, exitstatus):
    """Fail the run if --cov was requested but no coverage data was written.

    Catches tests that exercise ``src/promotex`` by path instead of importing
    the installed ``promotex`` package.
    """
    cov_enabled = any("--cov" in str(arg) for arg in session.config.args)
    if not cov_enabled:
        return

    coverage_files = list(Path.cwd().glob(".coverage*"))
    if not coverage_files:
        pytest.exit(
            "Coverage was enabled but no data was collected. "
            "Check that tests import from 'promotex' (the package) not 'src/promotex' (filesystem path).",
            returncode=1,
        )
