"""Pytest configuration for tbexport test runs."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


def pytest_sessionstart() -> None:
    """Add src and repository root to sys.path for test imports."""
    project_root = Path(__file__).resolve().parent.parent
    for import_root in (project_root, project_root / "src"):
        if str(import_root) not in sys.path:
            sys.path.insert(0, str(import_root))


@pytest.fixture(autouse=True)
def _isolated_export_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep host TBEXPORT_* settings out of config parsing."""
    for variable in list(os.environ):
        if variable.startswith("TBEXPORT_"):
            monkeypatch.delenv(variable)
