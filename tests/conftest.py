"""Pytest configuration for test suite.

Ensures the project root is on ``sys.path`` so imports like
``import seo_diagnostics`` resolve correctly regardless of the working
directory pytest chooses.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_project_root_on_syspath() -> None:
    project_root = Path(__file__).resolve().parents[1]
    project_root_str = str(project_root)
    if project_root_str not in sys.path:
        # Prepend to prefer local sources over site-packages
        sys.path.insert(0, project_root_str)


_ensure_project_root_on_syspath()


@pytest.fixture(autouse=True)
def reset_worker_registry():
    """Restore the default worker registry around each test."""
    from seo_diagnostics.workers import reset_workers

    reset_workers()
    yield
    reset_workers()
