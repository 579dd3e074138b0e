from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


def pytest_sessionstart(session):  # type: ignore[override]
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))
    # Ensure console scripts load in editable style as well
    os.environ.setdefault("PYTHONPATH", str(src))
    # Keep test runs out of ~/.notesync/logs
    os.environ.setdefault("NOTESYNC_LOG_DISABLE_FILE", "1")


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    """Storage root for a FileStorage under test."""
    return tmp_path / "storage"


@pytest.fixture
def repo_dir(tmp_path: Path) -> Path:
    """Empty directory to be used as a directory repository."""
    path = tmp_path / "repo"
    path.mkdir()
    return path
