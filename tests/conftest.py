"""Shared test fixtures and utilities."""

from pathlib import Path

import pytest

from buffered_undo.constants import CACHE_DIR_ENV
from buffered_undo.storage import make_session_storage
from buffered_undo.tracker import SnapshotTracker


@pytest.fixture
def cache_dir(tmp_path, monkeypatch):
    """Isolated cache root, also exported through the environment."""
    path = tmp_path / "cache"
    monkeypatch.setenv(CACHE_DIR_ENV, str(path))
    return path


@pytest.fixture
def real_root(tmp_path):
    """Empty project working directory."""
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def storage(cache_dir):
    """Session storage with its directories created."""
    storage = make_session_storage("test-session", cache_dir)
    storage.ensure()
    return storage


@pytest.fixture
def sandbox_root(storage):
    path = storage.sandbox_root
    path.mkdir(parents=True, exist_ok=True)
    return path


@pytest.fixture
def tracker(storage, real_root, sandbox_root):
    """Tracker over the session storage (sandbox populated by the test)."""
    return SnapshotTracker(storage.blobs, storage.manifests, real_root, sandbox_root)


@pytest.fixture
def write_both(real_root, sandbox_root):
    """Write the same content under both roots."""
    def _write(relative_path: str, content: str) -> None:
        for root in (real_root, sandbox_root):
            path = Path(root) / relative_path
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
    return _write
