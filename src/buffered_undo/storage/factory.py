"""Factory for per-session storage."""

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import platformdirs

from ..constants import (
    BASE_FILE,
    BLOB_LOCK_FILE,
    BLOBS_DIR,
    CACHE_DIR_ENV,
    LEAVES_DIR,
    SANDBOX_DIR,
    TOOL_OUTPUT_DIR,
)
from .fs import FilesystemBlobStore
from .manifests import FilesystemManifestStore

logger = logging.getLogger(__name__)


def get_default_cache_dir() -> Path:
    """Platform-appropriate cache root shared by all sessions."""
    return Path(platformdirs.user_cache_dir("buffered-undo", "buffered-undo"))


def resolve_cache_dir(cache_dir: Optional[Path] = None) -> Path:
    """Pick the cache root: explicit argument, then environment, then default."""
    if cache_dir:
        return Path(cache_dir).expanduser()
    env_dir = os.environ.get(CACHE_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser()
    return get_default_cache_dir()


@dataclass
class SessionStorage:
    """All persisted state of one session, rooted at ``<cache_root>/<session_id>``."""

    root: Path
    blobs: FilesystemBlobStore
    manifests: FilesystemManifestStore

    @property
    def sandbox_root(self) -> Path:
        return self.root / SANDBOX_DIR

    @property
    def tool_output_dir(self) -> Path:
        return self.root / TOOL_OUTPUT_DIR

    def ensure(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self.blobs.root.mkdir(parents=True, exist_ok=True)
        self.manifests.ensure()

    def destroy(self) -> None:
        """Delete everything persisted for this session."""
        if self.root.exists():
            logger.info("Removing session cache %s", self.root)
            shutil.rmtree(self.root)


def make_session_storage(session_id: str, cache_dir: Optional[Path] = None) -> SessionStorage:
    """
    Create storage for a session.

    Args:
        session_id: Opaque session identifier (one directory per session)
        cache_dir: Cache root override

    Returns:
        SessionStorage (directories are created by ``ensure()``)

    Raises:
        ValueError: If session_id is empty or not a single path component
    """
    if not session_id or session_id in (".", "..") or "/" in session_id or os.sep in session_id:
        raise ValueError(f"Invalid session id: {session_id!r}")

    root = resolve_cache_dir(cache_dir) / session_id
    return SessionStorage(
        root=root,
        blobs=FilesystemBlobStore(root / BLOBS_DIR, lock_path=root / BLOB_LOCK_FILE),
        manifests=FilesystemManifestStore(root / BASE_FILE, root / LEAVES_DIR),
    )
