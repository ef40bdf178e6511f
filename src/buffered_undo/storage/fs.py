"""Filesystem content-addressed blob store.

Blobs live flat under ``<session>/blobs/<sha256-hex>``. Writes go through a
temp file and an atomic rename while holding a store-wide portalocker lock,
so sessions sharing a cache root never observe a half-written blob.
"""

from __future__ import annotations
import contextlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

import portalocker

from ..errors import BlobNotFoundError
from ..hashing import compute_bytes_digest, validate_digest
from ..utils import fsync_dir

logger = logging.getLogger(__name__)


class FilesystemBlobStore:
    """
    Local content-addressed storage for file snapshots.

    Attributes:
        root: Directory holding one file per blob, named by digest
        lock_path: Lock file guarding writes into root
    """

    def __init__(self, root: Path, lock_path: Optional[Path] = None):
        self.root = Path(root)
        self.lock_path = Path(lock_path) if lock_path else self.root.parent / f"{self.root.name}.lock"

    def path_for(self, digest: str) -> Path:
        """Get the storage path for a digest.

        Raises:
            ValueError: If digest is not a valid sha256 hex string
        """
        return self.root / validate_digest(digest)

    def has(self, digest: str) -> bool:
        try:
            return self.path_for(digest).exists()
        except ValueError:
            return False

    def put(self, data: bytes) -> str:
        """Store content, returning its digest. Idempotent."""
        digest = compute_bytes_digest(data)
        dst = self.path_for(digest)

        # Fast path: already stored
        if dst.exists():
            return digest

        self.root.mkdir(parents=True, exist_ok=True)
        with portalocker.Lock(str(self.lock_path), "w", timeout=300):
            # Another writer may have stored it while we waited
            if dst.exists():
                return digest

            with tempfile.NamedTemporaryFile(
                prefix=".blob-",
                dir=str(self.root),
                delete=False
            ) as tmp:
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
                tmppath = Path(tmp.name)

            try:
                os.replace(str(tmppath), str(dst))
            except BaseException:
                with contextlib.suppress(OSError):
                    tmppath.unlink()
                raise
            fsync_dir(self.root)

        logger.debug("Stored blob %s (%d bytes)", digest, len(data))
        return digest

    def get(self, digest: str) -> bytes:
        """Read blob content.

        Raises:
            BlobNotFoundError: If the blob is absent
        """
        path = self.path_for(digest)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise BlobNotFoundError(digest) from None

    def count(self) -> int:
        """Number of stored blobs."""
        if not self.root.exists():
            return 0
        return sum(1 for p in self.root.iterdir() if p.is_file() and self.has(p.name))
