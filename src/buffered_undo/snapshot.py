"""Single-file snapshots: read a path, classify it, store its bytes."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .core import FileState
from .hashing import compute_bytes_digest
from .storage.base import BlobStore


def is_binary_content(data: bytes) -> bool:
    """Content is binary if it has a NUL byte or is not valid UTF-8."""
    if b"\x00" in data:
        return True
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return True
    return False


@dataclass(frozen=True)
class FileSnapshot:
    """Content of one file at one moment (data is None when missing)."""

    exists: bool
    data: Optional[bytes] = None
    hash: Optional[str] = None
    binary: Optional[bool] = None

    @property
    def size(self) -> Optional[int]:
        return len(self.data) if self.data is not None else None


def read_snapshot(path: Path) -> FileSnapshot:
    """Read a file into a snapshot.

    A missing file (or a path whose parent is not a directory) is a valid
    snapshot with ``exists=False``. Any other I/O error propagates.
    """
    try:
        data = path.read_bytes()
    except (FileNotFoundError, NotADirectoryError):
        return FileSnapshot(exists=False)
    return FileSnapshot(
        exists=True,
        data=data,
        hash=compute_bytes_digest(data),
        binary=is_binary_content(data),
    )


def store_snapshot(blobs: BlobStore, snapshot: FileSnapshot) -> FileState:
    """Persist snapshot bytes and return the manifest entry describing them."""
    if not snapshot.exists or snapshot.data is None:
        return FileState.missing()
    digest = blobs.put(snapshot.data)
    return FileState(
        exists=True,
        hash=digest,
        size=snapshot.size,
        binary=snapshot.binary,
    )
