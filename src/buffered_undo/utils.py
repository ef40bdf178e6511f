"""Utility functions for buffered-undo."""

from pathlib import Path
import logging
import os
import tempfile

logger = logging.getLogger(__name__)


def humanize_size(size: float) -> str:
    """Convert bytes to human-readable format."""
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024.:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def fsync_dir(path: Path) -> None:
    """Fsync a directory so a rename inside it is durable.

    Best-effort: Windows and some filesystems don't support directory fsync.
    """
    try:
        flags = os.O_RDONLY
        if hasattr(os, "O_DIRECTORY"):
            flags |= os.O_DIRECTORY
        fd = os.open(str(path), flags)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except OSError:
        logger.debug("Directory fsync not supported for %s", path)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Atomically write bytes to a file with crash safety.

    1. Write to a temp file in the target directory and fsync it
    2. Atomic rename onto the target path
    3. Fsync the parent directory so the rename is durable

    Args:
        path: Target file path
        data: Content to write
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(
        mode="wb",
        delete=False,
        dir=path.parent,
        prefix=f".{path.name}.tmp-",
        suffix=""
    ) as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
        tmp = Path(f.name)

    try:
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    fsync_dir(path.parent)


def atomic_write_text(path: Path, text: str) -> None:
    """Atomically write UTF-8 text to a file."""
    atomic_write_bytes(path, text.encode("utf-8"))


def format_tracked_status(file_count: int, total_bytes: int) -> str:
    """Status-line text for the tracked manifest, empty when nothing is tracked.

    Examples:
        (1, 12) -> "Tracked: 1 file (12.0 B)"
        (3, 4096) -> "Tracked: 3 files (4.0 KB)"
    """
    if file_count == 0:
        return ""
    suffix = "file" if file_count == 1 else "files"
    return f"Tracked: {file_count} {suffix} ({humanize_size(total_bytes)})"
