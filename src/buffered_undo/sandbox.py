"""Sandbox mirror: an isolated, filtered working copy of the real root.

Tool operations run against the sandbox; the real working directory is only
touched through the explicit single-path sync primitives below. Out-of-band
changes (shell commands run inside the sandbox) are discovered by comparing
size + mtime stat maps before and after, which is cheap and approximate:
any hit is re-hashed by the tracker anyway.

Sandbox layout:
    <sandbox_root>/...mirrored tree...
    <sandbox_root>/.undo-redo-meta.json   {"realRoot": "<abs real root>"}
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Callable, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from .constants import SANDBOX_META_FILE
from .core import SandboxProgress, StatDiff, StatEntry, StatMap
from .errors import SandboxNotInitializedError
from .ignore import IgnoreSpec
from .paths import from_posix, to_posix
from .utils import atomic_write_text

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SandboxProgress], None]


class SandboxMeta(BaseModel):
    """Marker recording which real root a sandbox mirrors."""

    model_config = ConfigDict(populate_by_name=True)

    real_root: str = Field(alias="realRoot")


# ---- Meta marker -----------------------------------------------------------

def read_sandbox_meta(sandbox_root: Path) -> Optional[SandboxMeta]:
    meta_path = Path(sandbox_root) / SANDBOX_META_FILE
    try:
        raw = meta_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Corrupt sandbox marker %s; sandbox will be rebuilt", meta_path)
        return None
    if not isinstance(data, dict) or not data.get("realRoot"):
        return None
    return SandboxMeta(**data)


def write_sandbox_meta(sandbox_root: Path, meta: SandboxMeta) -> None:
    atomic_write_text(
        Path(sandbox_root) / SANDBOX_META_FILE,
        json.dumps(meta.model_dump(by_alias=True), indent=2),
    )


# ---- Preparation -----------------------------------------------------------

def _copy_filter(real_root: Path, sandbox_root: Path, ignore_spec: IgnoreSpec):
    """Build a shutil.copytree ignore callback from the ignore spec."""
    sandbox_abs = os.path.abspath(sandbox_root)

    def _ignore(directory: str, names: list) -> set:
        skipped = set()
        for name in names:
            full = os.path.join(directory, name)
            if os.path.abspath(full) == sandbox_abs:
                skipped.add(name)
                continue
            relative = to_posix(os.path.relpath(full, real_root))
            if ignore_spec.is_ignored(relative, is_dir=os.path.isdir(full)):
                skipped.add(name)
        return skipped

    return _ignore


def prepare_sandbox(
    real_root: Path,
    sandbox_root: Path,
    ignore_spec: IgnoreSpec,
    reuse_existing: bool,
) -> bool:
    """Reuse a matching sandbox or rebuild it as a filtered copy of real_root.

    Returns:
        True if an existing sandbox was reused
    """
    real_root = Path(real_root)
    sandbox_root = Path(sandbox_root)

    if reuse_existing:
        meta = read_sandbox_meta(sandbox_root)
        if (
            meta is not None
            and meta.real_root == str(real_root)
            and os.access(sandbox_root, os.R_OK | os.W_OK)
        ):
            logger.debug("Reusing sandbox %s for %s", sandbox_root, real_root)
            return True

    if sandbox_root.exists():
        shutil.rmtree(sandbox_root)
    sandbox_root.mkdir(parents=True, exist_ok=True)

    shutil.copytree(
        real_root,
        sandbox_root,
        symlinks=True,
        ignore=_copy_filter(real_root, sandbox_root, ignore_spec),
        dirs_exist_ok=True,
    )
    write_sandbox_meta(sandbox_root, SandboxMeta(real_root=str(real_root)))
    logger.info("Created sandbox %s from %s", sandbox_root, real_root)
    return False


# ---- Stat scanning ---------------------------------------------------------

def _stat_entry(path: Path) -> Optional[StatEntry]:
    """Stat entry for a regular file (symlinks followed), else None."""
    try:
        st = path.stat()
    except OSError:
        return None
    if not path.is_file():
        return None
    return StatEntry(size=st.st_size, mtime_ms=st.st_mtime_ns / 1_000_000)


def scan_directory_stats(root: Path, ignore_spec: IgnoreSpec) -> StatMap:
    """Walk root and collect size/mtime for every non-ignored file."""
    root = Path(root)
    stats: StatMap = {}
    if not root.exists():
        return stats

    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = to_posix(os.path.relpath(dirpath, root))
        rel_dir = "" if rel_dir == "." else rel_dir

        # Prune ignored directories in place so os.walk skips them
        dirnames[:] = [
            d for d in dirnames
            if ignore_spec.should_traverse(f"{rel_dir}/{d}" if rel_dir else d)
        ]

        for name in filenames:
            relative = f"{rel_dir}/{name}" if rel_dir else name
            if ignore_spec.is_ignored(relative):
                continue
            entry = _stat_entry(Path(dirpath) / name)
            if entry is not None:
                stats[relative] = entry

    return stats


def update_stats_for_file(
    sandbox_root: Path,
    stats: StatMap,
    relative_path: str,
    ignore_spec: IgnoreSpec,
) -> None:
    """Refresh one path's stat entry; ignored or vanished paths are dropped."""
    if ignore_spec.is_ignored(relative_path):
        stats.pop(relative_path, None)
        return
    entry = _stat_entry(Path(sandbox_root) / from_posix(relative_path))
    if entry is None:
        stats.pop(relative_path, None)
    else:
        stats[relative_path] = entry


def diff_stats(before: StatMap, after: StatMap) -> StatDiff:
    """Partition paths into added/changed/removed by size and mtime."""
    diff = StatDiff()
    for path, entry in after.items():
        previous = before.get(path)
        if previous is None:
            diff.added.append(path)
        elif previous.size != entry.size or previous.mtime_ms != entry.mtime_ms:
            diff.changed.append(path)
    for path in before:
        if path not in after:
            diff.removed.append(path)
    return diff


# ---- Single-path sync ------------------------------------------------------

def _copy_file(source: Path, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, target)


def sync_file_to_sandbox(relative_path: str, real_root: Path, sandbox_root: Path) -> None:
    """Copy one file from the real root into the sandbox."""
    rel = from_posix(relative_path)
    _copy_file(Path(real_root) / rel, Path(sandbox_root) / rel)


def sync_file_from_sandbox(relative_path: str, sandbox_root: Path, real_root: Path) -> None:
    """Copy one file from the sandbox out to the real root."""
    rel = from_posix(relative_path)
    _copy_file(Path(sandbox_root) / rel, Path(real_root) / rel)


def remove_file_from_disk(relative_path: str, real_root: Path) -> None:
    (Path(real_root) / from_posix(relative_path)).unlink(missing_ok=True)


def remove_file_from_sandbox(relative_path: str, sandbox_root: Path) -> None:
    (Path(sandbox_root) / from_posix(relative_path)).unlink(missing_ok=True)


def ensure_sandbox_file(relative_path: str, real_root: Path, sandbox_root: Path) -> None:
    """Hydrate a sandbox path from the real root on first touch.

    No-op when the sandbox already has the file or the real root does not.
    """
    rel = from_posix(relative_path)
    sandbox_path = Path(sandbox_root) / rel
    if sandbox_path.exists() and os.access(sandbox_path, os.R_OK):
        return

    real_path = Path(real_root) / rel
    try:
        if not real_path.is_file():
            return
        _copy_file(real_path, sandbox_path)
    except FileNotFoundError:
        return
    logger.debug("Hydrated sandbox file %s", relative_path)


# ---- Mirror ----------------------------------------------------------------

class SandboxMirror:
    """Keeps a sandbox tree synchronized with a real working directory."""

    def __init__(
        self,
        real_root: Path,
        sandbox_root: Path,
        extra_ignores: Iterable[str] = (),
        reuse_existing: bool = True,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.real_root = Path(real_root)
        self.sandbox_root = Path(sandbox_root)
        self.extra_ignores = list(extra_ignores)
        self.reuse_existing = reuse_existing
        self.on_progress = on_progress
        self._stats: StatMap = {}
        self._ignore_spec: Optional[IgnoreSpec] = None

    def _report(self, stage: str, message: str, current: Optional[int] = None, total: Optional[int] = None) -> None:
        if self.on_progress:
            self.on_progress(SandboxProgress(stage=stage, message=message, current=current, total=total))

    async def initialize(self) -> bool:
        """Prepare the sandbox and build the stat baseline.

        Returns:
            True if an existing sandbox was reused and reconciled
        """
        extra = [f"/{SANDBOX_META_FILE}", *self.extra_ignores]
        self._ignore_spec = await asyncio.to_thread(IgnoreSpec, self.real_root, extra)

        self._report("prepare", "Preparing sandbox...")
        reused = await asyncio.to_thread(
            prepare_sandbox,
            self.real_root,
            self.sandbox_root,
            self._ignore_spec,
            self.reuse_existing,
        )

        if not reused:
            self._report("scan", "Scanning sandbox...", 2, 2)
            self._stats = await self.rescan()
            self._report("done", "Sandbox ready.", 2, 2)
            return False

        self._report("scan", "Scanning sandbox...", 2, 3)
        sandbox_stats = await self.rescan()
        real_stats = await asyncio.to_thread(scan_directory_stats, self.real_root, self._ignore_spec)

        self._report("sync", "Synchronizing sandbox...", 3, 3)
        await asyncio.to_thread(self._reconcile, sandbox_stats, real_stats)
        await asyncio.to_thread(
            write_sandbox_meta, self.sandbox_root, SandboxMeta(real_root=str(self.real_root))
        )

        self._stats = sandbox_stats
        self._report("done", "Sandbox ready.", 3, 3)
        return True

    def _reconcile(self, sandbox_stats: StatMap, real_stats: StatMap) -> None:
        """Bring a reused sandbox up to date with the real root (mutates sandbox_stats)."""
        diff = diff_stats(sandbox_stats, real_stats)
        for relative_path in diff.added + diff.changed:
            sync_file_to_sandbox(relative_path, self.real_root, self.sandbox_root)
            update_stats_for_file(self.sandbox_root, sandbox_stats, relative_path, self.ignore_spec)
        for relative_path in diff.removed:
            remove_file_from_sandbox(relative_path, self.sandbox_root)
            sandbox_stats.pop(relative_path, None)
        logger.info(
            "Reconciled sandbox: %d added, %d changed, %d removed",
            len(diff.added), len(diff.changed), len(diff.removed),
        )

    @property
    def ignore_spec(self) -> IgnoreSpec:
        if self._ignore_spec is None:
            raise SandboxNotInitializedError()
        return self._ignore_spec

    # ---- stat map ----

    def get_stats(self) -> StatMap:
        return self._stats

    def set_stats(self, stats: StatMap) -> None:
        self._stats = stats

    async def rescan(self) -> StatMap:
        return await asyncio.to_thread(scan_directory_stats, self.sandbox_root, self.ignore_spec)

    async def update_file(self, relative_path: str) -> None:
        await asyncio.to_thread(
            update_stats_for_file, self.sandbox_root, self._stats, relative_path, self.ignore_spec
        )

    def is_ignored(self, relative_path: str) -> bool:
        return self.ignore_spec.is_ignored(relative_path)

    # ---- targeted sync ----

    async def ensure_file(self, relative_path: str) -> None:
        await asyncio.to_thread(ensure_sandbox_file, relative_path, self.real_root, self.sandbox_root)

    async def sync_to_sandbox(self, relative_path: str) -> None:
        await asyncio.to_thread(sync_file_to_sandbox, relative_path, self.real_root, self.sandbox_root)

    async def sync_from_sandbox(self, relative_path: str) -> None:
        await asyncio.to_thread(sync_file_from_sandbox, relative_path, self.sandbox_root, self.real_root)

    async def remove_from_disk(self, relative_path: str) -> None:
        await asyncio.to_thread(remove_file_from_disk, relative_path, self.real_root)

    async def remove_from_sandbox(self, relative_path: str) -> None:
        await asyncio.to_thread(remove_file_from_sandbox, relative_path, self.sandbox_root)
