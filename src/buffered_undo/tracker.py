"""Snapshot tracker: the state machine behind leaf save/restore.

The tracker owns three manifests:

- ``base``: first observed state of every touched path. Grows lazily and
  monotonically, persisted on every addition.
- ``tracked``: state for the current leaf, kept in memory until
  ``save_leaf``.
- a read-through cache of leaf manifests over the manifest store.

All filesystem work runs in a worker thread via ``asyncio.to_thread``; the
tracker itself has no locking and expects its coroutines to be awaited one
at a time per session.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional

from .core import FileState, Manifest, TrackedStats, overlay
from .errors import NothingToRestoreError
from .paths import from_posix, to_relative_path
from .snapshot import read_snapshot, store_snapshot
from .storage.base import BlobStore, ManifestStore

logger = logging.getLogger(__name__)

StatsCallback = Callable[[TrackedStats], None]


def apply_manifest(blobs: BlobStore, manifest: Manifest, target_root: Path) -> None:
    """Write every manifest entry under target_root.

    Entries without content are deleted (already-missing paths are fine);
    entries with content are written from the blob store, creating parent
    directories as needed.
    """
    for relative_path, entry in manifest.items():
        abs_path = Path(target_root) / from_posix(relative_path)
        if not entry.exists or not entry.hash:
            abs_path.unlink(missing_ok=True)
            continue
        data = blobs.get(entry.hash)
        abs_path.parent.mkdir(parents=True, exist_ok=True)
        abs_path.write_bytes(data)
    logger.debug("Applied %d manifest entries to %s", len(manifest), target_root)


class SnapshotTracker:
    """Tracks file versions per leaf for one session."""

    def __init__(
        self,
        blobs: BlobStore,
        manifests: ManifestStore,
        real_root: Path,
        sandbox_root: Path,
        on_stats: Optional[StatsCallback] = None,
    ):
        self.blobs = blobs
        self.manifests = manifests
        self.real_root = Path(real_root)
        self.sandbox_root = Path(sandbox_root)
        self.on_stats = on_stats
        self._base: Manifest = {}
        self._tracked: Manifest = {}
        self._leaf_cache: Dict[str, Manifest] = {}

    # ---- base manifest ----------------------------------------------------

    async def load_base(self) -> None:
        """Populate base from the store; leaves it empty if none was saved."""
        base = await asyncio.to_thread(self.manifests.read_base)
        if base is not None:
            self._base = base
        logger.debug("Loaded base manifest with %d entries", len(self._base))

    def get_base_manifest(self) -> Manifest:
        return dict(self._base)

    async def ensure_base_from_sandbox(self, relative_path: str) -> None:
        await self.ensure_base(relative_path, self.sandbox_root)

    async def ensure_base_from_disk(self, relative_path: str) -> None:
        """Record base from the real root (used for paths first seen via shell)."""
        await self.ensure_base(relative_path, self.real_root)

    async def ensure_base(self, relative_path: str, source_root: Path) -> None:
        """Record the first observed state of a path, once."""
        if relative_path in self._base:
            return
        abs_path = Path(source_root) / from_posix(relative_path)
        entry = await asyncio.to_thread(self._snapshot_to_store, abs_path)
        self._base[relative_path] = entry
        await asyncio.to_thread(self.manifests.write_base, dict(self._base))
        logger.debug("Base recorded for %s (exists=%s)", relative_path, entry.exists)

    # ---- tracked manifest -------------------------------------------------

    def get_tracked_manifest(self) -> Manifest:
        return dict(self._tracked)

    def set_tracked_manifest(self, manifest: Manifest) -> None:
        self._tracked = dict(manifest)
        self._emit_stats()

    async def update_from_sandbox(self, relative_path: str) -> FileState:
        """Hash the sandbox copy of a path into the tracked manifest."""
        abs_path = self.sandbox_root / from_posix(relative_path)
        entry = await asyncio.to_thread(self._snapshot_to_store, abs_path)
        self._tracked[relative_path] = entry
        self._emit_stats()
        return entry

    def mark_deleted(self, relative_path: str) -> None:
        self._tracked[relative_path] = FileState.missing()
        self._emit_stats()

    def get_tracked_stats(self) -> TrackedStats:
        file_count = 0
        total_bytes = 0
        for entry in self._tracked.values():
            if not entry.exists:
                continue
            file_count += 1
            total_bytes += entry.size or 0
        return TrackedStats(file_count=file_count, total_bytes=total_bytes)

    # ---- leaves -----------------------------------------------------------

    async def save_leaf(self, leaf_id: Optional[str]) -> None:
        """Persist the tracked manifest as the full manifest of leaf_id."""
        if not leaf_id:
            return
        snapshot = dict(self._tracked)
        self._leaf_cache[leaf_id] = snapshot
        await asyncio.to_thread(self.manifests.write_leaf, leaf_id, dict(snapshot))

    async def load_leaf(self, leaf_id: str) -> Optional[Manifest]:
        cached = self._leaf_cache.get(leaf_id)
        if cached is not None:
            return dict(cached)
        manifest = await asyncio.to_thread(self.manifests.read_leaf, leaf_id)
        if manifest is None:
            return None
        self._leaf_cache[leaf_id] = manifest
        return dict(manifest)

    async def restore_leaf(self, leaf_id: Optional[str], apply_roots: Iterable[Path]) -> bool:
        """Apply base + leaf to every root, then make it the tracked manifest.

        A leaf id with no saved manifest is a no-op.

        Returns:
            True if anything was applied
        """
        leaf_manifest: Optional[Manifest] = None
        if leaf_id:
            leaf_manifest = await self.load_leaf(leaf_id)
            if leaf_manifest is None:
                logger.debug("No snapshot for leaf %s; nothing restored", leaf_id)
                return False

        effective = overlay(self._base, leaf_manifest)
        for root in apply_roots:
            await asyncio.to_thread(apply_manifest, self.blobs, effective, Path(root))

        # Roots are written before tracked state moves
        self.set_tracked_manifest(effective)
        logger.info("Restored leaf %s (%d paths)", leaf_id or "<base>", len(effective))
        return True

    async def restore_leaf_strict(self, leaf_id: str, apply_roots: Iterable[Path]) -> None:
        """Like restore_leaf, but a missing leaf raises NothingToRestoreError."""
        if not await self.restore_leaf(leaf_id, apply_roots):
            raise NothingToRestoreError(leaf_id)

    # ---- helpers ----------------------------------------------------------

    def resolve_relative_path(self, file_path: str) -> Optional[str]:
        return to_relative_path(file_path, self.real_root)

    def _snapshot_to_store(self, abs_path: Path) -> FileState:
        return store_snapshot(self.blobs, read_snapshot(abs_path))

    def _emit_stats(self) -> None:
        if self.on_stats:
            self.on_stats(self.get_tracked_stats())
