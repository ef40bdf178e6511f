"""Filesystem manifest store: one base manifest plus one file per leaf."""

import json
import logging
import urllib.parse
from pathlib import Path
from typing import List, Optional

from ..constants import MANIFEST_VERSION
from ..core import Manifest, ManifestRecord
from ..errors import IncompatibleManifestError
from ..utils import atomic_write_text

logger = logging.getLogger(__name__)

_LEAF_SUFFIX = ".json"


def leaf_filename(leaf_id: str) -> str:
    """Map an opaque leaf id to a safe filename."""
    return urllib.parse.quote(leaf_id, safe="") + _LEAF_SUFFIX


def leaf_id_from_filename(name: str) -> str:
    return urllib.parse.unquote(name[: -len(_LEAF_SUFFIX)])


def read_manifest_file(path: Path) -> Optional[Manifest]:
    """Read a manifest file.

    Returns:
        The manifest, or None if the file is missing or has no ``files`` key

    Raises:
        IncompatibleManifestError: If the file was written by a newer format
    """
    if not path.exists():
        return None
    with path.open(encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict) or "files" not in data:
        return None

    version = data.get("version", MANIFEST_VERSION)
    if version > MANIFEST_VERSION:
        raise IncompatibleManifestError(str(path), version, MANIFEST_VERSION)

    record = ManifestRecord(**data)
    return dict(record.files)


def write_manifest_file(path: Path, manifest: Manifest) -> None:
    """Write a manifest file atomically (full replace)."""
    record = ManifestRecord(version=MANIFEST_VERSION, files=dict(manifest))
    text = json.dumps(record.model_dump(exclude_none=True), indent=2)
    atomic_write_text(path, text)


class FilesystemManifestStore:
    """
    Durable manifest storage.

    Layout:
        <root>/base.json
        <root>/leaves/<quoted-leaf-id>.json
    """

    def __init__(self, base_path: Path, leaves_dir: Path):
        self.base_path = Path(base_path)
        self.leaves_dir = Path(leaves_dir)

    def ensure(self) -> None:
        self.leaves_dir.mkdir(parents=True, exist_ok=True)

    def read_base(self) -> Optional[Manifest]:
        return read_manifest_file(self.base_path)

    def write_base(self, manifest: Manifest) -> None:
        write_manifest_file(self.base_path, manifest)

    def leaf_path(self, leaf_id: str) -> Path:
        return self.leaves_dir / leaf_filename(leaf_id)

    def read_leaf(self, leaf_id: str) -> Optional[Manifest]:
        return read_manifest_file(self.leaf_path(leaf_id))

    def write_leaf(self, leaf_id: str, manifest: Manifest) -> None:
        write_manifest_file(self.leaf_path(leaf_id), manifest)
        logger.debug("Saved leaf %s (%d entries)", leaf_id, len(manifest))

    def list_leaf_ids(self) -> List[str]:
        if not self.leaves_dir.exists():
            return []
        return sorted(
            leaf_id_from_filename(p.name)
            for p in self.leaves_dir.iterdir()
            if p.is_file() and p.name.endswith(_LEAF_SUFFIX)
        )
