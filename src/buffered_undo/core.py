"""Core data models for buffered-undo.

Manifests:
----------
A manifest maps a project-relative POSIX path to a ``FileState``. The base
manifest records the first observed state of every touched path; leaf
manifests are sparse overlays holding only what a given leaf changed. The
effective state of a leaf is the base overlaid by the leaf entries.
"""

from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .constants import MANIFEST_VERSION


# ============= File State =============

class FileState(BaseModel):
    """State of one path in one manifest version.

    Immutable once constructed. A missing file carries no hash, size or
    binary flag.
    """

    model_config = ConfigDict(frozen=True)

    exists: bool
    hash: Optional[str] = None
    size: Optional[int] = None
    binary: Optional[bool] = None

    @model_validator(mode="after")
    def _absent_has_no_content(self) -> "FileState":
        if not self.exists and (
            self.hash is not None or self.size is not None or self.binary is not None
        ):
            raise ValueError("FileState with exists=False cannot carry hash, size or binary")
        return self

    @classmethod
    def missing(cls) -> "FileState":
        return cls(exists=False)


Manifest = Dict[str, FileState]


class ManifestRecord(BaseModel):
    """On-disk manifest file (base.json, leaves/<id>.json)."""

    version: int = MANIFEST_VERSION
    files: Dict[str, FileState] = Field(default_factory=dict)


def overlay(base: Manifest, leaf: Optional[Manifest]) -> Manifest:
    """Return base overlaid by leaf entries (leaf wins per path)."""
    effective = dict(base)
    if leaf:
        effective.update(leaf)
    return effective


# ============= Statistics =============

class TrackedStats(BaseModel):
    """Aggregate numbers for the tracked manifest (status display)."""

    file_count: int = 0
    total_bytes: int = 0


class StatEntry(BaseModel):
    """Cheap change-detection key for one sandbox file."""

    model_config = ConfigDict(frozen=True)

    size: int
    mtime_ms: float


StatMap = Dict[str, StatEntry]


class StatDiff(BaseModel):
    """Result of comparing two stat maps."""

    added: List[str] = Field(default_factory=list)
    changed: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.changed) + len(self.removed)


class SandboxProgress(BaseModel):
    """Progress event emitted while the sandbox is prepared."""

    stage: Literal["prepare", "scan", "sync", "done"]
    message: str
    current: Optional[int] = None
    total: Optional[int] = None

    def format(self) -> str:
        suffix = f" ({self.current}/{self.total})" if self.current and self.total else ""
        return f"{self.message}{suffix}"


# ============= Change Detection =============

class ChangeType(str, Enum):
    """Kind of change between a base entry and a leaf entry."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"

    @property
    def code(self) -> str:
        """Single-letter code used in compact listings."""
        return {"added": "A", "modified": "M", "deleted": "D"}[self.value]


class DiffItem(BaseModel):
    """One changed path in one leaf."""

    leaf_id: str
    path: str
    change: ChangeType

    @property
    def label(self) -> str:
        return f"[{self.leaf_id}] {self.change.code} {self.path}"
