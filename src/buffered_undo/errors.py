"""Custom exceptions for buffered-undo.

Absent records (no base manifest yet, unknown leaf) are normally reported as
``None`` rather than raised. The types below cover the cases where a caller
needs to tell failures apart.
"""


class UndoError(RuntimeError):
    """Base class for all buffered-undo errors."""
    pass


# Storage Errors
class StorageError(UndoError):
    """Base class for blob/manifest storage errors."""
    pass


class BlobNotFoundError(StorageError, FileNotFoundError):
    """Requested content hash is not in the blob store."""

    def __init__(self, digest: str):
        self.digest = digest
        super().__init__(f"Blob not found in store: {digest}")


class IncompatibleManifestError(StorageError):
    """Manifest file was written by a newer format version."""

    def __init__(self, path: str, version: int, supported: int):
        self.path = path
        self.version = version
        self.supported = supported
        super().__init__(
            f"Manifest {path} has format version {version}; "
            f"this version of buffered-undo supports up to {supported}."
        )


# Tracking Errors
class NothingToRestoreError(UndoError):
    """A leaf was explicitly requested but has no saved snapshot."""

    def __init__(self, leaf_id: str):
        self.leaf_id = leaf_id
        super().__init__(f"No buffered snapshot for leaf {leaf_id}.")


class PathOutsideRootError(UndoError, ValueError):
    """Path does not resolve inside the project root."""

    def __init__(self, path: str, root: str):
        self.path = path
        self.root = root
        super().__init__(f"Path {path} is outside project root {root}")


# Sandbox Errors
class SandboxNotInitializedError(UndoError):
    """Sandbox mirror used before initialize() completed."""

    def __init__(self):
        super().__init__("Sandbox mirror not initialized")


# Navigation Errors
class NavigationError(UndoError):
    """Leaf navigation failed or was cancelled; state was rolled back."""

    def __init__(self, action: str, target_id: str, reason: str):
        self.action = action
        self.target_id = target_id
        self.reason = reason
        super().__init__(reason)
