"""Storage package: content-addressed blobs and manifest records."""

from .base import BlobStore, ManifestStore
from .factory import SessionStorage, make_session_storage

__all__ = ["BlobStore", "ManifestStore", "SessionStorage", "make_session_storage"]
