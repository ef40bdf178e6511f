"""Base protocols for session storage implementations."""

from typing import List, Optional, Protocol

from ..core import Manifest


class BlobStore(Protocol):
    """
    Protocol for content-addressed blob storage.

    Content is keyed by the SHA256 hex digest of its bytes. Writing the same
    content twice is a no-op the second time.
    """

    def put(self, data: bytes) -> str:
        """
        Store content and return its digest.

        Args:
            data: Exact byte sequence to store

        Returns:
            SHA256 hex digest of data
        """
        ...

    def get(self, digest: str) -> bytes:
        """
        Read content by digest.

        Raises:
            BlobNotFoundError: If no blob is stored under digest
        """
        ...

    def has(self, digest: str) -> bool:
        """Check whether a blob exists."""
        ...


class ManifestStore(Protocol):
    """
    Protocol for durable manifest storage.

    Holds exactly one base manifest and any number of leaf manifests. Every
    write is a full replace. Reads return None when no record exists.
    """

    def read_base(self) -> Optional[Manifest]:
        ...

    def write_base(self, manifest: Manifest) -> None:
        ...

    def read_leaf(self, leaf_id: str) -> Optional[Manifest]:
        ...

    def write_leaf(self, leaf_id: str, manifest: Manifest) -> None:
        ...

    def list_leaf_ids(self) -> List[str]:
        ...
