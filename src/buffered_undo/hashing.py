"""Content hashing for the blob store.

Blob keys are the bare SHA256 hex digest of the exact byte sequence, so the
same content stored from different paths, leaves or sessions collapses into
one blob.
"""

import hashlib
import re


_HEX64 = re.compile(r"^[0-9a-f]{64}$")


def compute_bytes_digest(data: bytes) -> str:
    """Compute SHA256 hex digest of a byte string."""
    return hashlib.sha256(data).hexdigest()


def validate_digest(digest: str) -> str:
    """Validate a blob digest before it is used to build a path.

    Raises:
        ValueError: If digest is not 64 lowercase hex characters
    """
    if not isinstance(digest, str) or not _HEX64.fullmatch(digest):
        raise ValueError(f"Invalid sha256 hex (must be 64 hex chars): {digest!r}")
    return digest


__all__ = [
    "compute_bytes_digest",
    "validate_digest",
]
