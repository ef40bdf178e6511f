"""Path helpers shared by the tracker, the sandbox mirror and the tools.

Manifest keys are always project-relative POSIX strings; these helpers do
the conversions between user input, host paths and the two roots.
"""

import os
import re
from pathlib import Path
from typing import Optional, Union

PathLike = Union[str, os.PathLike]

_UNICODE_SPACES = re.compile("[\u00a0\u2000-\u200a\u202f\u205f\u3000]")


def expand_path(file_path: str) -> str:
    """Normalize user-typed paths: drop a leading '@', fix odd spaces, expand '~'."""
    normalized = file_path[1:] if file_path.startswith("@") else file_path
    normalized = _UNICODE_SPACES.sub(" ", normalized)
    if normalized == "~":
        return str(Path.home())
    if normalized.startswith("~/"):
        return str(Path.home()) + normalized[1:]
    return normalized


def resolve_user_path(file_path: str, cwd: PathLike) -> str:
    """Resolve a user path against cwd (absolute paths pass through)."""
    expanded = expand_path(file_path)
    if os.path.isabs(expanded):
        return expanded
    return os.path.abspath(os.path.join(os.fspath(cwd), expanded))


def to_posix(value: str) -> str:
    return value.replace(os.sep, "/")


def from_posix(value: str) -> str:
    return value.replace("/", os.sep)


def is_within_root(target: PathLike, root: PathLike) -> bool:
    relative = os.path.relpath(os.fspath(target), os.fspath(root))
    return relative == "." or (
        not relative.startswith("..") and not os.path.isabs(relative)
    )


def to_relative_path(absolute_path: PathLike, root: PathLike) -> Optional[str]:
    """Project-relative POSIX path, or None when outside root."""
    if not is_within_root(absolute_path, root):
        return None
    relative = os.path.relpath(os.fspath(absolute_path), os.fspath(root))
    return "" if relative == "." else to_posix(relative)


def _swap_root(absolute_path: str, from_root: str, to_root: str) -> str:
    relative = os.path.relpath(absolute_path, from_root)
    if relative == ".":
        return to_root
    return os.path.join(to_root, relative)


def map_to_sandbox_path(absolute_path: PathLike, real_root: PathLike, sandbox_root: PathLike) -> str:
    """Map a real-root path into the sandbox; other paths are returned unchanged."""
    absolute_path, real_root, sandbox_root = map(os.fspath, (absolute_path, real_root, sandbox_root))
    if is_within_root(absolute_path, sandbox_root):
        return absolute_path
    if is_within_root(absolute_path, real_root):
        return _swap_root(absolute_path, real_root, sandbox_root)
    return absolute_path


def map_to_real_path(absolute_path: PathLike, real_root: PathLike, sandbox_root: PathLike) -> str:
    """Map a sandbox path back to the real root; other paths are returned unchanged."""
    absolute_path, real_root, sandbox_root = map(os.fspath, (absolute_path, real_root, sandbox_root))
    if is_within_root(absolute_path, real_root):
        return absolute_path
    if is_within_root(absolute_path, sandbox_root):
        return _swap_root(absolute_path, sandbox_root, real_root)
    return absolute_path


def replace_root_in_text(text: str, from_root: PathLike, to_root: PathLike) -> str:
    """Replace every occurrence of one root path in free text with another."""
    from_root, to_root = os.fspath(from_root), os.fspath(to_root)
    if not from_root or from_root not in text:
        return text
    return text.replace(from_root, to_root)
