"""Gitignore-style pattern matching for the sandbox mirror."""

from pathlib import Path
from typing import Iterable

from pathspec import PathSpec
from pathspec.patterns import GitWildMatchPattern

from .constants import PROJECT_CONFIG_DIR


# Default patterns to always ignore
DEFAULTS = [
    # Version control
    ".git/",

    # buffered-undo project config
    f"{PROJECT_CONFIG_DIR}/",

    # Dependencies and build output
    "node_modules/",
    "dist/",
    "build/",
    ".next/",
    ".venv/",
    "target/",
    "out/",
    ".cache/",
]


class IgnoreSpec:
    """Manages gitignore-style patterns for file exclusion."""

    def __init__(self, root: Path, extra: Iterable[str] = ()):
        """Initialize ignore spec with default and project patterns.

        Args:
            root: Real project root (its .gitignore is loaded if present)
            extra: Additional patterns to include
        """
        self.root = root
        patterns = list(DEFAULTS)

        ignore_file = root / ".gitignore"
        if ignore_file.is_file():
            content = ignore_file.read_text(encoding="utf-8", errors="replace")
            for line in content.splitlines():
                line = line.strip()
                if line and not line.startswith("#"):
                    patterns.append(line)

        patterns.extend(extra)

        self.spec = PathSpec.from_lines(GitWildMatchPattern, patterns)

    def is_ignored(self, relpath: str, is_dir: bool = False) -> bool:
        """Check if a project-relative POSIX path should be ignored.

        Directories are matched both bare and with a trailing slash so
        directory-only patterns exclude the whole subtree.
        """
        if not relpath:
            return False
        if self.spec.match_file(relpath):
            return True
        if is_dir and self.spec.match_file(relpath.rstrip("/") + "/"):
            return True
        return False

    def should_traverse(self, dirpath: str) -> bool:
        """Check if a directory should be descended into during scans."""
        return not self.is_ignored(dirpath, is_dir=True)
