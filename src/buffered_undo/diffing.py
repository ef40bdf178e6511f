"""Diff computation - change classification and line diffs for display."""

import asyncio
import difflib
from typing import List, Optional, Tuple

from .constants import DEFAULT_CONTEXT_LINES
from .core import ChangeType, DiffItem, FileState, Manifest
from .storage.base import BlobStore, ManifestStore
from .tracker import SnapshotTracker

NO_CHANGES = "No changes recorded."


def classify(base: Optional[FileState], leaf: Optional[FileState]) -> Optional[ChangeType]:
    """
    Classify the change between a base entry and a leaf entry.

    An absent entry counts the same as one with ``exists=False``.

    Returns:
        The change type, or None when nothing changed
    """
    base_exists = base.exists if base else False
    leaf_exists = leaf.exists if leaf else False

    if not base_exists and leaf_exists:
        return ChangeType.ADDED
    if base_exists and not leaf_exists:
        return ChangeType.DELETED
    if base_exists and leaf_exists and base.hash != leaf.hash:
        return ChangeType.MODIFIED
    return None


def collect_leaf_changes(base: Manifest, leaf_id: str, leaf: Manifest) -> List[DiffItem]:
    """Changed paths of one leaf relative to base, in manifest order."""
    items = []
    for path, leaf_entry in leaf.items():
        change = classify(base.get(path), leaf_entry)
        if change is None:
            continue
        items.append(DiffItem(leaf_id=leaf_id, path=path, change=change))
    return items


async def list_diff_items(tracker: SnapshotTracker, manifests: ManifestStore) -> List[DiffItem]:
    """Every changed path across all persisted leaves."""
    base = tracker.get_base_manifest()
    leaf_ids = await asyncio.to_thread(manifests.list_leaf_ids)

    items: List[DiffItem] = []
    for leaf_id in leaf_ids:
        leaf = await asyncio.to_thread(manifests.read_leaf, leaf_id)
        if leaf is None:
            continue
        items.extend(collect_leaf_changes(base, leaf_id, leaf))
    return items


def _split_lines(text: str) -> List[str]:
    """Split on newlines, keeping each line's terminator so EOL-only edits still differ."""
    lines = text.split("\n")
    kept = [line + "\n" for line in lines[:-1]]
    if lines[-1]:
        kept.append(lines[-1])
    return kept


def _row_text(line: str) -> str:
    return line.rstrip("\r\n")


def _line_parts(old_lines: List[str], new_lines: List[str]) -> List[Tuple[str, List[str]]]:
    """Group opcodes into (kind, lines) runs; replacements emit removed then added."""
    matcher = difflib.SequenceMatcher(None, old_lines, new_lines, autojunk=False)
    parts: List[Tuple[str, List[str]]] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            parts.append(("equal", old_lines[i1:i2]))
        if tag in ("delete", "replace"):
            parts.append(("removed", old_lines[i1:i2]))
        if tag in ("insert", "replace"):
            parts.append(("added", new_lines[j1:j2]))
    return parts


def generate_diff_string(
    old: str,
    new: str,
    context_lines: int = DEFAULT_CONTEXT_LINES,
) -> Tuple[str, Optional[int]]:
    """
    Render a line diff with numbered rows and bounded context.

    Rows look like ``+12 added``, ``-12 removed`` and `` 12 context``; runs of
    unchanged lines longer than the context window collapse into ``...``.

    Returns:
        (diff text, first changed line number in the new text or None)
    """
    old_lines = _split_lines(old)
    new_lines = _split_lines(new)
    parts = _line_parts(old_lines, new_lines)
    width = len(str(max(len(old_lines), len(new_lines))))
    ellipsis = f" {'':>{width}} ..."

    output: List[str] = []
    old_num = 1
    new_num = 1
    last_was_change = False
    first_changed: Optional[int] = None

    for index, (kind, lines) in enumerate(parts):
        if kind != "equal":
            if first_changed is None:
                first_changed = new_num
            for line in lines:
                if kind == "added":
                    output.append(f"+{new_num:>{width}} {_row_text(line)}")
                    new_num += 1
                else:
                    output.append(f"-{old_num:>{width}} {_row_text(line)}")
                    old_num += 1
            last_was_change = True
            continue

        next_is_change = index < len(parts) - 1 and parts[index + 1][0] != "equal"

        if last_was_change or next_is_change:
            shown = lines
            skip_start = 0
            skip_end = 0

            if not last_was_change:
                skip_start = max(0, len(lines) - context_lines)
                shown = lines[skip_start:]

            if not next_is_change and len(shown) > context_lines:
                skip_end = len(shown) - context_lines
                shown = shown[:context_lines]

            if skip_start > 0:
                output.append(ellipsis)
                old_num += skip_start
                new_num += skip_start

            for line in shown:
                output.append(f" {old_num:>{width}} {_row_text(line)}")
                old_num += 1
                new_num += 1

            if skip_end > 0:
                output.append(ellipsis)
                old_num += skip_end
                new_num += skip_end
        else:
            old_num += len(lines)
            new_num += len(lines)

        last_was_change = False

    return "\n".join(output), first_changed


async def format_diff_text(
    blobs: BlobStore,
    base: Optional[FileState],
    leaf: Optional[FileState],
    context_lines: int = DEFAULT_CONTEXT_LINES,
) -> str:
    """Human-readable diff of one path between base and a leaf."""
    base_exists = base.exists if base else False
    leaf_exists = leaf.exists if leaf else False

    if not base_exists and not leaf_exists:
        return NO_CHANGES

    if (base and base.binary) or (leaf and leaf.binary):
        if not base_exists:
            return "Binary file added."
        if not leaf_exists:
            return "Binary file deleted."
        return "Binary file modified."

    base_text = await _read_text(blobs, base) if base_exists else ""
    leaf_text = await _read_text(blobs, leaf) if leaf_exists else ""

    diff, _ = generate_diff_string(base_text, leaf_text, context_lines)
    return diff or NO_CHANGES


async def _read_text(blobs: BlobStore, entry: FileState) -> str:
    if not entry.hash:
        return ""
    data = await asyncio.to_thread(blobs.get, entry.hash)
    return data.decode("utf-8")
