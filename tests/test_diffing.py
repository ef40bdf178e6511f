"""Tests for change classification and diff rendering."""

import pytest

from buffered_undo.core import ChangeType, DiffItem, FileState
from buffered_undo.diffing import (
    classify,
    collect_leaf_changes,
    format_diff_text,
    generate_diff_string,
    list_diff_items,
)

H1 = "1" * 64
H2 = "2" * 64


def _present(digest: str, binary: bool = False) -> FileState:
    return FileState(exists=True, hash=digest, size=1, binary=binary)


ABSENT = FileState.missing()


class TestClassify:
    @pytest.mark.parametrize("base,leaf,expected", [
        (None, None, None),
        (ABSENT, ABSENT, None),
        (None, ABSENT, None),
        (None, _present(H1), ChangeType.ADDED),
        (ABSENT, _present(H1), ChangeType.ADDED),
        (_present(H1), ABSENT, ChangeType.DELETED),
        (_present(H1), None, ChangeType.DELETED),
        (_present(H1), _present(H2), ChangeType.MODIFIED),
        (_present(H1), _present(H1), None),
    ])
    def test_decision_table(self, base, leaf, expected):
        assert classify(base, leaf) == expected

    def test_change_codes(self):
        assert [c.code for c in ChangeType] == ["A", "M", "D"]

    def test_collect_leaf_changes(self):
        base = {"same.txt": _present(H1), "mod.txt": _present(H1), "del.txt": _present(H1)}
        leaf = {
            "same.txt": _present(H1),
            "mod.txt": _present(H2),
            "del.txt": ABSENT,
            "new.txt": _present(H2),
        }
        items = collect_leaf_changes(base, "L", leaf)

        assert [(i.path, i.change) for i in items] == [
            ("mod.txt", ChangeType.MODIFIED),
            ("del.txt", ChangeType.DELETED),
            ("new.txt", ChangeType.ADDED),
        ]
        assert items[0].label == "[L] M mod.txt"


class TestListDiffItems:
    @pytest.mark.asyncio
    async def test_scenario_yields_single_modification(
        self, tracker, storage, real_root, sandbox_root, write_both
    ):
        write_both("note.txt", "base")
        await tracker.ensure_base_from_sandbox("note.txt")
        (sandbox_root / "note.txt").write_text("updated")
        await tracker.update_from_sandbox("note.txt")
        await tracker.save_leaf("leaf-1")
        (real_root / "note.txt").write_text("other")
        await tracker.restore_leaf("leaf-1", [real_root])

        items = await list_diff_items(tracker, storage.manifests)

        assert items == [DiffItem(leaf_id="leaf-1", path="note.txt", change=ChangeType.MODIFIED)]

    @pytest.mark.asyncio
    async def test_unchanged_leaf_lists_nothing(self, tracker, storage, write_both):
        write_both("a.txt", "x")
        await tracker.ensure_base_from_sandbox("a.txt")
        await tracker.update_from_sandbox("a.txt")
        await tracker.save_leaf("quiet")

        assert await list_diff_items(tracker, storage.manifests) == []


class TestGenerateDiffString:
    def test_single_line_change(self):
        diff, first = generate_diff_string("a\nb\nc\n", "a\nB\nc\n")
        assert diff.splitlines() == [
            " 1 a",
            "-2 b",
            "+2 B",
            " 3 c",
        ]
        assert first == 2

    def test_context_window_collapses(self):
        old = "".join(f"line{i}\n" for i in range(1, 21))
        new = old.replace("line10\n", "changed\n")
        diff, first = generate_diff_string(old, new, context_lines=2)
        lines = diff.splitlines()

        assert lines == [
            "    ...",
            "  8 line8",
            "  9 line9",
            "-10 line10",
            "+10 changed",
            " 11 line11",
            " 12 line12",
            "    ...",
        ]
        assert first == 10

    def test_addition_to_empty(self):
        diff, first = generate_diff_string("", "x\ny\n")
        assert diff.splitlines() == ["+1 x", "+2 y"]
        assert first == 1

    def test_identical_text(self):
        assert generate_diff_string("same\n", "same\n") == ("", None)

    def test_dropped_trailing_newline(self):
        diff, first = generate_diff_string("a\n", "a")
        assert diff.splitlines() == ["-1 a", "+1 a"]
        assert first == 1

    def test_line_ending_change(self):
        diff, first = generate_diff_string("one\r\ntwo\r\n", "one\r\ntwo\n")
        assert diff.splitlines() == [" 1 one", "-2 two", "+2 two"]
        assert first == 2


class TestFormatDiffText:
    @pytest.mark.asyncio
    async def test_text_diff(self, storage):
        old = storage.blobs.put(b"hello\n")
        new = storage.blobs.put(b"world\n")
        text = await format_diff_text(storage.blobs, _present(old), _present(new))
        assert text.splitlines() == ["-1 hello", "+1 world"]

    @pytest.mark.asyncio
    async def test_deleted_text(self, storage):
        old = storage.blobs.put(b"gone\n")
        text = await format_diff_text(storage.blobs, _present(old), ABSENT)
        assert text == "-1 gone"

    @pytest.mark.asyncio
    async def test_crlf_to_lf_is_shown(self, storage):
        old = storage.blobs.put(b"line\r\n")
        new = storage.blobs.put(b"line\n")
        text = await format_diff_text(storage.blobs, _present(old), _present(new))
        assert text.splitlines() == ["-1 line", "+1 line"]

    @pytest.mark.asyncio
    async def test_nothing_exists(self, storage):
        assert await format_diff_text(storage.blobs, None, ABSENT) == "No changes recorded."

    @pytest.mark.asyncio
    async def test_same_content(self, storage):
        digest = storage.blobs.put(b"same\n")
        text = await format_diff_text(storage.blobs, _present(digest), _present(digest))
        assert text == "No changes recorded."

    @pytest.mark.asyncio
    @pytest.mark.parametrize("base,leaf,expected", [
        (None, _present(H1, binary=True), "Binary file added."),
        (_present(H1, binary=True), ABSENT, "Binary file deleted."),
        (_present(H1, binary=True), _present(H2, binary=False), "Binary file modified."),
    ])
    async def test_binary_short_circuit(self, storage, base, leaf, expected):
        assert await format_diff_text(storage.blobs, base, leaf) == expected
