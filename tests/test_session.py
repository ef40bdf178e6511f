"""Tests for the session context: lifecycle, navigation and rollback."""

import asyncio
from types import SimpleNamespace

import pytest
import pytest_asyncio

from buffered_undo.config import UndoConfig
from buffered_undo.core import ChangeType
from buffered_undo.errors import NavigationError, NothingToRestoreError, PathOutsideRootError
from buffered_undo.session import UndoSession


class FakeNavigator:
    """Host stand-in that reports tree changes back to the session."""

    def __init__(self, session, fail_with=None, cancel=False):
        self.session = session
        self.fail_with = fail_with
        self.cancel = cancel
        self.calls = []

    async def wait_for_idle(self):
        self.calls.append("idle")

    async def navigate_tree(self, target_id):
        self.calls.append(target_id)
        if self.fail_with:
            raise self.fail_with
        if self.cancel:
            return SimpleNamespace(cancelled=True)
        await self.session.on_tree_changed(self.session.current_leaf_id, target_id)
        return SimpleNamespace(cancelled=False)


class FakeBrancher:
    def __init__(self, leaf_id=None, fail_on=None):
        self.leaf_id = leaf_id
        self.fail_on = fail_on

    def branch(self, entry_id):
        if entry_id == self.fail_on:
            raise RuntimeError("branch refused")
        self.leaf_id = entry_id

    def reset_leaf(self):
        self.leaf_id = None

    def get_leaf_id(self):
        return self.leaf_id


@pytest_asyncio.fixture
async def session(real_root, cache_dir):
    (real_root / "note.txt").write_text("base")
    return await UndoSession.start(
        "sess", real_root, leaf_id="leaf-0", config=UndoConfig(cache_dir=cache_dir)
    )


async def _edit_turn(session, leaf_id, content):
    """One assistant turn: write note.txt, finish on leaf_id."""
    await session.tools.write("note.txt", content)
    await session.on_turn_end(leaf_id)


class TestStart:
    @pytest.mark.asyncio
    async def test_start_saves_current_leaf(self, session):
        assert session.current_leaf_id == "leaf-0"
        assert session.storage.manifests.list_leaf_ids() == ["leaf-0"]
        assert session.undo_stack == [] and session.redo_stack == []
        assert (session.sandbox_root / "note.txt").read_text() == "base"

    @pytest.mark.asyncio
    async def test_resume_restores_leaf(self, session, real_root, cache_dir):
        await _edit_turn(session, "leaf-1", "edited")
        (real_root / "note.txt").write_text("drifted")

        resumed = await UndoSession.start(
            "sess", real_root, leaf_id="leaf-1", config=UndoConfig(cache_dir=cache_dir)
        )
        assert (real_root / "note.txt").read_text() == "edited"
        assert (resumed.sandbox_root / "note.txt").read_text() == "edited"

    @pytest.mark.asyncio
    async def test_cache_dir_from_environment(self, real_root, cache_dir):
        session = await UndoSession.start("env-sess", real_root, leaf_id=None)
        assert session.storage.root == cache_dir / "env-sess"


class TestTurns:
    @pytest.mark.asyncio
    async def test_turn_end_pushes_previous_leaf(self, session):
        await _edit_turn(session, "leaf-1", "one")
        await _edit_turn(session, "leaf-2", "two")

        assert session.current_leaf_id == "leaf-2"
        assert session.undo_stack == ["leaf-0", "leaf-1"]
        assert session.storage.manifests.list_leaf_ids() == ["leaf-0", "leaf-1", "leaf-2"]

    @pytest.mark.asyncio
    async def test_tool_call_turn_ignored(self, session):
        await session.on_turn_end("leaf-1", tool_call_turn=True)
        assert session.current_leaf_id == "leaf-0"


class TestUndoRedo:
    @pytest.mark.asyncio
    async def test_undo_then_redo_restores_files(self, session, real_root):
        await _edit_turn(session, "leaf-1", "one")
        await _edit_turn(session, "leaf-2", "two")

        navigator = FakeNavigator(session)
        assert await session.undo(navigator) == "leaf-1"
        assert (real_root / "note.txt").read_text() == "one"
        assert session.current_leaf_id == "leaf-1"
        assert session.redo_stack == ["leaf-2"]
        assert session.undo_stack == ["leaf-0"]

        assert await session.undo(navigator) == "leaf-0"
        assert (real_root / "note.txt").read_text() == "base"

        assert await session.redo(navigator) == "leaf-1"
        assert await session.redo(navigator) == "leaf-2"
        assert (real_root / "note.txt").read_text() == "two"
        assert (session.sandbox_root / "note.txt").read_text() == "two"
        assert session.redo_stack == []
        assert navigator.calls[:2] == ["idle", "leaf-1"]

    @pytest.mark.asyncio
    async def test_no_history(self, session):
        assert await session.undo(FakeNavigator(session)) is None
        assert await session.redo(FakeNavigator(session)) is None

    @pytest.mark.asyncio
    async def test_failed_navigation_rolls_back(self, session, real_root):
        await _edit_turn(session, "leaf-1", "one")
        await _edit_turn(session, "leaf-2", "two")
        before = (list(session.undo_stack), list(session.redo_stack), session.current_leaf_id)

        with pytest.raises(NavigationError, match="host busy"):
            await session.undo(FakeNavigator(session, fail_with=RuntimeError("host busy")))

        assert (session.undo_stack, session.redo_stack, session.current_leaf_id) == before
        assert session.navigating is False
        assert (real_root / "note.txt").read_text() == "two"

    @pytest.mark.asyncio
    async def test_cancelled_navigation_rolls_back(self, session):
        await _edit_turn(session, "leaf-1", "one")
        before = (list(session.undo_stack), list(session.redo_stack), session.current_leaf_id)

        with pytest.raises(NavigationError, match="cancelled"):
            await session.undo(FakeNavigator(session, cancel=True))

        assert (session.undo_stack, session.redo_stack, session.current_leaf_id) == before

    @pytest.mark.asyncio
    async def test_task_cancellation_rolls_back(self, session):
        await _edit_turn(session, "leaf-1", "one")
        before = (list(session.undo_stack), list(session.redo_stack), session.current_leaf_id)

        with pytest.raises(asyncio.CancelledError):
            await session.undo(FakeNavigator(session, fail_with=asyncio.CancelledError()))

        assert (session.undo_stack, session.redo_stack, session.current_leaf_id) == before


class TestApplyNavigation:
    @pytest.mark.asyncio
    async def test_tool_driven_undo(self, session, real_root):
        await _edit_turn(session, "leaf-1", "one")
        brancher = FakeBrancher("leaf-1")

        message = await session.apply_navigation("undo", brancher)

        assert "leaf-0" in message
        assert brancher.leaf_id == "leaf-0"
        assert session.current_leaf_id == "leaf-0"
        assert session.redo_stack == ["leaf-1"]
        assert (real_root / "note.txt").read_text() == "base"

    @pytest.mark.asyncio
    async def test_failure_rolls_back_and_resyncs(self, session, real_root):
        await _edit_turn(session, "leaf-1", "one")
        before = (list(session.undo_stack), list(session.redo_stack), session.current_leaf_id)
        brancher = FakeBrancher("leaf-1", fail_on="leaf-0")

        with pytest.raises(NavigationError, match="branch refused"):
            await session.apply_navigation("undo", brancher)

        assert (session.undo_stack, session.redo_stack, session.current_leaf_id) == before
        assert (real_root / "note.txt").read_text() == "one"

    @pytest.mark.asyncio
    async def test_no_history_message(self, session):
        assert await session.apply_navigation("redo", FakeBrancher()) == "No redo history."


class TestTreeChanges:
    @pytest.mark.asyncio
    async def test_external_navigation_pushes_undo(self, session, real_root):
        await _edit_turn(session, "leaf-1", "one")

        await session.on_tree_changed("leaf-1", "leaf-0")

        assert session.current_leaf_id == "leaf-0"
        assert session.undo_stack == ["leaf-0", "leaf-1"]
        assert (real_root / "note.txt").read_text() == "base"

    @pytest.mark.asyncio
    async def test_outgoing_edits_saved_before_restore(self, session, real_root):
        await _edit_turn(session, "leaf-1", "one")
        await session.tools.write("note.txt", "unsaved")

        await session.on_tree_changed("leaf-1", "leaf-0")
        await session.on_tree_changed("leaf-0", "leaf-1")

        assert (real_root / "note.txt").read_text() == "unsaved"


class TestInspection:
    @pytest.mark.asyncio
    async def test_list_and_diff(self, session):
        await _edit_turn(session, "leaf-1", "updated")

        items = await session.list_diffs()
        assert [(i.leaf_id, i.path, i.change) for i in items] == [
            ("leaf-1", "note.txt", ChangeType.MODIFIED)
        ]

        text = await session.diff_text("note.txt")
        assert text.startswith("Diff for note.txt (leaf leaf-1)")
        assert "-1 base" in text and "+1 updated" in text

    @pytest.mark.asyncio
    async def test_diff_errors(self, session, tmp_path):
        with pytest.raises(PathOutsideRootError):
            await session.diff_text(str(tmp_path / "elsewhere.txt"))
        with pytest.raises(NothingToRestoreError):
            await session.diff_text("note.txt", leaf_id="missing")

    @pytest.mark.asyncio
    async def test_status_text(self, session):
        assert session.status_text() == ""
        await session.tools.write("note.txt", "12345")
        assert session.status_text() == "Tracked: 1 file (5.0 B)"
        assert session.tracked_stats.total_bytes == 5


class TestClearCache:
    @pytest.mark.asyncio
    async def test_clear_cache_resets_history(self, session):
        await _edit_turn(session, "leaf-1", "one")
        await _edit_turn(session, "leaf-2", "two")
        assert session.undo_stack

        await session.clear_cache()

        assert session.undo_stack == [] and session.redo_stack == []
        assert session.current_leaf_id == "leaf-2"
        assert session.storage.manifests.list_leaf_ids() == ["leaf-2"]
        assert session.tracker.get_base_manifest() == {}
        assert (session.sandbox_root / "note.txt").read_text() == "two"
