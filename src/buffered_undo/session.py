"""Per-session context: storage, tracker, mirror, tools and navigation history.

Host-owned concepts (the conversation tree, its leaf ids, the primitive that
moves the host to another leaf) are reached through the small protocols
below; everything file-related lives on ``UndoSession``.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, List, Literal, Optional, Protocol

from .config import UndoConfig, load_undo_config
from .core import DiffItem, TrackedStats
from .diffing import format_diff_text, list_diff_items
from .errors import NavigationError, NothingToRestoreError, PathOutsideRootError
from .paths import resolve_user_path
from .sandbox import ProgressCallback, SandboxMirror
from .storage import SessionStorage, make_session_storage
from .tools import BufferedTools
from .tracker import SnapshotTracker
from .utils import format_tracked_status

logger = logging.getLogger(__name__)

Action = Literal["undo", "redo"]


class Navigator(Protocol):
    """Host primitive: wait until quiescent, then move to another leaf.

    ``navigate_tree`` returns an object with a ``cancelled`` attribute (or
    None); it may also raise.
    """

    async def wait_for_idle(self) -> None:
        ...

    async def navigate_tree(self, target_id: str) -> Any:
        ...


class Brancher(Protocol):
    """Host primitive used by tool-driven navigation to move the session leaf."""

    def branch(self, entry_id: str) -> None:
        ...

    def reset_leaf(self) -> None:
        ...

    def get_leaf_id(self) -> Optional[str]:
        ...


class UndoSession:
    """Buffered undo/redo state for one host session."""

    def __init__(
        self,
        session_id: str,
        real_root: Path,
        config: UndoConfig,
        on_progress: Optional[ProgressCallback] = None,
        on_stats: Optional[Callable[[TrackedStats], None]] = None,
    ):
        self.session_id = session_id
        self.real_root = Path(real_root).resolve()
        self.config = config
        self.on_progress = on_progress
        self.on_stats = on_stats

        self.storage: SessionStorage = make_session_storage(session_id, config.cache_dir)
        self.tracker: Optional[SnapshotTracker] = None
        self.mirror: Optional[SandboxMirror] = None
        self.tools: Optional[BufferedTools] = None

        self.current_leaf_id: Optional[str] = None
        self.undo_stack: List[str] = []
        self.redo_stack: List[str] = []
        self.navigating = False

    @property
    def sandbox_root(self) -> Path:
        return self.storage.sandbox_root

    @classmethod
    async def start(
        cls,
        session_id: str,
        real_root: Path,
        leaf_id: Optional[str] = None,
        config: Optional[UndoConfig] = None,
        cache_dir: Optional[Path] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_stats: Optional[Callable[[TrackedStats], None]] = None,
    ) -> "UndoSession":
        """
        Open (or resume) a session rooted at real_root.

        Args:
            session_id: Host session id; one cache directory per id
            real_root: Project working directory
            leaf_id: Host's current leaf, restored if it has a saved snapshot
            config: Overrides the project config file
            cache_dir: Overrides the configured cache root
        """
        if config is None:
            config = await asyncio.to_thread(load_undo_config, Path(real_root))
        if cache_dir is not None:
            config.cache_dir = Path(cache_dir)

        session = cls(session_id, real_root, config, on_progress=on_progress, on_stats=on_stats)
        await session._initialize(leaf_id)
        return session

    async def _initialize(self, leaf_id: Optional[str]) -> None:
        await asyncio.to_thread(self.storage.ensure)

        self.mirror = SandboxMirror(
            self.real_root,
            self.sandbox_root,
            extra_ignores=self.config.extra_ignores,
            reuse_existing=self.config.reuse_sandbox,
            on_progress=self.on_progress,
        )
        await self.mirror.initialize()

        self.tracker = SnapshotTracker(
            self.storage.blobs,
            self.storage.manifests,
            self.real_root,
            self.sandbox_root,
            on_stats=self.on_stats,
        )
        await self.tracker.load_base()

        if leaf_id:
            await self.tracker.restore_leaf(leaf_id, self._apply_roots())
        self.mirror.set_stats(await self.mirror.rescan())

        self.tools = BufferedTools(
            self.tracker,
            self.mirror,
            output_dir=self.storage.tool_output_dir,
        )

        self.current_leaf_id = leaf_id
        self.undo_stack = []
        self.redo_stack = []
        self.navigating = False

        # Persist the current leaf even when nothing changed yet
        await self.tracker.save_leaf(leaf_id)
        logger.info("Session %s ready at leaf %s", self.session_id, leaf_id)

    def _apply_roots(self) -> List[Path]:
        return [self.sandbox_root, self.real_root]

    # ---- navigation -------------------------------------------------------

    def _snapshot_history(self):
        return self.current_leaf_id, list(self.undo_stack), list(self.redo_stack)

    def _rollback_history(self, snapshot) -> None:
        self.current_leaf_id, undo_stack, redo_stack = snapshot
        self.undo_stack[:] = undo_stack
        self.redo_stack[:] = redo_stack

    def _pop_target(self, action: Action) -> Optional[str]:
        source = self.undo_stack if action == "undo" else self.redo_stack
        opposite = self.redo_stack if action == "undo" else self.undo_stack
        if not source:
            return None
        target_id = source.pop()
        if self.current_leaf_id:
            opposite.append(self.current_leaf_id)
        return target_id

    async def undo(self, navigator: Navigator) -> Optional[str]:
        """Move the host to the previous leaf. Returns the target, or None without history."""
        return await self._navigate("undo", navigator)

    async def redo(self, navigator: Navigator) -> Optional[str]:
        """Move the host to the next leaf. Returns the target, or None without history."""
        return await self._navigate("redo", navigator)

    async def _navigate(self, action: Action, navigator: Navigator) -> Optional[str]:
        snapshot = self._snapshot_history()
        target_id = self._pop_target(action)
        if target_id is None:
            logger.info("No %s history", action)
            return None

        self.navigating = True
        try:
            await navigator.wait_for_idle()
            result = await navigator.navigate_tree(target_id)
        except asyncio.CancelledError:
            self._rollback_history(snapshot)
            self.navigating = False
            logger.warning("%s to %s cancelled; history restored", action, target_id)
            raise
        except Exception as e:
            self._rollback_history(snapshot)
            self.navigating = False
            reason = str(e) or type(e).__name__
            logger.warning("%s to %s failed: %s", action, target_id, reason)
            raise NavigationError(action, target_id, reason) from e

        if getattr(result, "cancelled", False):
            self._rollback_history(snapshot)
            self.navigating = False
            logger.warning("%s to %s cancelled; history restored", action, target_id)
            raise NavigationError(action, target_id, "Navigation cancelled")

        return target_id

    async def apply_navigation(self, action: Action, brancher: Brancher) -> str:
        """
        Undo/redo driven from inside a tool call.

        Saves the outgoing leaf, moves the host leaf through brancher and
        restores the target. On failure the history is rolled back and the
        previous leaf is re-synced before NavigationError is raised.
        """
        snapshot = self._snapshot_history()
        previous_leaf = self.current_leaf_id
        target_id = self._pop_target(action)
        if target_id is None:
            return f"No {action} history."

        try:
            await self.tracker.save_leaf(previous_leaf)
            await self._sync_leaf(brancher, target_id)
        except Exception as e:
            self._rollback_history(snapshot)
            await self._sync_leaf(brancher, previous_leaf)
            logger.warning("%s to %s failed: %s", action, target_id, e)
            raise NavigationError(action, target_id, f"Undo/redo tool failed: {e}") from e

        label = "Undo" if action == "undo" else "Redo"
        return f"{label} applied: restored file snapshots for leaf {target_id}."

    async def _sync_leaf(self, brancher: Brancher, target_id: Optional[str]) -> None:
        if target_id is None:
            brancher.reset_leaf()
        else:
            brancher.branch(target_id)
        self.current_leaf_id = brancher.get_leaf_id()
        await self.tracker.restore_leaf(target_id, self._apply_roots())
        self.mirror.set_stats(await self.mirror.rescan())

    # ---- host notifications -----------------------------------------------

    async def on_turn_end(self, leaf_id: Optional[str], tool_call_turn: bool = False) -> None:
        """Persist the current leaf once an assistant turn finished without tool calls."""
        if tool_call_turn:
            return
        if leaf_id and leaf_id != self.current_leaf_id:
            if self.current_leaf_id:
                self.undo_stack.append(self.current_leaf_id)
            self.current_leaf_id = leaf_id
        await self.tracker.save_leaf(self.current_leaf_id)

    async def on_tree_changed(self, old_leaf_id: Optional[str], new_leaf_id: Optional[str]) -> None:
        """The host moved to another leaf (branch, fork or tree navigation)."""
        if old_leaf_id and old_leaf_id == self.current_leaf_id and old_leaf_id != new_leaf_id:
            await self.tracker.save_leaf(old_leaf_id)

        if not self.navigating and old_leaf_id and old_leaf_id != new_leaf_id:
            self.undo_stack.append(old_leaf_id)

        self.current_leaf_id = new_leaf_id
        await self.tracker.restore_leaf(new_leaf_id, self._apply_roots())
        self.mirror.set_stats(await self.mirror.rescan())
        self.navigating = False

    # ---- inspection -------------------------------------------------------

    async def list_diffs(self) -> List[DiffItem]:
        return await list_diff_items(self.tracker, self.storage.manifests)

    async def diff_text(self, path: str, leaf_id: Optional[str] = None) -> str:
        """
        Diff of one path between base and a leaf (the current leaf by default).

        Raises:
            ValueError: If no leaf is selected
            PathOutsideRootError: If path is not inside the project root
            NothingToRestoreError: If the leaf has no saved snapshot
        """
        leaf_id = leaf_id or self.current_leaf_id
        if not leaf_id:
            raise ValueError("No leaf selected for diff.")

        absolute_path = resolve_user_path(path, self.real_root)
        relative_path = self.tracker.resolve_relative_path(absolute_path)
        if not relative_path:
            raise PathOutsideRootError(path, str(self.real_root))

        leaf = await self.tracker.load_leaf(leaf_id)
        if leaf is None:
            raise NothingToRestoreError(leaf_id)

        base = self.tracker.get_base_manifest()
        text = await format_diff_text(
            self.storage.blobs,
            base.get(relative_path),
            leaf.get(relative_path),
            self.config.context_lines,
        )
        return f"Diff for {relative_path} (leaf {leaf_id})\n\n{text}"

    @property
    def tracked_stats(self) -> TrackedStats:
        return self.tracker.get_tracked_stats()

    def status_text(self) -> str:
        stats = self.tracked_stats
        return format_tracked_status(stats.file_count, stats.total_bytes)

    async def clear_cache(self) -> None:
        """Delete all persisted state and start over; undo/redo history is reset."""
        await asyncio.to_thread(self.storage.destroy)
        await self._initialize(self.current_leaf_id)
        logger.info("Cleared cache for session %s", self.session_id)
