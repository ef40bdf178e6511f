"""CLI for inspecting and restoring buffered-undo session caches."""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from .config import load_undo_config
from .diffing import format_diff_text, list_diff_items
from .display import display_diff_items, display_leaves, display_session_stats
from .errors import UndoError
from .paths import resolve_user_path
from .storage import SessionStorage, make_session_storage
from .tracker import SnapshotTracker

app = typer.Typer(help="""\
Inspect buffered file snapshots recorded per conversation leaf: list leaves
and diffs, show a file's diff, restore a leaf to disk or clear the cache.""")

console = Console()


@dataclass
class CliState:
    root: Path
    storage: SessionStorage
    context_lines: int


@app.callback()
def main(
    ctx: typer.Context,
    session: str = typer.Option(..., "--session", "-s", help="Session id"),
    root: Path = typer.Option(Path("."), "--root", "-r", help="Project root (default: current directory)"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Cache root override"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    root = root.resolve()
    config = load_undo_config(root)
    try:
        storage = make_session_storage(session, cache_dir or config.cache_dir)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    ctx.obj = CliState(root=root, storage=storage, context_lines=config.context_lines)


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj


def _require_session(state: CliState) -> None:
    if not state.storage.root.exists():
        console.print(f"[red]Error:[/red] No cache for this session at {state.storage.root}")
        raise typer.Exit(1)


async def _load_tracker(state: CliState) -> SnapshotTracker:
    tracker = SnapshotTracker(
        state.storage.blobs,
        state.storage.manifests,
        state.root,
        state.storage.sandbox_root,
    )
    await tracker.load_base()
    return tracker


@app.command()
def leaves(ctx: typer.Context):
    """List saved leaves."""
    state = _state(ctx)
    _require_session(state)
    manifests = state.storage.manifests
    rows = []
    for leaf_id in manifests.list_leaf_ids():
        manifest = manifests.read_leaf(leaf_id)
        if manifest is not None:
            rows.append((leaf_id, manifest))
    display_leaves(rows, console)


@app.command()
def diffs(ctx: typer.Context):
    """List changed paths for every saved leaf."""
    state = _state(ctx)
    _require_session(state)

    async def _run():
        tracker = await _load_tracker(state)
        return await list_diff_items(tracker, state.storage.manifests)

    display_diff_items(asyncio.run(_run()), console)


@app.command()
def diff(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="File path (relative to the project root or absolute)"),
    leaf: Optional[str] = typer.Option(None, "--leaf", "-l", help="Leaf id (default: most recently saved)"),
):
    """Show the diff of one file between base and a leaf."""
    state = _state(ctx)
    _require_session(state)

    async def _run() -> str:
        tracker = await _load_tracker(state)
        leaf_id = leaf or _latest_leaf(state.storage)
        if not leaf_id:
            raise typer.BadParameter("No saved leaves; pass --leaf")
        relative_path = tracker.resolve_relative_path(resolve_user_path(path, state.root))
        if not relative_path:
            raise typer.BadParameter("Diff path must be inside the project root.")
        manifest = await tracker.load_leaf(leaf_id)
        if manifest is None:
            return f"No buffered snapshot for leaf {leaf_id}."
        text = await format_diff_text(
            state.storage.blobs,
            tracker.get_base_manifest().get(relative_path),
            manifest.get(relative_path),
            state.context_lines,
        )
        return f"Diff for {relative_path} (leaf {leaf_id})\n\n{text}"

    console.print(asyncio.run(_run()), markup=False, highlight=False)


@app.command()
def stats(ctx: typer.Context):
    """Show blob, leaf and base counts for the session."""
    state = _state(ctx)
    _require_session(state)
    storage = state.storage
    display_session_stats(
        storage.blobs.count(),
        len(storage.manifests.list_leaf_ids()),
        storage.manifests.read_base() or {},
        console,
    )


@app.command()
def restore(
    ctx: typer.Context,
    leaf_id: str = typer.Argument(..., help="Leaf id to restore"),
    target: str = typer.Option("real", "--target", "-t", help="Where to write: real, sandbox or both"),
):
    """Write a leaf's file snapshots to disk."""
    state = _state(ctx)
    _require_session(state)

    roots = {
        "real": [state.root],
        "sandbox": [state.storage.sandbox_root],
        "both": [state.storage.sandbox_root, state.root],
    }
    if target not in roots:
        raise typer.BadParameter("target must be one of: real, sandbox, both")

    async def _run() -> int:
        tracker = await _load_tracker(state)
        await tracker.restore_leaf_strict(leaf_id, roots[target])
        return len(tracker.get_tracked_manifest())

    try:
        count = asyncio.run(_run())
    except UndoError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Restored {count} path(s) for leaf {leaf_id} ({target})")


@app.command("clear-cache")
def clear_cache(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Delete everything cached for the session (snapshots, diffs, sandbox)."""
    state = _state(ctx)
    if not state.storage.root.exists():
        console.print("[dim]Nothing to clear.[/dim]")
        return
    if not yes and not typer.confirm(f"Delete {state.storage.root}?"):
        raise typer.Exit(1)
    state.storage.destroy()
    console.print("[green]✓[/green] Cache cleared. Undo/redo history has been reset.")


def _latest_leaf(storage: SessionStorage) -> Optional[str]:
    leaf_ids = storage.manifests.list_leaf_ids()
    if not leaf_ids:
        return None
    return max(leaf_ids, key=lambda leaf_id: storage.manifests.leaf_path(leaf_id).stat().st_mtime_ns)


if __name__ == "__main__":
    app()
