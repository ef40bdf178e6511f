"""Rich rendering for the inspection CLI."""

from typing import List

from rich.console import Console
from rich.table import Table

from .core import ChangeType, DiffItem, Manifest, TrackedStats
from .utils import humanize_size

_CHANGE_STYLE = {
    ChangeType.ADDED: "[green]A added[/green]",
    ChangeType.MODIFIED: "[yellow]M modified[/yellow]",
    ChangeType.DELETED: "[red]D deleted[/red]",
}


def display_diff_items(items: List[DiffItem], console: Console) -> None:
    """Table of changed paths grouped by leaf."""
    if not items:
        console.print("[dim]No buffered diffs available.[/dim]")
        return

    table = Table(title=f"Buffered diffs ({len(items)})")
    table.add_column("Leaf", style="cyan")
    table.add_column("Change")
    table.add_column("Path")

    for item in items:
        table.add_row(item.leaf_id, _CHANGE_STYLE[item.change], item.path)

    console.print(table)


def display_leaves(leaves: List[tuple], console: Console) -> None:
    """Table of persisted leaves as (leaf_id, manifest) pairs."""
    if not leaves:
        console.print("[dim]No leaves saved for this session.[/dim]")
        return

    table = Table(title=f"Saved leaves ({len(leaves)})")
    table.add_column("Leaf", style="cyan")
    table.add_column("Paths", justify="right")
    table.add_column("Size", justify="right")

    for leaf_id, manifest in leaves:
        stats = manifest_stats(manifest)
        table.add_row(leaf_id, str(len(manifest)), humanize_size(stats.total_bytes))

    console.print(table)


def display_session_stats(
    blob_count: int,
    leaf_count: int,
    base: Manifest,
    console: Console,
) -> None:
    base_stats = manifest_stats(base)
    console.print(f"[bold]Blobs:[/bold] {blob_count}")
    console.print(f"[bold]Leaves:[/bold] {leaf_count}")
    console.print(
        f"[bold]Base:[/bold] {len(base)} paths, "
        f"{base_stats.file_count} existing ({humanize_size(base_stats.total_bytes)})"
    )


def manifest_stats(manifest: Manifest) -> TrackedStats:
    existing = [entry for entry in manifest.values() if entry.exists]
    return TrackedStats(
        file_count=len(existing),
        total_bytes=sum(entry.size or 0 for entry in existing),
    )
