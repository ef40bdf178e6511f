"""Buffered file tools: mutations go to the sandbox, then flow to the real root.

Every mutating operation follows the same sequence for the touched path:
hydrate the sandbox copy, record base, mutate in the sandbox, hash the
result into the tracked manifest, copy it out to the real root and refresh
the mirror's stat entry. Tracking is auxiliary: a tracking failure is
logged and the file operation still completes.
"""

import asyncio
import contextlib
import logging
import os
import uuid
from pathlib import Path
from typing import Optional, Protocol

from pydantic import BaseModel

from .constants import DEFAULT_MAX_BYTES, DEFAULT_MAX_LINES
from .diffing import generate_diff_string
from .paths import (
    map_to_real_path,
    map_to_sandbox_path,
    replace_root_in_text,
    resolve_user_path,
    to_relative_path,
)
from .sandbox import SandboxMirror, diff_stats, ensure_sandbox_file
from .tracker import SnapshotTracker
from .utils import atomic_write_text

logger = logging.getLogger(__name__)


class FileOperations(Protocol):
    """Filesystem capability handed to the tools (paths are absolute, real-root based)."""

    async def read_file(self, absolute_path: str) -> bytes:
        ...

    async def write_file(self, absolute_path: str, content: str) -> None:
        ...

    async def access(self, absolute_path: str, mode: int = os.R_OK) -> None:
        ...

    async def mkdir(self, directory: str) -> None:
        ...

    def map_path(self, absolute_path: str) -> str:
        ...


class SandboxFileOperations:
    """FileOperations that redirect real-root paths into the sandbox."""

    def __init__(self, real_root: Path, sandbox_root: Path):
        self.real_root = Path(real_root)
        self.sandbox_root = Path(sandbox_root)

    def map_path(self, absolute_path: str) -> str:
        return map_to_sandbox_path(absolute_path, self.real_root, self.sandbox_root)

    async def _hydrate(self, absolute_path: str) -> None:
        relative_path = to_relative_path(absolute_path, self.real_root)
        if not relative_path:
            return
        await asyncio.to_thread(ensure_sandbox_file, relative_path, self.real_root, self.sandbox_root)

    async def read_file(self, absolute_path: str) -> bytes:
        await self._hydrate(absolute_path)
        return await asyncio.to_thread(Path(self.map_path(absolute_path)).read_bytes)

    async def write_file(self, absolute_path: str, content: str) -> None:
        await self._hydrate(absolute_path)
        target = Path(self.map_path(absolute_path))

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")

        await asyncio.to_thread(_write)

    async def access(self, absolute_path: str, mode: int = os.R_OK) -> None:
        await self._hydrate(absolute_path)
        mapped = self.map_path(absolute_path)
        if not await asyncio.to_thread(os.access, mapped, mode):
            raise PermissionError(f"Cannot access {absolute_path}")

    async def mkdir(self, directory: str) -> None:
        await asyncio.to_thread(os.makedirs, self.map_path(directory), exist_ok=True)


class TruncatedOutput(BaseModel):
    """Tool output cut to a budget, with the full text saved aside when cut."""

    text: str
    truncated: bool = False
    total_lines: int = 0
    shown_lines: int = 0
    full_output_path: Optional[str] = None


def truncate_output(
    text: str,
    output_dir: Optional[Path] = None,
    max_lines: int = DEFAULT_MAX_LINES,
    max_bytes: int = DEFAULT_MAX_BYTES,
) -> TruncatedOutput:
    """
    Keep the tail of text within max_lines and max_bytes.

    When output is cut and output_dir is given, the full text is written to a
    new file there and referenced from the notice line.
    """
    lines = text.split("\n")
    if len(lines) <= max_lines and len(text.encode("utf-8")) <= max_bytes:
        return TruncatedOutput(text=text, total_lines=len(lines), shown_lines=len(lines))

    kept = []
    used = 0
    for line in reversed(lines):
        cost = len(line.encode("utf-8")) + 1
        if len(kept) >= max_lines or used + cost > max_bytes:
            break
        kept.append(line)
        used += cost
    kept.reverse()

    if not kept:
        # A single oversized line; keep its tail
        kept = [lines[-1].encode("utf-8")[-max_bytes:].decode("utf-8", errors="ignore")]

    full_output_path = None
    if output_dir is not None:
        path = Path(output_dir) / f"output-{uuid.uuid4().hex[:12]}.txt"
        atomic_write_text(path, text)
        full_output_path = str(path)

    notice = f"[Output truncated: showing last {len(kept)} of {len(lines)} lines"
    notice += f". Full output: {full_output_path}]" if full_output_path else "]"
    return TruncatedOutput(
        text=notice + "\n" + "\n".join(kept),
        truncated=True,
        total_lines=len(lines),
        shown_lines=len(kept),
        full_output_path=full_output_path,
    )


class ShellResult(BaseModel):
    """Outcome of a shell command run inside the sandbox."""

    exit_code: int
    output: str
    timed_out: bool = False
    truncated: bool = False
    full_output_path: Optional[str] = None
    changed_paths: int = 0


class BufferedTools:
    """Read/write/edit/shell operations routed through the sandbox and tracked per leaf."""

    def __init__(
        self,
        tracker: SnapshotTracker,
        mirror: SandboxMirror,
        ops: Optional[FileOperations] = None,
        output_dir: Optional[Path] = None,
        shell: Optional[str] = None,
    ):
        self.tracker = tracker
        self.mirror = mirror
        self.real_root = mirror.real_root
        self.sandbox_root = mirror.sandbox_root
        self.ops = ops or SandboxFileOperations(self.real_root, self.sandbox_root)
        self.output_dir = output_dir
        self.shell = shell

    # ---- path helpers ----

    def _resolve(self, path: str):
        absolute_path = resolve_user_path(path, self.real_root)
        return absolute_path, to_relative_path(absolute_path, self.real_root)

    def _to_real_text(self, text: str) -> str:
        return replace_root_in_text(text, self.sandbox_root, self.real_root)

    def _rewrite_error(self, error: OSError) -> OSError:
        if error.filename:
            error.filename = map_to_real_path(error.filename, self.real_root, self.sandbox_root)
        return error

    # ---- tracking ----

    async def _begin_mutation(self, relative_path: Optional[str]) -> None:
        if not relative_path:
            return
        try:
            await self.mirror.ensure_file(relative_path)
            await self.tracker.ensure_base_from_sandbox(relative_path)
        except Exception:
            logger.warning("Could not record base for %s", relative_path, exc_info=True)

    async def _finish_mutation(self, relative_path: Optional[str]) -> None:
        if not relative_path:
            return
        try:
            await self.tracker.update_from_sandbox(relative_path)
        except Exception:
            logger.warning("Could not track %s", relative_path, exc_info=True)
        await self.mirror.sync_from_sandbox(relative_path)
        await self.mirror.update_file(relative_path)

    # ---- operations ----

    async def read(self, path: str) -> str:
        """Read a file through the sandbox and record it as tracked."""
        absolute_path, relative_path = self._resolve(path)
        try:
            data = await self.ops.read_file(absolute_path)
        except OSError as e:
            raise self._rewrite_error(e) from None

        if relative_path:
            try:
                await self.tracker.ensure_base_from_sandbox(relative_path)
                await self.tracker.update_from_sandbox(relative_path)
            except Exception:
                logger.warning("Could not track read of %s", relative_path, exc_info=True)

        return self._to_real_text(data.decode("utf-8", errors="replace"))

    async def write(self, path: str, content: str) -> str:
        """Create or overwrite a file."""
        absolute_path, relative_path = self._resolve(path)
        await self._begin_mutation(relative_path)
        try:
            await self.ops.write_file(absolute_path, content)
        except OSError as e:
            raise self._rewrite_error(e) from None
        await self._finish_mutation(relative_path)

        logger.debug("Wrote %s", relative_path or absolute_path)
        return f"Successfully wrote {len(content.encode('utf-8'))} bytes to {path}"

    async def edit(self, path: str, old_text: str, new_text: str) -> str:
        """
        Replace one exact occurrence of old_text.

        Returns:
            Line diff of the change

        Raises:
            ValueError: If old_text is missing or not unique
        """
        absolute_path, relative_path = self._resolve(path)
        await self._begin_mutation(relative_path)
        try:
            await self.ops.access(absolute_path, os.R_OK | os.W_OK)
            content = (await self.ops.read_file(absolute_path)).decode("utf-8")
        except OSError as e:
            raise self._rewrite_error(e) from None

        occurrences = content.count(old_text) if old_text else 0
        if occurrences == 0:
            raise ValueError(f"Could not find the exact text to replace in {path}")
        if occurrences > 1:
            raise ValueError(
                f"Found {occurrences} occurrences of the text in {path}; "
                "the text to replace must be unique"
            )

        updated = content.replace(old_text, new_text, 1)
        try:
            await self.ops.write_file(absolute_path, updated)
        except OSError as e:
            raise self._rewrite_error(e) from None
        await self._finish_mutation(relative_path)

        diff, _ = generate_diff_string(content, updated)
        return diff

    async def run_shell(self, command: str, timeout: Optional[float] = None) -> ShellResult:
        """
        Run a shell command with the sandbox as working directory.

        Paths the command added, changed or removed are found by stat-diffing
        the sandbox and propagated to the tracker and the real root, also when
        the command fails or times out.
        """
        sandbox_command = replace_root_in_text(command, self.real_root, self.sandbox_root)
        timed_out = False
        try:
            proc = await asyncio.create_subprocess_shell(
                sandbox_command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=str(self.sandbox_root),
                executable=self.shell,
            )
            try:
                stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
            except asyncio.TimeoutError:
                proc.kill()
                stdout, _ = await proc.communicate()
                timed_out = True
            finally:
                # Cancellation must not leave the child running
                if proc.returncode is None:
                    with contextlib.suppress(ProcessLookupError):
                        proc.kill()
                    await proc.wait()
        finally:
            changed = await self._propagate_shell_changes()

        output = self._to_real_text(stdout.decode("utf-8", errors="replace"))
        cut = truncate_output(output, self.output_dir)
        if timed_out:
            logger.warning("Shell command timed out after %ss: %s", timeout, command)

        return ShellResult(
            exit_code=proc.returncode if proc.returncode is not None else -1,
            output=cut.text,
            timed_out=timed_out,
            truncated=cut.truncated,
            full_output_path=cut.full_output_path,
            changed_paths=changed,
        )

    async def _propagate_shell_changes(self) -> int:
        before = self.mirror.get_stats()
        after = await self.mirror.rescan()
        diff = diff_stats(before, after)
        self.mirror.set_stats(after)

        for relative_path in diff.added + diff.changed:
            try:
                await self.tracker.ensure_base_from_disk(relative_path)
                await self.tracker.update_from_sandbox(relative_path)
            except Exception:
                logger.warning("Could not track %s", relative_path, exc_info=True)
            await self.mirror.sync_from_sandbox(relative_path)

        for relative_path in diff.removed:
            try:
                await self.tracker.ensure_base_from_disk(relative_path)
                self.tracker.mark_deleted(relative_path)
            except Exception:
                logger.warning("Could not track deletion of %s", relative_path, exc_info=True)
            await self.mirror.remove_from_disk(relative_path)

        if diff.total:
            logger.debug(
                "Shell changes: %d added, %d changed, %d removed",
                len(diff.added), len(diff.changed), len(diff.removed),
            )
        return diff.total
