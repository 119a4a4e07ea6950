"""
Checkpoint management for resumable batch runs.

Every run owns a handful of files in its state directory, keyed by run name:

    .{name}-progress.json   checkpoint, rewritten after every finished item
    .{name}-result.json     final summary
    .{name}-history.json    last few summaries
    .{name}.lock            PID of the process running it
    .{name}.log             run log

Checkpoint writes go to a temp file that is then renamed over the target, so
readers only ever see a whole snapshot.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import aiofiles
import aiofiles.os

from taskwave.core.defaults import HISTORY_LIMIT
from taskwave.models.progress import Progress, RunStatus, RunSummary, utc_now

logger = logging.getLogger(__name__)

_fsync = aiofiles.os.wrap(os.fsync)


class CheckpointError(RuntimeError):
    """Raised when checkpoint state cannot be read or persisted."""


class RunLockedError(RuntimeError):
    """Raised when another live process holds the run lock."""

    def __init__(self, name: str, pid: int):
        super().__init__(f"Run {name!r} is already active (pid {pid})")
        self.name = name
        self.pid = pid


class RunState(Enum):
    """What the state directory says about a run."""

    IDLE = "idle"
    RUNNING = "running"
    CRASHED = "crashed"
    FINISHED = "finished"


@dataclass
class RunInspection:
    state: RunState
    progress: Progress | None = None
    summary: RunSummary | None = None
    pid: int | None = None


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    return True


class CheckpointStore:
    """File-backed progress, summary and lock handling for one named run."""

    def __init__(self, name: str, state_dir: Path):
        self.name = name
        self.state_dir = Path(state_dir)
        self.progress_file = self.state_dir / f".{name}-progress.json"
        self.result_file = self.state_dir / f".{name}-result.json"
        self.history_file = self.state_dir / f".{name}-history.json"
        self.lock_file = self.state_dir / f".{name}.lock"
        self.log_file = self.state_dir / f".{name}.log"
        self._write_lock = asyncio.Lock()

    # ──────────────────────────────────────────────
    # Progress
    # ──────────────────────────────────────────────

    async def load_progress(self) -> Progress | None:
        """Load the checkpoint, or None when there is none."""
        if not self.progress_file.exists():
            return None

        try:
            return Progress.from_dict(await self._read_object(self.progress_file))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise CheckpointError(f"Unreadable checkpoint {self.progress_file}: {e}") from e

    @staticmethod
    async def _read_object(path: Path) -> dict:
        async with aiofiles.open(path) as f:
            data = json.loads(await f.read())
        if not isinstance(data, dict):
            raise ValueError(f"expected an object, got {type(data).__name__}")
        return data

    async def save_progress(self, progress: Progress) -> None:
        """Persist a full progress snapshot."""
        async with self._write_lock:
            await self._write_snapshot(progress)

    async def record(self, progress: Progress, result: dict) -> None:
        """Append one finished item to progress and persist before returning."""
        async with self._write_lock:
            progress.add_result(result)
            await self._write_snapshot(progress)

    async def clear_progress(self) -> None:
        try:
            await aiofiles.os.remove(self.progress_file)
        except FileNotFoundError:
            pass

    async def _write_snapshot(self, progress: Progress) -> None:
        payload = json.dumps(progress.to_dict(), indent=2)
        await self._write_atomic(self.progress_file, payload)

    async def _write_atomic(self, path: Path, payload: str) -> None:
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "w") as f:
                await f.write(payload)
                await f.flush()
                await _fsync(f.fileno())
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            raise CheckpointError(f"Failed to write {path}: {e}") from e

    # ──────────────────────────────────────────────
    # Summary
    # ──────────────────────────────────────────────

    async def write_summary(self, summary: RunSummary) -> None:
        """Write the final summary and archive it to history."""
        await self._write_atomic(self.result_file, json.dumps(summary.to_dict(), indent=2))
        await self._archive(summary)

    async def load_summary(self) -> RunSummary | None:
        if not self.result_file.exists():
            return None
        try:
            return RunSummary.from_dict(await self._read_object(self.result_file))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise CheckpointError(f"Unreadable summary {self.result_file}: {e}") from e

    async def clear_summary(self) -> None:
        try:
            await aiofiles.os.remove(self.result_file)
        except FileNotFoundError:
            pass

    async def _archive(self, summary: RunSummary) -> None:
        history: list = []
        if self.history_file.exists():
            try:
                async with aiofiles.open(self.history_file) as f:
                    history = json.loads(await f.read())
            except (OSError, ValueError) as e:
                logger.warning(f"Discarding unreadable history {self.history_file}: {e}")
                history = []
            if not isinstance(history, list):
                logger.warning(f"Discarding malformed history {self.history_file}")
                history = []

        history.append({**summary.to_dict(), "archivedAt": utc_now()})
        history = history[-HISTORY_LIMIT:]
        await self._write_atomic(self.history_file, json.dumps(history, indent=2))

    # ──────────────────────────────────────────────
    # Locking
    # ──────────────────────────────────────────────

    def _lock_owner(self) -> int | None:
        try:
            return int(self.lock_file.read_text().strip())
        except (OSError, ValueError):
            return None

    def check_lock(self) -> int | None:
        """
        Raise RunLockedError if another live process holds the lock.

        Returns the recorded owner pid (ours, a stale one, or None).
        """
        owner = self._lock_owner()
        if owner is not None and owner != os.getpid() and _pid_alive(owner):
            raise RunLockedError(self.name, owner)
        return owner

    def acquire_lock(self) -> None:
        """Claim the run for this process, refusing if another live process holds it."""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        owner = self.check_lock()
        if owner is not None and owner != os.getpid():
            logger.warning(f"Removing stale lock for {self.name} (pid {owner})")
        self.lock_file.write_text(str(os.getpid()))

    def release_lock(self) -> None:
        if self._lock_owner() == os.getpid():
            self.lock_file.unlink(missing_ok=True)

    # ──────────────────────────────────────────────
    # Inspection
    # ──────────────────────────────────────────────

    async def inspect(self) -> RunInspection:
        """Classify the run from its files: idle, running, crashed or finished."""
        progress = await self.load_progress()
        owner = self._lock_owner()
        live = owner is not None and _pid_alive(owner)

        if progress is not None and progress.status in (RunStatus.RUNNING, RunStatus.CRASHED):
            if live:
                return RunInspection(RunState.RUNNING, progress=progress, pid=owner)
            progress.status = RunStatus.CRASHED
            return RunInspection(RunState.CRASHED, progress=progress)

        summary = await self.load_summary()
        if summary is not None:
            return RunInspection(RunState.FINISHED, summary=summary)
        return RunInspection(RunState.IDLE)
