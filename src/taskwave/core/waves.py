"""
Wave Execution — run a dependency plan one wave at a time.

Each wave becomes its own batch run (`{name}-wave{level}`), so every wave
gets the runner's checkpointing. A wave starts only after the previous wave
has finished, failures included. Whether dependents of a failed task still
run is decided here, not by the planner.
"""

import dataclasses
import json
import logging
import os
from pathlib import Path
from typing import Callable

import aiofiles
import aiofiles.os

from taskwave.core.checkpoint import CheckpointError, CheckpointStore
from taskwave.core.runner import BatchRunner, TaskHandlers
from taskwave.models.progress import RunSummary, is_failure
from taskwave.planner.plan import ExecutionPlan, Wave

logger = logging.getLogger(__name__)


class WaveExecutor:
    """
    Drives an ExecutionPlan through per-wave BatchRunners.

    Args:
        name: Run name; wave runners are named `{name}-wave{level}`.
        runner_factory: Builds a BatchRunner for a given run name.
        state_dir: Where the frozen plan is kept between resumes.
        skip_failed_dependencies: Record dependents of failed (or skipped)
            tasks as skipped instead of running them.
    """

    def __init__(
        self,
        name: str,
        runner_factory: Callable[[str], BatchRunner],
        state_dir: Path = Path("."),
        skip_failed_dependencies: bool = True,
    ):
        self.name = name
        self.runner_factory = runner_factory
        self.state_dir = Path(state_dir)
        self.skip_failed_dependencies = skip_failed_dependencies
        self.plan_file = self.state_dir / f".{name}-plan.json"

    def wave_name(self, level: int) -> str:
        return f"{self.name}-wave{level}"

    # ──────────────────────────────────────────────
    # Plan Persistence
    # ──────────────────────────────────────────────

    async def _save_plan(self, plan: ExecutionPlan) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        try:
            async with aiofiles.open(self.plan_file, "w") as f:
                await f.write(json.dumps(plan.to_dict(), indent=2))
        except OSError as e:
            raise CheckpointError(f"Failed to write {self.plan_file}: {e}") from e

    async def _load_plan(self) -> ExecutionPlan | None:
        if not self.plan_file.exists():
            return None
        try:
            async with aiofiles.open(self.plan_file) as f:
                data = json.loads(await f.read())
            if not isinstance(data, dict):
                raise ValueError(f"expected an object, got {type(data).__name__}")
            return ExecutionPlan.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise CheckpointError(f"Unreadable plan {self.plan_file}: {e}") from e

    async def _resolve_plan(self, plan: ExecutionPlan, resume: bool) -> ExecutionPlan:
        """On resume keep the plan frozen at the first start; otherwise start clean."""
        if resume:
            frozen = await self._load_plan()
            if frozen is not None:
                logger.info(f"Resuming frozen plan with {len(frozen.waves)} waves")
                return frozen

        for level in range(len(plan.waves)):
            await self.runner_factory(self.wave_name(level)).store.clear_summary()
        await self._save_plan(plan)
        return plan

    # ──────────────────────────────────────────────
    # Execution
    # ──────────────────────────────────────────────

    def _blocked_in(self, wave: Wave, blocked: set[str]) -> dict[str, str]:
        if not self.skip_failed_dependencies:
            return {}
        skips = {}
        for task in wave.tasks:
            failed_deps = [dep for dep in task.deps if dep in blocked]
            if failed_deps:
                skips[task.id] = f"dependency failed: {', '.join(failed_deps)}"
        return skips

    async def _run_wave(
        self,
        wave: Wave,
        handlers: TaskHandlers,
        skips: dict[str, str],
        resume: bool,
        cwd: str,
    ) -> RunSummary:
        runner = self.runner_factory(self.wave_name(wave.level))

        if resume:
            inspection = await runner.store.inspect()
            if inspection.progress is None and inspection.summary is not None:
                logger.info(f"Wave {wave.level} already finished, skipping")
                return inspection.summary

        items = [task.to_work_item() for task in wave.tasks]
        wave_handlers = dataclasses.replace(
            handlers,
            scan=lambda _cwd: items,
            should_skip=lambda item: skips.get(item.id),
        )
        logger.info(
            f"Wave {wave.level}: {len(items)} tasks"
            + (f" ({len(skips)} blocked by failed dependencies)" if skips else "")
        )
        return await runner.run(wave_handlers, resume=resume, cwd=cwd)

    async def run(
        self,
        plan: ExecutionPlan,
        handlers: TaskHandlers,
        resume: bool = False,
        cwd: str | os.PathLike | None = None,
    ) -> list[RunSummary]:
        """
        Execute every wave in order.

        `handlers.scan` is ignored; each wave's tasks are its work items.

        Returns:
            One summary per wave, in wave order.

        Raises:
            RunLockedError: This plan, or one of its waves, is being run by
                another live process. Nothing is touched in that case.
        """
        cwd = str(cwd or os.getcwd())
        lock = CheckpointStore(self.name, self.state_dir)
        lock.acquire_lock()
        try:
            for level in range(len(plan.waves)):
                self.runner_factory(self.wave_name(level)).store.check_lock()
            plan = await self._resolve_plan(plan, resume)

            summaries: list[RunSummary] = []
            blocked: set[str] = set()

            for wave in plan.waves:
                skips = self._blocked_in(wave, blocked)
                summary = await self._run_wave(wave, handlers, skips, resume, cwd)
                summaries.append(summary)

                blocked.update(skips)
                blocked.update(f["id"] for f in summary.failed_list if is_failure(f["status"]))

            await aiofiles.os.remove(self.plan_file)
        finally:
            lock.release_lock()

        logger.info(f"All {len(plan.waves)} waves finished")
        return summaries
