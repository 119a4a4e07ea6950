"""
Batch Runner — bounded-concurrency LLM task execution with checkpoint/resume.

Runs a list of work items through an external LLM command with:
- A fixed number of concurrent invocations (semaphore permits)
- A hard timeout per invocation
- A checkpoint written after every finished item (crash recovery)
- A final per-status summary once every item has been processed

Usage:
    runner = BatchRunner(name="code-audit", concurrency=8, timeout=120)
    summary = await runner.run(handlers, resume=False, cwd="/path/to/repo")
"""

import asyncio
import inspect
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from taskwave.core.checkpoint import CheckpointStore
from taskwave.core.defaults import DEFAULT_CONCURRENCY, DEFAULT_TIMEOUT
from taskwave.core.invoker import CommandInvoker, InvocationOutcome, Invoker, OutcomeKind
from taskwave.models.progress import Progress as RunProgress
from taskwave.models.progress import RunStatus, RunSummary, is_failure, summarize
from taskwave.models.task import WorkItem

logger = logging.getLogger("taskwave.runner")


@dataclass
class TaskHandlers:
    """
    The job-specific half of a batch run.

    Each callable may be a plain function or a coroutine function.

    Attributes:
        scan: cwd -> list of WorkItem (or dicts with an "id").
        build_prompt: item -> prompt text.
        handle_result: (item, outcome) -> result dict with a "status".
        should_skip: item -> skip reason, or None to run the item.
    """

    scan: Callable[[str], Any]
    build_prompt: Callable[[WorkItem], Any]
    handle_result: Callable[[WorkItem, InvocationOutcome], Any]
    should_skip: Callable[[WorkItem], Any] | None = None


async def _resolve(value):
    if inspect.isawaitable(value):
        return await value
    return value


class BatchRunner:
    """
    Executes work items against an LLM command with bounded concurrency.

    State lives in `state_dir` under files named after `name`, so two runners
    with different names never share state.
    """

    # Extra seconds granted to an invoker to enforce its own timeout
    TIMEOUT_GRACE = 5.0

    def __init__(
        self,
        name: str,
        invoker: Invoker | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        timeout: float = DEFAULT_TIMEOUT,
        state_dir: Path = Path("."),
        console: Console | None = None,
        show_progress: bool = True,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be positive, got {concurrency}")
        self.name = name
        self.concurrency = concurrency
        self.timeout = timeout
        self.invoker = invoker or CommandInvoker(timeout=timeout)
        self.store = CheckpointStore(name, Path(state_dir))
        self.console = console or Console(stderr=True)
        self.show_progress = show_progress

        self._in_flight = 0
        self.stats: dict = {
            "start_time": 0.0,
            "invocations": 0,
            "peak_in_flight": 0,
            "resumed": 0,
        }

    # ──────────────────────────────────────────────
    # Logging
    # ──────────────────────────────────────────────

    def _attach_log_file(self, append: bool) -> tuple[logging.Handler, int]:
        package_logger = logging.getLogger("taskwave")
        previous_level = package_logger.level
        if package_logger.getEffectiveLevel() > logging.INFO:
            package_logger.setLevel(logging.INFO)

        self.store.state_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(self.store.log_file, mode="a" if append else "w")
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("[%(asctime)s] %(message)s", "%H:%M:%S"))
        package_logger.addHandler(handler)
        return handler, previous_level

    @staticmethod
    def _detach_log_file(handler: logging.Handler, previous_level: int) -> None:
        package_logger = logging.getLogger("taskwave")
        package_logger.removeHandler(handler)
        package_logger.setLevel(previous_level)
        handler.close()

    # ──────────────────────────────────────────────
    # Checkpoint
    # ──────────────────────────────────────────────

    async def _scan_items(self, handlers: TaskHandlers, cwd: str) -> list[WorkItem]:
        """Scan, normalize to WorkItem and drop duplicate ids (first wins)."""
        raw_items = await _resolve(handlers.scan(cwd))
        items: list[WorkItem] = []
        seen: set[str] = set()
        for raw in raw_items:
            item = raw if isinstance(raw, WorkItem) else WorkItem.from_dict(dict(raw))
            if item.id in seen:
                logger.warning(f"Duplicate item id dropped: {item.id}")
                continue
            seen.add(item.id)
            items.append(item)
        return items

    async def _load_or_create_progress(
        self, handlers: TaskHandlers, resume: bool, cwd: str
    ) -> RunProgress:
        """Resume an unfinished checkpoint if asked to, otherwise scan afresh."""
        previous = await self.store.load_progress()
        unfinished = previous is not None and previous.status in (
            RunStatus.RUNNING,
            RunStatus.CRASHED,
        )

        if resume and unfinished:
            previous.status = RunStatus.RUNNING
            self.stats["resumed"] = len(previous.completed)
            logger.info(
                f"Resuming from checkpoint: {len(previous.completed)}/{len(previous.items)} completed"
            )
            await self.store.save_progress(previous)
            return previous

        if resume:
            logger.info("No unfinished checkpoint found. Starting a fresh run.")
        elif unfinished:
            logger.warning(
                f"Abandoning unfinished run ({len(previous.completed)}/{len(previous.items)} "
                "completed). Pass resume to continue it instead."
            )

        items = await self._scan_items(handlers, cwd)
        logger.info(f"Scanned: {len(items)} items")
        progress = RunProgress.create(items)
        await self.store.save_progress(progress)
        return progress

    # ──────────────────────────────────────────────
    # Item Execution
    # ──────────────────────────────────────────────

    async def _invoke(self, prompt: str, cwd: str) -> InvocationOutcome:
        self.stats["invocations"] += 1
        started = time.monotonic()
        try:
            return await asyncio.wait_for(
                self.invoker.invoke(prompt, cwd), timeout=self.timeout + self.TIMEOUT_GRACE
            )
        except asyncio.TimeoutError:
            return InvocationOutcome(
                kind=OutcomeKind.TIMEOUT,
                error="timeout",
                duration=time.monotonic() - started,
            )

    async def _execute_item(self, item: WorkItem, handlers: TaskHandlers, cwd: str) -> dict:
        """Run one item end to end and return its result record."""
        try:
            if handlers.should_skip is not None:
                reason = await _resolve(handlers.should_skip(item))
                if reason:
                    return {"id": item.id, "status": "skipped", "reason": reason}

            prompt = await _resolve(handlers.build_prompt(item))
            outcome = await self._invoke(prompt, cwd)
            result = await _resolve(handlers.handle_result(item, outcome))
        except Exception as e:
            logger.error(f"  → Error: {item.id} - {e}")
            return {"id": item.id, "status": "error", "reason": str(e)}

        if not isinstance(result, dict) or not result.get("status"):
            return {
                "id": item.id,
                "status": "error",
                "reason": f"handler returned no status: {result!r}",
            }
        return {**result, "id": item.id}

    async def _process_items(
        self, progress: RunProgress, pending: list[WorkItem], handlers: TaskHandlers, cwd: str
    ) -> None:
        """
        Drain pending items through the permit pool, persisting after each.

        A fatal error in one item (checkpoint write failure, process crash)
        stops the pool: items still waiting for a permit are never started.
        """
        sem = asyncio.Semaphore(self.concurrency)
        abort = asyncio.Event()

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=self.console,
            disable=not self.show_progress,
        ) as bar:
            task_id = bar.add_task(
                f"[green]{self.name}[/green]",
                total=len(progress.items),
                completed=len(progress.completed),
            )

            async def process_one(item: WorkItem):
                async with sem:
                    if abort.is_set():
                        return
                    try:
                        self._in_flight += 1
                        self.stats["peak_in_flight"] = max(
                            self.stats["peak_in_flight"], self._in_flight
                        )
                        logger.info(f"Processing: {item.id}")
                        try:
                            result = await self._execute_item(item, handlers, cwd)
                        finally:
                            self._in_flight -= 1

                        await self.store.record(progress, result)
                    except BaseException:
                        abort.set()
                        raise
                    bar.advance(task_id)
                    logger.info(f"  → {result['status']}: {item.id}")

            tasks = [asyncio.create_task(process_one(item)) for item in pending]
            try:
                await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

    # ──────────────────────────────────────────────
    # Main Run
    # ──────────────────────────────────────────────

    async def run(
        self,
        handlers: TaskHandlers,
        resume: bool = False,
        cwd: str | os.PathLike | None = None,
    ) -> RunSummary:
        """
        Run the batch to completion.

        Args:
            handlers: Job callbacks (scan, build_prompt, handle_result).
            resume: Continue an unfinished checkpoint instead of rescanning.
            cwd: Working directory for scanning and for the LLM command.

        Returns:
            The aggregate summary, also written to the result file.

        Raises:
            RunLockedError: Another live process is running this name.
            CheckpointError: Progress could not be persisted; the run stops
                and the last good checkpoint stays on disk for resume.
        """
        cwd = str(cwd or os.getcwd())
        self.store.acquire_lock()
        handler, previous_level = self._attach_log_file(append=resume)
        self.stats["start_time"] = time.time()

        try:
            logger.info(f"Started: {self.name}")
            logger.info(f"Concurrency: {self.concurrency}")

            progress = await self._load_or_create_progress(handlers, resume, cwd)
            pending = progress.remaining()
            logger.info(f"Processing {len(pending)} items...")

            await self._process_items(progress, pending, handlers, cwd)

            summary = summarize(self.name, progress.results)
            logger.info(f"Summary: {summary.processed} processed")
            for status, count in summary.by_status.items():
                logger.info(f"  {status}: {count}")

            await self.store.write_summary(summary)
            logger.info(f"Result: {self.store.result_file}")
            await self.store.clear_progress()
            logger.info("Completed")

            self._print_final_statistics(summary)
            return summary
        finally:
            self.store.release_lock()
            self._detach_log_file(handler, previous_level)

    def _print_final_statistics(self, summary: RunSummary) -> None:
        if not self.show_progress:
            return
        elapsed = time.time() - self.stats["start_time"]

        table = Table(
            title=f"{self.name}: {summary.processed} processed in {elapsed:.0f}s",
            caption=(
                f"{self.stats['invocations']} invocations, "
                f"{self.stats['resumed']} resumed from checkpoint, "
                f"peak {self.stats['peak_in_flight']} in flight"
            ),
        )
        table.add_column("Status")
        table.add_column("Count", justify="right")
        for status, count in sorted(summary.by_status.items()):
            style = "red" if is_failure(status) else "green"
            table.add_row(f"[{style}]{status}[/{style}]", str(count))
        self.console.print(table)

        for failure in summary.failed_list:
            self.console.print(
                f"  [red]✗[/red] {failure['id']}: {failure['status']} ({failure.get('reason')})"
            )
