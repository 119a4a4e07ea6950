"""
taskwave CLI — batch LLM jobs with checkpoint/resume and dependency waves.

Usage:
    taskwave audit --concurrency 8 --timeout 120
    taskwave audit --resume
    taskwave plan --project abc123 --json
    taskwave execute --project abc123 --max-parallel 3
    taskwave status --name code-audit
"""

import asyncio
import json
import logging
import shlex
from pathlib import Path

import click

from taskwave.core.defaults import (
    DEFAULT_COMMAND,
    DEFAULT_CONCURRENCY,
    DEFAULT_KANBAN_URL,
    DEFAULT_MAX_PARALLEL,
    DEFAULT_TIMEOUT,
)

DEFAULT_STATE_DIR = ".taskwave"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _make_runner_factory(command, concurrency, timeout, state_dir):
    from taskwave.core.invoker import CommandInvoker, InvokerNotFoundError
    from taskwave.core.runner import BatchRunner

    argv = shlex.split(command) if command else list(DEFAULT_COMMAND)
    try:
        CommandInvoker(argv, timeout=timeout).check()
    except InvokerNotFoundError as e:
        raise click.ClickException(f"{e}. Set --command or TASKWAVE_COMMAND.") from e

    def factory(name: str) -> BatchRunner:
        return BatchRunner(
            name=name,
            invoker=CommandInvoker(argv, timeout=timeout),
            concurrency=concurrency,
            timeout=timeout,
            state_dir=Path(state_dir),
        )

    return factory


async def _build_plan(client, project_id, priority, max_parallel, cwd):
    from taskwave.planner import DependencyGraph, build_plan

    if project_id:
        project = await client.get_project(project_id)
    else:
        project = await client.detect_project(cwd)
        if project is None:
            known = "\n".join(
                f"  {p.id}: {p.name} ({p.path})" for p in await client.list_projects()
            )
            raise click.ClickException(
                f"No project found for {cwd}. Use --project to pick one.\nAvailable projects:\n{known}"
            )

    tasks = await client.fetch_tasks(project.id, status="todo", priority=priority)
    graph = DependencyGraph.build(tasks)
    return build_plan(project, graph, graph.waves(), max_parallel)


def runner_options(fn):
    """Options shared by every command that runs a batch."""
    options = [
        click.option(
            "--concurrency", "-c", type=click.IntRange(min=1), default=DEFAULT_CONCURRENCY,
            show_default=True, help="Maximum concurrent LLM invocations.",
        ),
        click.option(
            "--timeout", "-t", type=float, default=DEFAULT_TIMEOUT, show_default=True,
            help="Seconds before an invocation is killed.",
        ),
        click.option(
            "--command", envvar="TASKWAVE_COMMAND", default=None,
            help="LLM command line (prompt on stdin). Defaults to codeagent-wrapper.",
        ),
        click.option(
            "--state-dir", "-d", type=click.Path(file_okay=False), envvar="TASKWAVE_STATE_DIR",
            default=DEFAULT_STATE_DIR, show_default=True, help="Directory for checkpoint files.",
        ),
        click.option("--resume", is_flag=True, help="Continue an unfinished run."),
        click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging."),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def planner_options(fn):
    options = [
        click.option("--project", "-p", "project_id", default=None, help="Kanban project ID."),
        click.option(
            "--priority", type=click.IntRange(0, 3), default=None,
            help="Only plan tasks of this priority.",
        ),
        click.option(
            "--max-parallel", "-m", type=click.IntRange(min=1), default=DEFAULT_MAX_PARALLEL,
            show_default=True, help="Maximum parallel tasks per wave.",
        ),
        click.option(
            "--base-url", envvar="KANBAN_URL", default=DEFAULT_KANBAN_URL, show_default=True,
            help="Kanban API base URL.",
        ),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


@click.group()
@click.version_option(package_name="taskwave")
def cli():
    """taskwave — batch LLM jobs with checkpoint/resume and dependency waves."""
    pass


@cli.command()
@runner_options
@click.argument("path", type=click.Path(exists=True, file_okay=False), default=".")
def audit(concurrency, timeout, command, state_dir, resume, verbose, path):
    """Audit every code directory under PATH for security and quality issues."""
    from taskwave.core.checkpoint import CheckpointError, RunLockedError
    from taskwave.jobs.audit import CodeAuditJob

    _configure_logging(verbose)
    job = CodeAuditJob()
    runner = _make_runner_factory(command, concurrency, timeout, state_dir)(job.name)

    try:
        summary = asyncio.run(runner.run(job.handlers(), resume=resume, cwd=path))
    except (CheckpointError, RunLockedError) as e:
        raise click.ClickException(str(e)) from e

    if summary.failed:
        raise SystemExit(1)


@cli.command()
@planner_options
@click.option("--json", "as_json", is_flag=True, help="Print the plan as JSON.")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
def plan(project_id, priority, max_parallel, base_url, as_json, verbose):
    """Plan todo tasks into dependency waves."""
    from taskwave.planner import DependencyCycleError, format_plan_markdown
    from taskwave.sources.kanban import KanbanClient, KanbanError

    _configure_logging(verbose)

    async def _plan():
        async with KanbanClient(base_url) as client:
            return await _build_plan(client, project_id, priority, max_parallel, Path.cwd())

    try:
        execution_plan = asyncio.run(_plan())
    except DependencyCycleError as e:
        raise click.ClickException(f"{e}. Fix the task descriptions and re-plan.") from e
    except KanbanError as e:
        raise click.ClickException(str(e)) from e

    if as_json:
        click.echo(json.dumps(execution_plan.to_dict(), indent=2))
    else:
        click.echo(format_plan_markdown(execution_plan))


@cli.command()
@planner_options
@runner_options
@click.option("--no-mark-done", is_flag=True, help="Leave finished tasks open in the task store.")
@click.option(
    "--keep-going", is_flag=True, help="Run dependents of failed tasks instead of skipping them."
)
def execute(
    project_id, priority, max_parallel, base_url, concurrency, timeout, command, state_dir,
    resume, verbose, no_mark_done, keep_going,
):
    """Plan todo tasks and run them wave by wave."""
    from taskwave.core.checkpoint import CheckpointError, RunLockedError
    from taskwave.core.waves import WaveExecutor
    from taskwave.jobs.kanban import KanbanTaskJob
    from taskwave.planner import DependencyCycleError
    from taskwave.sources.kanban import KanbanClient, KanbanError

    _configure_logging(verbose)
    factory = _make_runner_factory(command, min(concurrency, max_parallel), timeout, state_dir)

    async def _execute():
        async with KanbanClient(base_url) as client:
            execution_plan = await _build_plan(
                client, project_id, priority, max_parallel, Path.cwd()
            )
            executor = WaveExecutor(
                name=f"kanban-{execution_plan.project.id}",
                runner_factory=factory,
                state_dir=Path(state_dir),
                skip_failed_dependencies=not keep_going,
            )
            job = KanbanTaskJob(client, mark_done=not no_mark_done)
            return await executor.run(execution_plan, job.handlers(), resume=resume)

    try:
        summaries = asyncio.run(_execute())
    except DependencyCycleError as e:
        raise click.ClickException(f"{e}. Fix the task descriptions and re-plan.") from e
    except (KanbanError, CheckpointError, RunLockedError) as e:
        raise click.ClickException(str(e)) from e

    failed = sum(s.failed for s in summaries)
    click.echo(f"{len(summaries)} waves, {sum(s.processed for s in summaries)} tasks, {failed} failed")
    if failed:
        raise SystemExit(1)


@cli.command()
@click.option("--name", "-n", default="code-audit", show_default=True, help="Run name.")
@click.option(
    "--state-dir", "-d", type=click.Path(file_okay=False), envvar="TASKWAVE_STATE_DIR",
    default=DEFAULT_STATE_DIR, show_default=True, help="Directory for checkpoint files.",
)
def status(name, state_dir):
    """Show whether a run is idle, running, crashed or finished."""
    from taskwave.core.checkpoint import CheckpointError, CheckpointStore, RunState

    store = CheckpointStore(name, Path(state_dir))
    try:
        inspection = asyncio.run(store.inspect())
    except CheckpointError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"{name}: {inspection.state.value}")
    if inspection.progress is not None:
        progress = inspection.progress
        click.echo(f"  started: {progress.started_at}")
        click.echo(f"  completed: {len(progress.completed)}/{len(progress.items)}")
        if inspection.state is RunState.CRASHED:
            click.echo("  rerun with --resume to continue")
    if inspection.summary is not None:
        click.echo(json.dumps(inspection.summary.to_dict(), indent=2))


if __name__ == "__main__":
    cli()
