"""Tests for WaveExecutor: wave ordering, failed-dependency policy and resume."""

import json
import os

import pytest

from taskwave.core.checkpoint import CheckpointError, RunLockedError
from taskwave.core.invoker import FakeInvoker, InvocationOutcome, OutcomeKind
from taskwave.core.parsing import outcome_failure
from taskwave.core.runner import BatchRunner, TaskHandlers
from taskwave.core.waves import WaveExecutor
from taskwave.models.task import Project, TaskRecord
from taskwave.planner import DependencyGraph, build_plan


class Crash(BaseException):
    """Simulated process death."""


FAILED = InvocationOutcome(kind=OutcomeKind.FAILED, error="exit code 1")


@pytest.fixture
def plan():
    graph = DependencyGraph.build(
        [
            TaskRecord("a", "Schema", priority=0),
            TaskRecord("b", "API", description="after [a]"),
            TaskRecord("c", "CLI", description="after [a]"),
            TaskRecord("d", "Docs", description="blocked by [b]"),
        ]
    )
    return build_plan(Project("p1", "Demo", "/work/demo"), graph, graph.waves(), max_parallel=2)


def handlers() -> TaskHandlers:
    def handle_result(item, outcome):
        return outcome_failure(outcome) or {"status": "processed"}

    return TaskHandlers(
        scan=lambda _cwd: pytest.fail("waves supply their own items"),
        build_prompt=lambda item: item.id,
        handle_result=handle_result,
    )


def make_executor(tmp_path, invoker, **kwargs):
    def factory(name):
        return BatchRunner(
            name=name, invoker=invoker, concurrency=1, state_dir=tmp_path, show_progress=False
        )

    return WaveExecutor("kanban-p1", factory, state_dir=tmp_path, **kwargs)


class TestWaveExecutor:
    @pytest.mark.asyncio
    async def test_runs_waves_in_order(self, tmp_path, plan):
        invoker = FakeInvoker()
        executor = make_executor(tmp_path, invoker)

        summaries = await executor.run(plan, handlers(), cwd=tmp_path)

        assert [w.task_ids for w in plan.waves] == [["a"], ["b", "c"], ["d"]]
        assert invoker.prompts == ["a", "b", "c", "d"]
        assert [s.name for s in summaries] == [
            "kanban-p1-wave0",
            "kanban-p1-wave1",
            "kanban-p1-wave2",
        ]
        assert all(s.by_status == {"processed": s.processed} for s in summaries)
        assert not executor.plan_file.exists()

    @pytest.mark.asyncio
    async def test_failed_dependency_skips_dependents(self, tmp_path, plan):
        invoker = FakeInvoker(outcomes={"a": FAILED})
        executor = make_executor(tmp_path, invoker)

        summaries = await executor.run(plan, handlers(), cwd=tmp_path)

        assert invoker.prompts == ["a"]
        assert summaries[0].by_status == {"llm_error": 1}
        assert summaries[1].by_status == {"skipped": 2}
        assert summaries[2].by_status == {"skipped": 1}

    @pytest.mark.asyncio
    async def test_failure_only_blocks_its_own_dependents(self, tmp_path, plan):
        invoker = FakeInvoker(outcomes={"c": FAILED})
        summaries = await make_executor(tmp_path, invoker).run(plan, handlers(), cwd=tmp_path)

        assert invoker.prompts == ["a", "b", "c", "d"]
        assert summaries[2].by_status == {"processed": 1}

    @pytest.mark.asyncio
    async def test_keep_going_runs_dependents(self, tmp_path, plan):
        invoker = FakeInvoker(outcomes={"a": FAILED})
        executor = make_executor(tmp_path, invoker, skip_failed_dependencies=False)

        summaries = await executor.run(plan, handlers(), cwd=tmp_path)

        assert invoker.prompts == ["a", "b", "c", "d"]
        assert summaries[1].by_status == {"processed": 2}

    @pytest.mark.asyncio
    async def test_crash_then_resume_skips_finished_waves(self, tmp_path, plan):
        crashing = FakeInvoker(outcomes={"c": Crash()})
        with pytest.raises(Crash):
            await make_executor(tmp_path, crashing).run(plan, handlers(), cwd=tmp_path)

        assert (tmp_path / ".kanban-p1-plan.json").exists()

        resumed = FakeInvoker()
        executor = make_executor(tmp_path, resumed)
        summaries = await executor.run(plan, handlers(), resume=True, cwd=tmp_path)

        assert resumed.prompts == ["c", "d"]
        assert [s.processed for s in summaries] == [1, 2, 1]
        assert not executor.plan_file.exists()

    @pytest.mark.asyncio
    async def test_resume_uses_frozen_plan(self, tmp_path, plan):
        with pytest.raises(Crash):
            await make_executor(tmp_path, FakeInvoker(outcomes={"a": Crash()})).run(
                plan, handlers(), cwd=tmp_path
            )

        replanned = build_plan(
            plan.project, DependencyGraph.build([TaskRecord("z", "New")]), [["z"]], max_parallel=2
        )
        resumed = FakeInvoker()
        await make_executor(tmp_path, resumed).run(replanned, handlers(), resume=True, cwd=tmp_path)

        assert resumed.prompts == ["a", "b", "c", "d"]

    @pytest.mark.asyncio
    async def test_fresh_run_ignores_old_wave_results(self, tmp_path, plan):
        await make_executor(tmp_path, FakeInvoker()).run(plan, handlers(), cwd=tmp_path)

        again = FakeInvoker()
        await make_executor(tmp_path, again).run(plan, handlers(), resume=True, cwd=tmp_path)

        assert again.prompts == ["a", "b", "c", "d"]


class TestWaveLocking:
    @pytest.mark.asyncio
    async def test_refuses_when_a_wave_is_held_elsewhere(self, tmp_path, plan):
        (tmp_path / ".kanban-p1-wave1.lock").write_text(str(os.getppid()))
        (tmp_path / ".kanban-p1-plan.json").write_text('{"marker": true}')
        invoker = FakeInvoker()

        with pytest.raises(RunLockedError):
            await make_executor(tmp_path, invoker).run(plan, handlers(), cwd=tmp_path)

        assert invoker.prompts == []
        assert json.loads((tmp_path / ".kanban-p1-plan.json").read_text()) == {"marker": True}
        assert not (tmp_path / ".kanban-p1.lock").exists()

    @pytest.mark.asyncio
    async def test_refuses_when_the_plan_is_held_elsewhere(self, tmp_path, plan):
        (tmp_path / ".kanban-p1.lock").write_text(str(os.getppid()))
        invoker = FakeInvoker()

        with pytest.raises(RunLockedError):
            await make_executor(tmp_path, invoker).run(plan, handlers(), cwd=tmp_path)

        assert invoker.prompts == []
        assert not (tmp_path / ".kanban-p1-plan.json").exists()

    @pytest.mark.asyncio
    async def test_lock_released_after_crash(self, tmp_path, plan):
        with pytest.raises(Crash):
            await make_executor(tmp_path, FakeInvoker(outcomes={"a": Crash()})).run(
                plan, handlers(), cwd=tmp_path
            )
        assert not (tmp_path / ".kanban-p1.lock").exists()

    @pytest.mark.asyncio
    async def test_malformed_frozen_plan(self, tmp_path, plan):
        (tmp_path / ".kanban-p1-plan.json").write_text("[]")
        with pytest.raises(CheckpointError):
            await make_executor(tmp_path, FakeInvoker()).run(
                plan, handlers(), resume=True, cwd=tmp_path
            )
