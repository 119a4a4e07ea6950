"""
Execution Plan — waves annotated for reporting and execution.
"""

from dataclasses import asdict, dataclass, field

from taskwave.models.task import Project, WorkItem
from taskwave.planner.graph import DependencyGraph


@dataclass
class PlannedTask:
    id: str
    title: str
    priority: int
    deps: list[str] = field(default_factory=list)
    description: str = ""

    def to_work_item(self) -> WorkItem:
        return WorkItem(
            id=self.id,
            fields={
                "title": self.title,
                "description": self.description,
                "priority": self.priority,
                "deps": list(self.deps),
            },
        )


@dataclass
class Wave:
    level: int
    tasks: list[PlannedTask]
    max_parallel: int

    @property
    def parallel(self) -> bool:
        return len(self.tasks) > 1

    @property
    def task_ids(self) -> list[str]:
        return [task.id for task in self.tasks]


@dataclass
class ExecutionPlan:
    project: Project
    waves: list[Wave]
    total_tasks: int
    max_parallel: int

    def to_dict(self) -> dict:
        return {
            "project": self.project.to_dict(),
            "summary": {
                "totalTasks": self.total_tasks,
                "totalWaves": len(self.waves),
                "maxParallel": self.max_parallel,
            },
            "waves": [
                {
                    "level": wave.level,
                    "tasks": [asdict(task) for task in wave.tasks],
                    "parallel": wave.parallel,
                    "maxParallel": wave.max_parallel,
                }
                for wave in self.waves
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExecutionPlan":
        waves = [
            Wave(
                level=w["level"],
                tasks=[PlannedTask(**t) for t in w.get("tasks", [])],
                max_parallel=w.get("maxParallel", 1),
            )
            for w in data.get("waves", [])
        ]
        summary = data.get("summary", {})
        return cls(
            project=Project.from_dict(data["project"]),
            waves=waves,
            total_tasks=summary.get("totalTasks", sum(len(w.tasks) for w in waves)),
            max_parallel=summary.get("maxParallel", 1),
        )


def build_plan(
    project: Project, graph: DependencyGraph, waves: list[list[str]], max_parallel: int
) -> ExecutionPlan:
    """Attach task metadata and per-wave parallelism to computed waves."""
    plan_waves = []
    for level, task_ids in enumerate(waves):
        tasks = [
            PlannedTask(
                id=task_id,
                title=graph[task_id].task.title,
                priority=graph[task_id].priority,
                deps=list(graph[task_id].deps),
                description=graph[task_id].task.description,
            )
            for task_id in task_ids
        ]
        plan_waves.append(
            Wave(level=level, tasks=tasks, max_parallel=min(len(tasks), max_parallel))
        )

    return ExecutionPlan(
        project=project,
        waves=plan_waves,
        total_tasks=len(graph),
        max_parallel=max_parallel,
    )


def format_plan_markdown(plan: ExecutionPlan) -> str:
    lines = [
        "# Batch Execution Plan\n",
        f"**Project**: {plan.project.name}",
        f"**Path**: {plan.project.path}\n",
        f"- Total tasks: {plan.total_tasks}",
        f"- Waves: {len(plan.waves)}",
        f"- Max parallel: {plan.max_parallel}\n",
    ]

    for wave in plan.waves:
        note = f"(parallel, up to {wave.max_parallel})" if wave.parallel else "(sequential)"
        lines.append(f"## Wave {wave.level} {note}\n")
        for task in wave.tasks:
            deps_note = f" [deps: {', '.join(task.deps)}]" if task.deps else ""
            lines.append(f"- [ ] **{task.title}** (P{task.priority}){deps_note}")
            lines.append(f"  - ID: `{task.id}`")
        lines.append("")

    return "\n".join(lines)
