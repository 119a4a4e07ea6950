"""
Dependency Graph and topological wave scheduling.

Waves are topological layers: every task in wave N depends only on tasks in
waves before N, so the tasks of one wave can run side by side. Within a wave,
tasks are ordered by priority (0 first), then by input order.
"""

import logging
from dataclasses import dataclass, field

from taskwave.models.task import TaskRecord
from taskwave.planner.dependencies import parse_dependencies

logger = logging.getLogger(__name__)


class DependencyCycleError(ValueError):
    """
    Raised when remaining tasks all wait on each other.

    Attributes:
        stuck: Ids that could not be scheduled, in input order.
        waves: Waves computed before the cycle was hit.
    """

    def __init__(self, stuck: list[str], waves: list[list[str]]):
        super().__init__(f"Circular dependency among tasks: {', '.join(stuck)}")
        self.stuck = stuck
        self.waves = waves


@dataclass
class DependencyNode:
    task: TaskRecord
    deps: list[str] = field(default_factory=list)
    dependents: list[str] = field(default_factory=list)

    @property
    def priority(self) -> int:
        return self.task.priority


class DependencyGraph:
    """Dependency edges between the tasks of one planning pass."""

    def __init__(self, nodes: dict[str, DependencyNode]):
        self.nodes = nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self.nodes

    def __getitem__(self, task_id: str) -> DependencyNode:
        return self.nodes[task_id]

    @classmethod
    def build(cls, tasks: list[TaskRecord]) -> "DependencyGraph":
        """
        Build the graph from task descriptions.

        References to ids outside `tasks` are dropped: those tasks are either
        finished already or belong to another batch, and count as satisfied.
        """
        task_ids = {task.id for task in tasks}
        nodes: dict[str, DependencyNode] = {}

        for task in tasks:
            if task.id in nodes:
                logger.warning(f"Duplicate task id ignored: {task.id}")
                continue
            referenced = parse_dependencies(task.description)
            deps = [d for d in referenced if d in task_ids and d != task.id]
            dropped = [d for d in referenced if d not in task_ids]
            if dropped:
                logger.debug(f"Task {task.id}: ignoring unknown references {dropped}")
            nodes[task.id] = DependencyNode(task=task, deps=deps)

        for task_id, node in nodes.items():
            for dep in node.deps:
                nodes[dep].dependents.append(task_id)

        return cls(nodes)

    def waves(self) -> list[list[str]]:
        """
        Layer the tasks into waves.

        Raises:
            DependencyCycleError: Some tasks can never become ready.
        """
        order = {task_id: index for index, task_id in enumerate(self.nodes)}
        waves: list[list[str]] = []
        scheduled: set[str] = set()
        remaining = list(self.nodes)

        while remaining:
            ready = [
                task_id
                for task_id in remaining
                if all(dep in scheduled for dep in self.nodes[task_id].deps)
            ]
            if not ready:
                raise DependencyCycleError(stuck=remaining, waves=waves)

            ready.sort(key=lambda task_id: (self.nodes[task_id].priority, order[task_id]))
            waves.append(ready)
            scheduled.update(ready)
            remaining = [task_id for task_id in remaining if task_id not in scheduled]

        return waves
