"""
Task Models — work items for the batch runner and task records for the planner.
"""

from dataclasses import dataclass, field
from typing import Any


MIN_PRIORITY = 0
MAX_PRIORITY = 3


@dataclass(frozen=True)
class WorkItem:
    """
    One unit of batch input.

    Identity is the `id`; everything else is caller data carried along
    untouched (a directory path, a task title, ...).
    """

    id: str
    fields: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __getitem__(self, key: str) -> Any:
        if key == "id":
            return self.id
        return self.fields[key]

    def get(self, key: str, default: Any = None) -> Any:
        if key == "id":
            return self.id
        return self.fields.get(key, default)

    def to_dict(self) -> dict:
        """Serialize flat: {"id": ..., **fields}."""
        return {"id": self.id, **self.fields}

    @classmethod
    def from_dict(cls, data: dict) -> "WorkItem":
        if "id" not in data:
            raise ValueError(f"Work item without id: {data!r}")
        fields = {k: v for k, v in data.items() if k != "id"}
        return cls(id=str(data["id"]), fields=fields)


@dataclass
class Project:
    """A task-store project, bound to a directory on disk."""

    id: str
    name: str
    path: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "Project":
        return cls(id=str(data["id"]), name=data.get("name") or "", path=data.get("path") or "")

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "path": self.path}


@dataclass
class TaskRecord:
    """A pending task as read from the task store."""

    id: str
    title: str
    description: str = ""
    priority: int = 2
    status: str = "todo"

    def __post_init__(self):
        if not MIN_PRIORITY <= self.priority <= MAX_PRIORITY:
            raise ValueError(
                f"Task {self.id}: priority {self.priority} outside {MIN_PRIORITY}..{MAX_PRIORITY}"
            )

    @classmethod
    def from_dict(cls, data: dict) -> "TaskRecord":
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            description=data.get("description") or "",
            priority=int(data.get("priority", 2)),
            status=data.get("status", "todo"),
        )

    def to_work_item(self) -> WorkItem:
        return WorkItem(
            id=self.id,
            fields={
                "title": self.title,
                "description": self.description,
                "priority": self.priority,
            },
        )
