"""
Progress Model — checkpoint state and final summaries for batch runs.

The on-disk keys are camelCase so status tooling reading the checkpoint
files does not depend on Python naming.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from taskwave.models.task import WorkItem


class RunStatus(Enum):
    """Lifecycle status of a batch run."""

    IDLE = "idle"
    RUNNING = "running"
    CRASHED = "crashed"


FAILURE_STATUSES = frozenset({"timeout", "empty_output"})


def is_failure(status: str) -> bool:
    """A result counts as failed if it timed out, came back empty, or is any *error."""
    return status in FAILURE_STATUSES or "error" in status


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Progress:
    """Checkpoint data for a resumable batch run."""

    status: RunStatus = RunStatus.IDLE
    started_at: str = ""
    items: list[WorkItem] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    results: list[dict] = field(default_factory=list)

    @staticmethod
    def create(items: list[WorkItem]) -> "Progress":
        """Create a fresh running checkpoint for a scanned item list."""
        return Progress(
            status=RunStatus.RUNNING,
            started_at=utc_now(),
            items=list(items),
        )

    @property
    def item_ids(self) -> list[str]:
        return [item.id for item in self.items]

    def remaining(self) -> list[WorkItem]:
        """Items not yet completed, in original order."""
        done = set(self.completed)
        return [item for item in self.items if item.id not in done]

    def add_result(self, result: dict) -> None:
        """
        Append one result, keeping completed/results in lockstep.

        Raises ValueError for an unknown id or one already completed.
        """
        item_id = result.get("id")
        if item_id not in set(self.item_ids):
            raise ValueError(f"Result for unknown item: {item_id!r}")
        if item_id in self.completed:
            raise ValueError(f"Item already completed: {item_id!r}")
        self.completed.append(item_id)
        self.results.append(dict(result))

    def to_dict(self) -> dict:
        """Serialize to the JSON checkpoint layout."""
        return {
            "status": self.status.value,
            "startedAt": self.started_at,
            "items": [item.to_dict() for item in self.items],
            "completed": list(self.completed),
            "results": [dict(r) for r in self.results],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Progress":
        return cls(
            status=RunStatus(data.get("status", "idle")),
            started_at=data.get("startedAt", ""),
            items=[WorkItem.from_dict(i) for i in data.get("items", [])],
            completed=list(data.get("completed", [])),
            results=list(data.get("results", [])),
        )


@dataclass
class RunSummary:
    """Immutable record written once a run has processed every item."""

    name: str
    completed_at: str
    processed: int
    by_status: dict[str, int]
    failed_list: list[dict]
    status: str = "success"

    @property
    def failed(self) -> int:
        return len(self.failed_list)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "completedAt": self.completed_at,
            "status": self.status,
            "processed": self.processed,
            "byStatus": dict(self.by_status),
            "failed": self.failed,
            "failedList": list(self.failed_list),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RunSummary":
        return cls(
            name=data.get("name", ""),
            completed_at=data.get("completedAt", ""),
            processed=data.get("processed", 0),
            by_status=dict(data.get("byStatus", {})),
            failed_list=list(data.get("failedList", [])),
            status=data.get("status", "success"),
        )


def summarize(name: str, results: list[dict]) -> RunSummary:
    """Aggregate result records by status."""
    by_status = Counter(r["status"] for r in results)
    failed_list = [
        {"id": r["id"], "status": r["status"], "reason": r.get("reason")}
        for r in results
        if is_failure(r["status"])
    ]
    return RunSummary(
        name=name,
        completed_at=utc_now(),
        processed=len(results),
        by_status=dict(by_status),
        failed_list=failed_list,
    )
