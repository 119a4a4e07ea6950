"""Data models shared by the runner and the planner."""

from taskwave.models.progress import (
    FAILURE_STATUSES,
    Progress,
    RunStatus,
    RunSummary,
    is_failure,
    summarize,
)
from taskwave.models.task import Project, TaskRecord, WorkItem

__all__ = [
    "FAILURE_STATUSES",
    "Progress",
    "Project",
    "RunStatus",
    "RunSummary",
    "TaskRecord",
    "WorkItem",
    "is_failure",
    "summarize",
]
