"""Dependency extraction and wave planning for task batches."""

from taskwave.planner.dependencies import parse_dependencies
from taskwave.planner.graph import DependencyCycleError, DependencyGraph, DependencyNode
from taskwave.planner.plan import ExecutionPlan, PlannedTask, Wave, build_plan, format_plan_markdown

__all__ = [
    "DependencyCycleError",
    "DependencyGraph",
    "DependencyNode",
    "ExecutionPlan",
    "PlannedTask",
    "Wave",
    "build_plan",
    "format_plan_markdown",
    "parse_dependencies",
]
