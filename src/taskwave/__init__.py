"""
taskwave - Batch LLM task runner with checkpoint/resume and dependency waves.

Runs many prompts through an LLM command-line tool with bounded concurrency,
survives crashes through per-item checkpoints, and orders interdependent
tasks into waves that can each run in parallel.
"""

__version__ = "1.0.0"


def __getattr__(name: str):
    """Lazy import for heavy dependencies."""
    if name == "BatchRunner":
        from taskwave.core.runner import BatchRunner

        return BatchRunner
    if name == "TaskHandlers":
        from taskwave.core.runner import TaskHandlers

        return TaskHandlers
    if name == "DependencyGraph":
        from taskwave.planner.graph import DependencyGraph

        return DependencyGraph
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["BatchRunner", "TaskHandlers", "DependencyGraph", "__version__"]
