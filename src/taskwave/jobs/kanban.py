"""Kanban Task Job — hand each planned task to an agent and close it on success."""

import logging

from taskwave.core.invoker import InvocationOutcome
from taskwave.core.parsing import outcome_failure
from taskwave.core.runner import TaskHandlers
from taskwave.models.task import WorkItem
from taskwave.sources.kanban import KanbanClient, KanbanError

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """Complete the following task in this repository.

Task: {title} (ID: {id}, priority P{priority})

{description}

When you are done, summarize what you changed."""


class KanbanTaskJob:
    """Handlers for executing planned tasks; scanning is done by the planner."""

    def __init__(self, client: KanbanClient | None = None, mark_done: bool = True):
        self.client = client
        self.mark_done = mark_done

    def build_prompt(self, item: WorkItem) -> str:
        return PROMPT_TEMPLATE.format(
            title=item.get("title", item.id),
            id=item.id,
            priority=item.get("priority", "?"),
            description=item.get("description") or "(no description)",
        ).rstrip()

    async def handle_result(self, item: WorkItem, outcome: InvocationOutcome) -> dict:
        failure = outcome_failure(outcome)
        if failure is not None:
            return failure

        result = {"status": "processed"}
        if outcome.session_id:
            result["sessionId"] = outcome.session_id

        if self.client is not None and self.mark_done:
            try:
                await self.client.update_task(item.id, status="done")
            except KanbanError as e:
                logger.warning(f"Task {item.id} finished but could not be marked done: {e}")
                return {**result, "status": "update_error", "reason": str(e)}
        return result

    def handlers(self) -> TaskHandlers:
        return TaskHandlers(
            scan=lambda _cwd: [],
            build_prompt=self.build_prompt,
            handle_result=self.handle_result,
        )
