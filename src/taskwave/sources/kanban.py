"""
Kanban Task Store Client.

Reads projects and tasks from a local kanban service and writes task status
back. Only the handful of fields the planner needs are interpreted.
"""

import asyncio
import logging
import os
from pathlib import Path

import httpx

from taskwave.core.defaults import DEFAULT_KANBAN_URL
from taskwave.core.resilience import ExponentialBackoff
from taskwave.models.task import Project, TaskRecord

logger = logging.getLogger(__name__)


class KanbanError(RuntimeError):
    """Raised when the task store rejects a request or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _items(payload) -> list:
    if isinstance(payload, dict):
        return payload.get("items") or []
    return payload or []


class KanbanClient:
    """
    Async client for the kanban REST API (`/api/v1/...`).

    Pass an existing `httpx.AsyncClient` to share a connection pool or to
    inject a mock transport; otherwise one is created and closed by `aclose()`.
    """

    def __init__(
        self,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        backoff: ExponentialBackoff | None = None,
    ):
        self.base_url = (base_url or os.environ.get("KANBAN_URL") or DEFAULT_KANBAN_URL).rstrip("/")
        self.api = f"{self.base_url}/api/v1"
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0))
        self.backoff = backoff or ExponentialBackoff()

    async def __aenter__(self) -> "KanbanClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    # ──────────────────────────────────────────────
    # HTTP Layer
    # ──────────────────────────────────────────────

    async def _request(self, method: str, path: str, json: dict | None = None, attempt: int = 0):
        """Send a request, retrying transient failures, and return decoded JSON."""
        url = f"{self.api}{path}"
        try:
            resp = await self.client.request(method, url, json=json)
        except httpx.TransportError as e:
            if self.backoff.should_retry(attempt):
                delay = self.backoff.calculate_delay(attempt)
                logger.debug(f"{method} {url} failed ({type(e).__name__}), retry {attempt + 1} after {delay:.1f}s")
                await asyncio.sleep(delay)
                return await self._request(method, path, json, attempt + 1)
            raise KanbanError(f"{method} {url}: {e}") from e

        if resp.status_code == 429 and self.backoff.should_retry(attempt):
            retry_after = resp.headers.get("Retry-After")
            delay = self.backoff.calculate_delay(
                attempt, float(retry_after) if retry_after and retry_after.isdigit() else None
            )
            logger.warning(f"Rate limited by task store. Waiting {delay:.1f}s...")
            await asyncio.sleep(delay)
            return await self._request(method, path, json, attempt + 1)

        if resp.is_error:
            raise KanbanError(
                f"HTTP {resp.status_code} for {method} {url}: {resp.text[:200]}",
                status_code=resp.status_code,
            )

        try:
            return resp.json()
        except ValueError as e:
            raise KanbanError(f"Invalid JSON from {method} {url}: {e}") from e

    # ──────────────────────────────────────────────
    # Projects
    # ──────────────────────────────────────────────

    async def list_projects(self) -> list[Project]:
        return [Project.from_dict(p) for p in _items(await self._request("GET", "/projects"))]

    async def get_project(self, project_id: str) -> Project:
        data = await self._request("GET", f"/projects/{project_id}")
        if isinstance(data, dict) and "item" in data:
            data = data["item"]
        return Project.from_dict(data)

    async def detect_project(self, cwd: str | os.PathLike) -> Project | None:
        """Find the project whose path is `cwd` or one of its parents (longest match)."""
        cwd_path = Path(cwd).resolve()
        best: Project | None = None
        for project in await self.list_projects():
            if not project.path:
                continue
            project_path = Path(project.path).resolve()
            if cwd_path == project_path or project_path in cwd_path.parents:
                if best is None or len(project.path) > len(best.path):
                    best = project
        return best

    # ──────────────────────────────────────────────
    # Tasks
    # ──────────────────────────────────────────────

    async def fetch_tasks(
        self, project_id: str, status: str | None = "todo", priority: int | None = None
    ) -> list[TaskRecord]:
        """Project tasks, filtered by status (todo by default) and priority."""
        raw_tasks = _items(await self._request("GET", f"/projects/{project_id}/tasks"))
        if status is not None:
            raw_tasks = [t for t in raw_tasks if t.get("status") == status]
        if priority is not None:
            raw_tasks = [t for t in raw_tasks if t.get("priority") == priority]

        tasks = []
        for raw in raw_tasks:
            try:
                tasks.append(TaskRecord.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                raise KanbanError(f"Malformed task {raw.get('id', '?')}: {e}") from e
        return tasks

    async def update_task(self, task_id: str, **fields) -> dict:
        return await self._request("POST", f"/tasks/{task_id}/update", json=fields)
