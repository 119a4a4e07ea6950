"""Tests for the kanban task-store client, against an httpx.MockTransport."""

import json

import httpx
import pytest

from taskwave.core.resilience import ExponentialBackoff
from taskwave.sources.kanban import KanbanClient, KanbanError

BASE = "http://kanban.test"

PROJECTS = {
    "items": [
        {"id": "p-root", "name": "Monorepo", "path": "/work/mono"},
        {"id": "p-web", "name": "Web", "path": "/work/mono/web"},
        {"id": "p-none", "name": "Detached", "path": ""},
    ]
}

TASKS = {
    "items": [
        {"id": "t1", "title": "Add login", "priority": 1, "status": "todo", "description": ""},
        {"id": "t2", "title": "Fix crash", "priority": 0, "status": "todo"},
        {"id": "t3", "title": "Ship it", "priority": 0, "status": "done"},
        {"id": "t4", "title": "Docs", "priority": 3, "status": "todo", "description": None},
    ]
}


def make_client(handler, retries: int = 3) -> KanbanClient:
    transport = httpx.MockTransport(handler)
    return KanbanClient(
        BASE,
        client=httpx.AsyncClient(transport=transport),
        backoff=ExponentialBackoff(base_delay=0, max_delay=0, max_retries=retries),
    )


def routes(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/api/v1/projects":
        return httpx.Response(200, json=PROJECTS)
    if path == "/api/v1/projects/p-web":
        return httpx.Response(200, json={"item": PROJECTS["items"][1]})
    if path == "/api/v1/projects/p-web/tasks":
        return httpx.Response(200, json=TASKS)
    return httpx.Response(404, text="not found")


# ═══════════════════════════════════════════
# Projects
# ═══════════════════════════════════════════


class TestProjects:
    @pytest.mark.asyncio
    async def test_list_projects(self):
        async with make_client(routes) as client:
            projects = await client.list_projects()
        assert [p.id for p in projects] == ["p-root", "p-web", "p-none"]

    @pytest.mark.asyncio
    async def test_get_project_unwraps_item(self):
        async with make_client(routes) as client:
            project = await client.get_project("p-web")
        assert project.name == "Web"
        assert project.path == "/work/mono/web"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "cwd,expected",
        [
            ("/work/mono/web/src/components", "p-web"),
            ("/work/mono/web", "p-web"),
            ("/work/mono/api", "p-root"),
            ("/work/monolith", None),
            ("/elsewhere", None),
        ],
    )
    async def test_detect_project_longest_match(self, cwd, expected):
        async with make_client(routes) as client:
            project = await client.detect_project(cwd)
        assert (project.id if project else None) == expected


# ═══════════════════════════════════════════
# Tasks
# ═══════════════════════════════════════════


class TestTasks:
    @pytest.mark.asyncio
    async def test_fetch_todo_tasks(self):
        async with make_client(routes) as client:
            tasks = await client.fetch_tasks("p-web")
        assert [t.id for t in tasks] == ["t1", "t2", "t4"]
        assert tasks[2].description == ""

    @pytest.mark.asyncio
    async def test_fetch_by_priority(self):
        async with make_client(routes) as client:
            tasks = await client.fetch_tasks("p-web", priority=0)
        assert [t.id for t in tasks] == ["t2"]

    @pytest.mark.asyncio
    async def test_fetch_any_status(self):
        async with make_client(routes) as client:
            tasks = await client.fetch_tasks("p-web", status=None)
        assert len(tasks) == 4

    @pytest.mark.asyncio
    async def test_update_task_posts_fields(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={"ok": True})

        async with make_client(handler) as client:
            assert await client.update_task("t1", status="done") == {"ok": True}
        assert seen == [("POST", "/api/v1/tasks/t1/update", {"status": "done"})]


# ═══════════════════════════════════════════
# Errors and Retries
# ═══════════════════════════════════════════


class TestErrors:
    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        async with make_client(routes) as client:
            with pytest.raises(KanbanError) as exc_info:
                await client.get_project("missing")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self):
        async with make_client(lambda r: httpx.Response(200, text="<html>")) as client:
            with pytest.raises(KanbanError):
                await client.list_projects()

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(429, headers={"Retry-After": "0"})
            return routes(request)

        async with make_client(handler) as client:
            projects = await client.list_projects()
        assert len(calls) == 3
        assert len(projects) == 3

    @pytest.mark.asyncio
    async def test_rate_limit_gives_up(self):
        async with make_client(lambda r: httpx.Response(429), retries=2) as client:
            with pytest.raises(KanbanError) as exc_info:
                await client.list_projects()
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_connect_error_is_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("refused", request=request)
            return routes(request)

        async with make_client(handler) as client:
            assert len(await client.list_projects()) == 3
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_unreachable_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler, retries=1) as client:
            with pytest.raises(KanbanError):
                await client.list_projects()

    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self):
        http = httpx.AsyncClient(transport=httpx.MockTransport(routes))
        async with KanbanClient(BASE, client=http):
            pass
        assert not http.is_closed
        await http.aclose()

    def test_base_url_from_environment(self, monkeypatch):
        monkeypatch.setenv("KANBAN_URL", "http://env.test:9000/")
        client = KanbanClient(client=httpx.AsyncClient())
        assert client.api == "http://env.test:9000/api/v1"

    @pytest.mark.asyncio
    async def test_other_transport_errors_are_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ReadError("connection reset", request=request)
            return routes(request)

        async with make_client(handler) as client:
            assert len(await client.list_projects()) == 3
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_transport_error_becomes_kanban_error(self):
        def handler(request):
            raise httpx.RemoteProtocolError("server hung up", request=request)

        async with make_client(handler, retries=1) as client:
            with pytest.raises(KanbanError):
                await client.list_projects()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("priority", [None, 9, "high"])
    async def test_malformed_task_raises_kanban_error(self, priority):
        def handler(request):
            return httpx.Response(
                200, json={"items": [{"id": "t9", "title": "Odd", "priority": priority, "status": "todo"}]}
            )

        async with make_client(handler) as client:
            with pytest.raises(KanbanError) as exc_info:
                await client.fetch_tasks("p-web")
        assert "t9" in str(exc_info.value)
