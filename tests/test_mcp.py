"""Tests for the MCP tools, called directly with a stub request context."""

import asyncio
from types import SimpleNamespace

import pytest

from git_agent.config import Config
from git_agent.core import memory as memory_mod
from git_agent.mcp import server as mcp_server


@pytest.fixture
def ctx(orchestrator):
    app_ctx = mcp_server.AppContext(orchestrator=orchestrator, config=Config())
    return SimpleNamespace(request_context=SimpleNamespace(lifespan_context=app_ctx))


class TestTools:
    def test_setup_and_cycle(self, ctx):
        result = mcp_server.setup_project(ctx, complexity="advanced", project_name="Todo App")
        assert result["status"] == "initialized"
        assert result["taskCount"] == 3

        cycle = mcp_server.run_development_cycle(ctx)
        assert cycle["status"] == "committed"
        assert mcp_server.project_status(ctx)["remainingTasks"] == 2

    def test_errors_are_returned(self, ctx):
        assert "error" in mcp_server.setup_project(ctx, complexity="expert")

        mcp_server.setup_project(ctx)
        assert "error" in mcp_server.setup_project(ctx)

    def test_list_events(self, ctx):
        mcp_server.setup_project(ctx)
        events = mcp_server.list_events(ctx, kind=memory_mod.REPOSITORY_INFO)
        assert [e["payload"]["name"] for e in events] == ["todo-app"]

    def test_reset(self, ctx):
        mcp_server.setup_project(ctx)
        assert mcp_server.reset_project(ctx, completion_only=True) == {"reopened": False}
        assert mcp_server.reset_project(ctx) == {"status": "reset"}
        assert mcp_server.project_status(ctx)["phase"] == "uninitialized"


class TestLifespan:
    def test_closes_host_on_shutdown(self, orchestrator, host, monkeypatch):
        monkeypatch.setattr(mcp_server, "build_orchestrator", lambda config: orchestrator)

        async def run():
            async with mcp_server.app_lifespan(mcp_server.mcp) as app_ctx:
                assert app_ctx.orchestrator is orchestrator
                assert not host.closed

        asyncio.run(run())
        assert host.closed
