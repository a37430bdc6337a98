"""MCP server exposing the git agent workflow as tools."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from mcp.server.fastmcp import Context, FastMCP

from git_agent.config import Config, get_config
from git_agent.core.services import build_orchestrator
from git_agent.core.workflow import Orchestrator
from git_agent.db.models import SetupRequest
from git_agent.errors import WorkflowError


@dataclass
class AppContext:
    orchestrator: Orchestrator
    config: Config


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Build the orchestrator on startup and release its host on shutdown."""
    config = get_config()
    orchestrator = build_orchestrator(config)
    try:
        yield AppContext(orchestrator=orchestrator, config=config)
    finally:
        orchestrator.close()


mcp = FastMCP("git-agent", lifespan=app_lifespan)


def _orchestrator(ctx: Context) -> Orchestrator:
    return ctx.request_context.lifespan_context.orchestrator


@mcp.tool()
def project_status(ctx: Context) -> dict:
    """Current phase, repository, remaining task count and next task."""
    return _orchestrator(ctx).status()


@mcp.tool()
def setup_project(
    ctx: Context,
    complexity: str = "beginner",
    project_name: str | None = None,
    description: str | None = None,
    tech_constraints: list[str] | None = None,
    replace_existing: bool = False,
) -> dict:
    """Generate a project idea and plan, create its repository and commit the README.
    Fails if a project already exists unless replace_existing is set."""
    orchestrator = _orchestrator(ctx)
    try:
        request = SetupRequest.from_dict(
            {
                "complexity": complexity,
                "projectName": project_name,
                "description": description,
                "techConstraints": tech_constraints,
            }
        )
        return orchestrator.run_setup_cycle(request, replace_existing=replace_existing).to_dict()
    except WorkflowError as e:
        return {"error": str(e)}


@mcp.tool()
def run_development_cycle(ctx: Context) -> dict:
    """Generate and commit the next task of the active project."""
    try:
        return _orchestrator(ctx).run_development_cycle().to_dict()
    except WorkflowError as e:
        return {"error": str(e)}


@mcp.tool()
def list_events(ctx: Context, kind: str | None = None, limit: int = 20) -> list[dict]:
    """Recent event log entries, newest first. Filter by kind (e.g. 'taskProgress', 'cycleFailure')."""
    log = _orchestrator(ctx).projection.event_log
    entries = log.entries(kinds=(kind,) if kind else None, limit=limit, newest_first=True)
    return [
        {
            "id": e.id,
            "kind": e.kind,
            "payload": json.loads(e.payload),
            "created_at": e.created_at.isoformat() if e.created_at else None,
        }
        for e in entries
    ]


@mcp.tool()
def reset_project(ctx: Context, completion_only: bool = False) -> dict:
    """Forget the current project. With completion_only, reopen a completed project instead."""
    orchestrator = _orchestrator(ctx)
    try:
        if completion_only:
            return {"reopened": orchestrator.reset_completion()}
        orchestrator.reset()
        return {"status": "reset"}
    except WorkflowError as e:
        return {"error": str(e)}
