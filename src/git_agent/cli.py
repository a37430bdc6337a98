"""CLI entry point for the git agent."""

import json
import logging
import sys
import time

import click

from git_agent.config import get_config
from git_agent.core.services import build_orchestrator, build_scheduler
from git_agent.db.models import COMPLEXITIES, SetupRequest
from git_agent.errors import WorkflowError


def _get_orchestrator():
    return build_orchestrator(get_config())


def _fail(e: Exception):
    click.echo(f"Error: {e}", err=True)
    sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose):
    """ga - build a project one committed task at a time"""
    level = "DEBUG" if verbose else get_config().log_level
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ── Workflow Commands ─────────────────────────────────────────────────────────


@main.command("init")
@click.option("--complexity", type=click.Choice(COMPLEXITIES), default="beginner", help="Project complexity")
@click.option("--name", "project_name", default=None, help="Project name (random idea if omitted)")
@click.option("--description", "-d", default=None, help="What the project should do")
@click.option("--tech", multiple=True, help="Tech stack constraint, repeatable")
@click.option("--replace", is_flag=True, help="Discard an existing project first")
def init_project(complexity, project_name, description, tech, replace):
    """Run the setup cycle: idea, plan, repository and README."""
    orchestrator = _get_orchestrator()
    try:
        request = SetupRequest.from_dict(
            {
                "complexity": complexity,
                "projectName": project_name,
                "description": description,
                "techConstraints": list(tech) or None,
            }
        )
        result = orchestrator.run_setup_cycle(request, replace_existing=replace)
    except WorkflowError as e:
        _fail(e)

    click.echo(f"Project initialized: {result.spec.title}")
    click.echo(f"  Repository: {result.repository.url}")
    click.echo(f"  Tasks: {result.task_count}")
    for reason in result.degraded:
        click.echo(f"  Warning: fell back to defaults ({reason})", err=True)


@main.command("cycle")
def cycle_command():
    """Run one development cycle."""
    orchestrator = _get_orchestrator()
    try:
        result = orchestrator.run_development_cycle()
    except WorkflowError as e:
        _fail(e)

    if result.status == "committed":
        click.echo(f"Committed {result.path} for task: {result.task_title}")
        click.echo(f"  Remaining tasks: {result.remaining_tasks}")
        if result.recovered:
            click.echo("  (task queue restored from the event log)")
    elif result.status == "not_initialized":
        click.echo("No project yet. Run 'ga init' first.")
    else:
        click.echo("Project completed.")


@main.command("status")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def status_command(json_output):
    """Show the current project state."""
    orchestrator = _get_orchestrator()
    state = orchestrator.state()

    if json_output:
        click.echo(json.dumps(state.to_dict(), indent=2))
        return

    click.echo(f"Phase: {state.phase.value}")
    if state.spec:
        click.echo(f"  Project: {state.spec.title} ({state.spec.complexity})")
    if state.repository:
        click.echo(f"  Repository: {state.repository.url}")
    click.echo(f"  Remaining tasks: {state.remaining_tasks}")
    for task in state.task_queue:
        click.echo(f"    - {task.title} -> {task.target_path or '(auto)'}")


@main.command("log")
@click.option("--kind", default=None, help="Only show entries of this kind")
@click.option("--limit", default=20, type=int, help="Number of entries")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def log_command(kind, limit, json_output):
    """Show recent event log entries, newest first."""
    log = _get_orchestrator().projection.event_log
    entries = log.entries(kinds=(kind,) if kind else None, limit=limit, newest_first=True)

    if json_output:
        click.echo(json.dumps(
            [{"id": e.id, "kind": e.kind, "payload": json.loads(e.payload),
              "created_at": e.created_at.isoformat() if e.created_at else None} for e in entries],
            indent=2,
        ))
        return

    if not entries:
        click.echo("No events.")
        return
    for e in entries:
        click.echo(f"  [{e.created_at}] #{e.id} {e.kind}: {e.payload[:100]}")


@main.command("reset")
@click.confirmation_option(prompt="Forget the current project?")
def reset_command():
    """Forget the current project. History stays in the event log."""
    try:
        _get_orchestrator().reset()
    except WorkflowError as e:
        _fail(e)
    click.echo("Project state reset.")


@main.command("reset-completion")
def reset_completion_command():
    """Reopen a completed project."""
    try:
        reopened = _get_orchestrator().reset_completion()
    except WorkflowError as e:
        _fail(e)
    click.echo("Project reopened." if reopened else "Project is not completed.")


@main.command("continue")
def continue_command():
    """Restore the task queue from the event log if it is empty."""
    try:
        can_continue = _get_orchestrator().recover_queue()
    except WorkflowError as e:
        _fail(e)
    if can_continue:
        click.echo("Development can continue.")
    else:
        click.echo("No tasks available.")
        sys.exit(1)


# ── Scheduler Commands ────────────────────────────────────────────────────────


@main.group("schedule")
def schedule_group():
    """Scheduled development."""
    pass


@schedule_group.command("run")
@click.option("--once", is_flag=True, help="Run a single scheduled step and exit")
def schedule_run(once):
    """Run the scheduler in the foreground until the project completes."""
    config = get_config()
    scheduler = build_scheduler(build_orchestrator(config), config)

    if once:
        result = scheduler.tick()
        click.echo(json.dumps(result.to_dict() if result else scheduler.status(), indent=2))
        return

    click.echo(f"Schedule: {scheduler.schedule.description}")
    scheduler.start()
    try:
        while scheduler.running:
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo("Stopping scheduler...")
    finally:
        scheduler.stop()


# ── Server Commands ───────────────────────────────────────────────────────────


@main.command("serve")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8787, type=int, help="Port to listen on")
def serve_command(host, port):
    """Start the HTTP API."""
    from git_agent.web.app import run_server

    click.echo(f"Serving API at http://{host}:{port}")
    run_server(host=host, port=port)


@main.group("mcp")
def mcp_group():
    """MCP server commands."""
    pass


@mcp_group.command("serve")
def mcp_serve():
    """Start the MCP server (stdio transport)."""
    from git_agent.mcp.server import mcp

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
