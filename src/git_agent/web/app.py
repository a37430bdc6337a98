"""HTTP API for the git agent."""

import hmac
import json
import logging
from contextlib import asynccontextmanager

import uvicorn
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from git_agent.config import get_config
from git_agent.core.services import build_orchestrator, build_scheduler
from git_agent.db.models import CYCLE_ALREADY_COMPLETED, Phase, SetupRequest
from git_agent.errors import (
    ConflictError,
    CycleInProgress,
    NotFoundError,
    ValidationError,
    WorkflowError,
)

logger = logging.getLogger(__name__)


async def _read_json(request: Request) -> dict:
    body = await request.body()
    if not body:
        return {}
    try:
        return json.loads(body)
    except ValueError as e:
        raise ValidationError("Request body is not valid JSON") from e


# ── Handlers ──────────────────────────────────────────────────────────────────


async def api_run(request: Request):
    """Start a new project, replacing one that is still in progress."""
    orchestrator = request.app.state.orchestrator
    setup = SetupRequest.from_dict(await _read_json(request))

    if orchestrator.state().phase == Phase.COMPLETED:
        return JSONResponse({"status": CYCLE_ALREADY_COMPLETED, "message": "Project is already completed"})

    result = await run_in_threadpool(orchestrator.run_setup_cycle, setup, True)
    request.app.state.scheduler.start()
    return JSONResponse(result.to_dict())


async def api_cycle(request: Request):
    result = await run_in_threadpool(request.app.state.orchestrator.run_development_cycle)
    return JSONResponse(result.to_dict())


async def api_status(request: Request):
    status = request.app.state.orchestrator.status()
    status["scheduler"] = request.app.state.scheduler.status()
    return JSONResponse(status)


async def api_debug(request: Request):
    orchestrator = request.app.state.orchestrator
    state = orchestrator.state()
    log = orchestrator.projection.event_log
    return JSONResponse({
        "state": state.to_dict(),
        "cacheWarm": orchestrator.projection.is_warm,
        "savedQueueLength": len(await run_in_threadpool(orchestrator.projection.find_saved_queue)),
        "recentEvents": [_entry_dict(e) for e in log.entries(limit=10, newest_first=True)],
    })


async def api_events(request: Request):
    log = request.app.state.orchestrator.projection.event_log
    kind = request.query_params.get("kind")
    try:
        limit = int(request.query_params.get("limit", "50"))
    except ValueError as e:
        raise ValidationError("limit must be an integer") from e
    entries = log.entries(kinds=(kind,) if kind else None, limit=limit, newest_first=True)
    return JSONResponse([_entry_dict(e) for e in entries])


async def api_reset(request: Request):
    await run_in_threadpool(request.app.state.orchestrator.reset)
    return JSONResponse({"status": "reset"})


async def api_reset_completion(request: Request):
    reopened = await run_in_threadpool(request.app.state.orchestrator.reset_completion)
    return JSONResponse({"reopened": reopened})


async def api_continue(request: Request):
    orchestrator = request.app.state.orchestrator
    can_continue = await run_in_threadpool(orchestrator.recover_queue)
    return JSONResponse({"canContinue": can_continue, **orchestrator.status()})


async def api_cron_status(request: Request):
    return JSONResponse(request.app.state.scheduler.status())


async def api_cron_start(request: Request):
    scheduler = request.app.state.scheduler
    started = scheduler.start()
    return JSONResponse({"started": started, **scheduler.status()})


async def api_cron_stop(request: Request):
    scheduler = request.app.state.scheduler
    await run_in_threadpool(scheduler.stop)
    return JSONResponse(scheduler.status())


async def api_cron_restart(request: Request):
    scheduler = request.app.state.scheduler
    await run_in_threadpool(scheduler.restart)
    return JSONResponse(scheduler.status())


async def api_cron_trigger(request: Request):
    result = await run_in_threadpool(request.app.state.scheduler.trigger_manual_cycle)
    return JSONResponse(result.to_dict())


async def api_run_daily(request: Request):
    """Entry point for an external cron service, guarded by a shared secret."""
    secret = request.app.state.cron_secret
    key = request.query_params.get("key", "")
    if not secret or not hmac.compare_digest(key, secret):
        return JSONResponse({"error": "Invalid or missing key"}, status_code=403)
    result = await run_in_threadpool(request.app.state.orchestrator.run_development_cycle)
    return JSONResponse(result.to_dict())


# ── Serialization ─────────────────────────────────────────────────────────────


def _entry_dict(e) -> dict:
    try:
        payload = json.loads(e.payload)
    except ValueError:
        payload = e.payload
    return {
        "id": e.id,
        "kind": e.kind,
        "payload": payload,
        "created_at": e.created_at.isoformat() if e.created_at else None,
    }


# ── Errors ────────────────────────────────────────────────────────────────────


def _status_code(exc: WorkflowError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, (ConflictError, CycleInProgress)):
        return 409
    return 500


async def workflow_error(request: Request, exc: WorkflowError):
    return JSONResponse(
        {"error": str(exc), "type": type(exc).__name__},
        status_code=_status_code(exc),
    )


# ── App ───────────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: Starlette):
    # The scheduler starts after the first setup, not at boot
    yield
    if app.state.scheduler.running:
        logger.info("Shutting down, stopping scheduler")
        app.state.scheduler.stop()
    app.state.orchestrator.close()


def create_app(orchestrator=None, scheduler=None, cron_secret: str | None = None) -> Starlette:
    if orchestrator is None or scheduler is None:
        config = get_config()
        orchestrator = orchestrator or build_orchestrator(config)
        scheduler = scheduler or build_scheduler(orchestrator, config)
        cron_secret = cron_secret or config.cron_trigger_secret

    routes = [
        Route("/api/run", api_run, methods=["POST"]),
        Route("/api/cycle", api_cycle, methods=["POST"]),
        Route("/api/status", api_status),
        Route("/api/debug", api_debug),
        Route("/api/events", api_events),
        Route("/api/reset", api_reset, methods=["POST"]),
        Route("/api/reset-completion", api_reset_completion, methods=["POST"]),
        Route("/api/continue", api_continue, methods=["POST"]),
        Route("/api/cron/status", api_cron_status),
        Route("/api/cron/start", api_cron_start, methods=["POST"]),
        Route("/api/cron/stop", api_cron_stop, methods=["POST"]),
        Route("/api/cron/restart", api_cron_restart, methods=["POST"]),
        Route("/api/cron/trigger", api_cron_trigger, methods=["POST"]),
        Route("/api/run-daily", api_run_daily),
    ]
    app = Starlette(
        routes=routes,
        exception_handlers={WorkflowError: workflow_error},
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator
    app.state.scheduler = scheduler
    app.state.cron_secret = cron_secret
    return app


def run_server(host: str = "127.0.0.1", port: int = 8787):
    app = create_app()
    uvicorn.run(app, host=host, port=port)
