"""Web dashboard and JSON API for the task queue."""

import json

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse
from starlette.routing import Route

from llm_manager.config import get_config
from llm_manager.core.backends import BACKENDS, BackendUnavailableError
from llm_manager.core.engine import Engine
from llm_manager.core.tasks import TaskNotFoundError
from llm_manager.db.models import STATUSES
from llm_manager.web.dashboard import get_dashboard_html


def _get_engine(request: Request) -> Engine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        engine = Engine(get_config())
    return engine


# ── Handlers ──────────────────────────────────────────────────────────────────


async def index(request: Request):
    return HTMLResponse(get_dashboard_html())


async def api_list_tasks(request: Request):
    status_filter = request.query_params.get("status")
    if status_filter and status_filter not in STATUSES:
        return JSONResponse({"error": f"Unknown status: {status_filter}"}, status_code=400)
    engine = _get_engine(request)
    return JSONResponse([_task_dict(t) for t in engine.list_tasks(status_filter)])


async def api_submit_task(request: Request):
    try:
        body = await request.json()
    except json.JSONDecodeError:
        return JSONResponse({"error": "Request body must be JSON"}, status_code=400)
    if not isinstance(body, dict) or not isinstance(body.get("description"), str):
        return JSONResponse({"error": "'description' is required"}, status_code=400)

    engine = _get_engine(request)
    try:
        task = engine.submit(
            body["description"],
            backend=body.get("backend"),
            model=body.get("model"),
        )
    except BackendUnavailableError as e:
        return JSONResponse({"error": str(e)}, status_code=503)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    return JSONResponse(_task_dict(task), status_code=201)


async def api_get_task(request: Request):
    task_id = request.path_params["task_id"]
    engine = _get_engine(request)
    try:
        task = engine.get_task(task_id)
        events = engine.events(task_id)
    except TaskNotFoundError:
        return JSONResponse({"error": "Task not found"}, status_code=404)
    td = _task_dict(task)
    td["attempts"] = [_attempt_dict(a) for a in task.attempts]
    td["events"] = [_event_dict(e) for e in events]
    return JSONResponse(td)


async def api_summary(request: Request):
    counts = _get_engine(request).counts()
    total = sum(counts.values())
    finished = counts["done"] + counts["failed"]
    progress = (finished / total * 100) if total > 0 else 0
    return JSONResponse({
        "counts": counts,
        "total": total,
        "progress_pct": round(progress, 1),
    })


async def api_backends(request: Request):
    installed = {b.name for b in _get_engine(request).available_backends()}
    return JSONResponse([
        {"name": b.name, "role": b.role, "installed": b.name in installed}
        for b in BACKENDS
    ])


# ── Serialization ─────────────────────────────────────────────────────────────


def _task_dict(t) -> dict:
    return {
        "id": t.id,
        "description": t.description,
        "status": t.status,
        "backend": t.backend,
        "model": t.model,
        "assigned_backend": t.assigned_backend,
        "result": t.result,
        "created_at": t.created_at.isoformat() if t.created_at else None,
        "updated_at": t.updated_at.isoformat() if t.updated_at else None,
        "completed_at": t.completed_at.isoformat() if t.completed_at else None,
    }


def _attempt_dict(a) -> dict:
    return {
        "backend": a.backend,
        "attempt_number": a.attempt_number,
        "outcome": a.outcome,
        "duration_ms": a.duration_ms,
        "exit_code": a.exit_code,
        "timed_out": a.timed_out,
        "started_at": a.started_at.isoformat() if a.started_at else None,
    }


def _event_dict(e) -> dict:
    return {
        "id": e.id,
        "event_type": e.event_type,
        "old_value": e.old_value,
        "new_value": e.new_value,
        "created_at": e.created_at.isoformat() if e.created_at else None,
    }


# ── App ───────────────────────────────────────────────────────────────────────


def create_app(engine: Engine | None = None) -> Starlette:
    routes = [
        Route("/", index),
        Route("/api/tasks", api_list_tasks, methods=["GET"]),
        Route("/api/tasks", api_submit_task, methods=["POST"]),
        Route("/api/tasks/{task_id}", api_get_task),
        Route("/api/summary", api_summary),
        Route("/api/backends", api_backends),
    ]
    app = Starlette(routes=routes)
    app.state.engine = engine
    return app


def run_server(host: str = "127.0.0.1", port: int = 8787):
    app = create_app()
    uvicorn.run(app, host=host, port=port)
