"""MCP server exposing the task queue to a calling agent."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from mcp.server.fastmcp import Context, FastMCP

from llm_manager.config import get_config
from llm_manager.core.backends import BackendUnavailableError
from llm_manager.core.engine import Engine
from llm_manager.core.scheduler import Scheduler
from llm_manager.core.tasks import TaskNotFoundError
from llm_manager.db.models import STATUSES, TERMINAL_STATUSES


@dataclass
class AppContext:
    engine: Engine
    scheduler: Scheduler | None = None


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Start the scheduler on startup so submitted tasks run; stop it on shutdown."""
    engine = Engine(get_config())
    scheduler = Scheduler(engine)
    scheduler.start()
    try:
        yield AppContext(engine=engine, scheduler=scheduler)
    finally:
        scheduler.stop(wait=False)


mcp = FastMCP("llm-manager", lifespan=app_lifespan)


def _engine(ctx: Context) -> Engine:
    return ctx.request_context.lifespan_context.engine


@mcp.tool()
def submit_task(
    ctx: Context,
    description: str,
    backend: str | None = None,
    model: str | None = None,
) -> dict:
    """Queue a task for an external agent. Returns immediately with the task id.

    backend pins the preferred agent (gemini, codex, qwen, claude); otherwise
    the task is routed by keywords. Other agents are still used on failure.
    """
    try:
        task = _engine(ctx).submit(description, backend=backend, model=model)
    except (ValueError, BackendUnavailableError) as e:
        return {"error": str(e)}
    return _task_to_dict(task)


@mcp.tool()
def brainstorm(ctx: Context, description: str) -> dict:
    """Queue the same task once for every installed agent, for diverse answers.

    Returns one task id per agent; read each with get_task_result.
    """
    try:
        tasks = _engine(ctx).brainstorm(description)
    except (ValueError, BackendUnavailableError) as e:
        return {"error": str(e)}
    return {"tasks": [_task_to_dict(t) for t in tasks]}


@mcp.tool()
def get_task(ctx: Context, task_id: str) -> dict:
    """Get a task's status, assigned backend and attempt history."""
    try:
        task = _engine(ctx).get_task(task_id)
    except TaskNotFoundError as e:
        return {"error": str(e)}
    result = _task_to_dict(task)
    result["attempts"] = [
        {
            "backend": a.backend,
            "attempt_number": a.attempt_number,
            "outcome": a.outcome,
            "duration_ms": a.duration_ms,
            "timed_out": a.timed_out,
        }
        for a in task.attempts
    ]
    return result


@mcp.tool()
def get_task_result(ctx: Context, task_id: str) -> dict:
    """Get the captured output of a finished task (last line is SUCCESS or FAILED)."""
    try:
        task = _engine(ctx).get_task(task_id)
    except TaskNotFoundError as e:
        return {"error": str(e)}
    if not task.is_terminal:
        return {"id": task.id, "status": task.status, "result": None}
    return {"id": task.id, "status": task.status, "result": task.result}


@mcp.tool()
def list_tasks(ctx: Context, status: str | None = None) -> list[dict]:
    """List tasks in creation order. Valid statuses: pending, processing, done, failed."""
    if status and status not in STATUSES:
        return [{"error": f"Unknown status: {status}"}]
    return [_task_to_dict(t) for t in _engine(ctx).list_tasks(status)]


@mcp.tool()
def queue_summary(ctx: Context) -> dict:
    """Count tasks per status."""
    return _engine(ctx).counts()


@mcp.tool()
def route_task(ctx: Context, description: str) -> dict:
    """Show which agent a description would be routed to and the failover order."""
    ranking = _engine(ctx).rank(description)
    if not ranking:
        return {"error": "No supported backend found"}
    return {
        "primary": ranking[0].name,
        "role": ranking[0].role,
        "failover": [b.name for b in ranking[1:]],
    }


@mcp.tool()
def clear_tasks(ctx: Context, status: str | None = None) -> dict:
    """Delete finished tasks and their output. Irreversible.

    Without a status, clears both done and failed tasks.
    """
    if status and status not in STATUSES:
        return {"error": f"Unknown status: {status}"}
    removed = _engine(ctx).purge(status or TERMINAL_STATUSES)
    return {"removed": removed}


def _task_to_dict(task) -> dict:
    return {
        "id": task.id,
        "description": task.description,
        "status": task.status,
        "backend": task.backend,
        "model": task.model,
        "assigned_backend": task.assigned_backend,
        "created_at": task.created_at.isoformat() if task.created_at else None,
        "completed_at": task.completed_at.isoformat() if task.completed_at else None,
    }
