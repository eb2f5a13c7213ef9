"""CLI entry point for the LLM manager."""

import json
import logging
import os
import signal
import sys
from collections import deque
from pathlib import Path

import click

from llm_manager.config import Config, get_config
from llm_manager.core import backends as backends_mod
from llm_manager.core.backends import BackendUnavailableError
from llm_manager.core.engine import Engine
from llm_manager.core.failover import AllBackendsExhaustedError
from llm_manager.core.scheduler import Scheduler
from llm_manager.core.tasks import TaskStoreError
from llm_manager.db.models import DONE, FAILED, STATUSES, TERMINAL_STATUSES

STATUS_ICONS = {
    "pending": "○",
    "processing": "●",
    "done": "✓",
    "failed": "✗",
}


def _get_engine(config: Config | None = None) -> Engine:
    return Engine(config or get_config())


def _configure_logging(config: Config | None = None, level: int = logging.INFO):
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config is not None:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.log_file))
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )


def _fail(message: str):
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


@click.group()
def main():
    """llm-manager - Task queue that dispatches work to external LLM agents"""
    pass


# ── Queue Commands ────────────────────────────────────────────────────────────


@main.command("add")
@click.argument("words", nargs=-1, required=True)
@click.option("--backend", "-b", default=None, help="Preferred backend: gemini, codex, qwen or claude")
@click.option("--model", "-m", default=None, help="Model override for the primary backend")
def add_task(words, backend, model):
    """Add a task to the queue."""
    engine = _get_engine()
    try:
        task = engine.submit(" ".join(words), backend=backend, model=model)
    except (ValueError, BackendUnavailableError) as e:
        _fail(str(e))
    click.echo(f"Queued: {task.id}")
    click.echo(f"Task: {_short(task.description, 60)}")


@main.command("add-file")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def add_file(path):
    """Add tasks from a file, one per line."""
    engine = _get_engine()
    count = 0
    for line in path.read_text().splitlines():
        if not line.strip():
            continue
        try:
            task = engine.submit(line)
        except BackendUnavailableError as e:
            _fail(str(e))
        click.echo(f"Queued: {task.id}")
        count += 1
    click.echo(f"Queued {count} tasks")


@main.command("brainstorm")
@click.argument("words", nargs=-1, required=True)
def brainstorm(words):
    """Queue the same task once for every installed backend."""
    engine = _get_engine()
    try:
        tasks = engine.brainstorm(" ".join(words))
    except (ValueError, BackendUnavailableError) as e:
        _fail(str(e))
    click.echo("=== Brainstorm: all agents working on the same task ===")
    for task in tasks:
        backend = backends_mod.get_backend(task.backend)
        click.echo(f"  [{task.id}] {backend.name} ({backend.role})")
    click.echo(f"Queued {len(tasks)} tasks")


@main.command("queue")
@click.option("--status", type=click.Choice(STATUSES), default=None, help="Filter by status")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def show_queue(status, json_output):
    """Show tasks in the queue."""
    engine = _get_engine()
    tasks = list(engine.list_tasks(status))

    if json_output:
        click.echo(json.dumps([_task_dict(t) for t in tasks], indent=2))
        return

    click.echo("=== Task Queue ===")
    for task in tasks:
        icon = STATUS_ICONS.get(task.status, "?")
        via = f" [{task.assigned_backend}]" if task.assigned_backend else ""
        click.echo(f"  {icon} {task.id}: {_short(task.description, 50)} ({task.status}){via}")

    counts = engine.counts()
    click.echo("")
    click.echo(
        f"Pending: {counts['pending']} | Running: {counts['processing']} | "
        f"Done: {counts['done']} | Failed: {counts['failed']}"
    )


@main.command("show")
@click.argument("task_id")
def show_task(task_id):
    """Show task details and attempt history."""
    engine = _get_engine()
    try:
        task = engine.get_task(task_id)
        events = engine.events(task_id)
    except TaskStoreError as e:
        _fail(str(e))

    click.echo(f"Task: {task.id}")
    click.echo(f"  Description: {task.description}")
    click.echo(f"  Status: {task.status}")
    if task.backend:
        click.echo(f"  Preferred backend: {task.backend}")
    if task.model:
        click.echo(f"  Model: {task.model}")
    if task.assigned_backend:
        click.echo(f"  Backend: {task.assigned_backend}")
    if task.created_at:
        click.echo(f"  Created: {task.created_at}")
    if task.completed_at:
        click.echo(f"  Completed: {task.completed_at}")
    if task.attempts:
        click.echo("  Attempts:")
        for a in task.attempts:
            extra = " (timed out)" if a.timed_out else ""
            click.echo(
                f"    {a.backend} #{a.attempt_number}: {a.outcome} "
                f"in {a.duration_ms}ms, exit={a.exit_code}{extra}"
            )
    if events:
        click.echo("  History:")
        for e in events:
            click.echo(f"    [{e.created_at}] {e.event_type}: {e.old_value} -> {e.new_value}")


@main.command("result")
@click.argument("task_id")
def show_result(task_id):
    """Print the captured output of a finished task."""
    engine = _get_engine()
    try:
        task = engine.get_task(task_id)
    except TaskStoreError as e:
        _fail(str(e))
    if not task.result:
        click.echo(f"No result for {task_id} (status: {task.status})", err=True)
        sys.exit(1)
    click.echo(task.result)


@main.command("clear")
@click.option(
    "--status",
    "statuses",
    type=click.Choice(STATUSES),
    multiple=True,
    help="Status to purge (repeatable). Defaults to done and failed.",
)
def clear_tasks(statuses):
    """Delete tasks and their results. Irreversible."""
    engine = _get_engine()
    removed = engine.purge(statuses or TERMINAL_STATUSES)
    click.echo(f"Cleared {removed} tasks")


@main.command("wait")
@click.option("--interval", default=2.0, type=float, help="Seconds between checks")
@click.option("--timeout", default=None, type=float, help="Give up after this many seconds")
def wait_all(interval, timeout):
    """Block until every queued task has finished."""
    engine = _get_engine()
    click.echo("Waiting for all tasks to complete...")
    if not engine.wait(interval=interval, timeout=timeout):
        _fail("Timed out waiting for tasks")
    click.echo("All tasks complete.")
    for status in (DONE, FAILED):
        for task in engine.list_tasks(status):
            click.echo(f"[{task.id}] {task.marker}")


# ── Routing Commands ─────────────────────────────────────────────────────────


@main.command("backends")
def list_backends():
    """List known backends and whether they are installed."""
    engine = _get_engine()
    installed = {b.name for b in engine.available_backends()}
    for b in backends_mod.BACKENDS:
        mark = "installed" if b.name in installed else "missing"
        click.echo(f"  {b.name} ({b.role}): {mark}")


@main.command("route")
@click.argument("words", nargs=-1, required=True)
def route_task(words):
    """Show which backends a task would be routed to, in order."""
    engine = _get_engine()
    ranking = engine.rank(" ".join(words))
    if not ranking:
        _fail("No supported backend found.")
    primary = ranking[0]
    click.echo(f"Smart routing → {primary.name} ({primary.role})")
    if len(ranking) > 1:
        click.echo(f"  Failover: {', '.join(b.name for b in ranking[1:])}")


@main.command("run")
@click.argument("words", nargs=-1, required=True)
@click.option("--backend", "-b", default=None, help="Preferred backend")
@click.option("--model", "-m", default=None, help="Model override for the primary backend")
@click.option("--quiet", "-q", is_flag=True, help="Only print the agent output")
def run_task(words, backend, model, quiet):
    """Run one task in the foreground with retries and failover."""
    config = get_config()
    _configure_logging(level=logging.WARNING if quiet else logging.INFO)
    engine = _get_engine(config)
    try:
        task = engine.run_foreground(" ".join(words), backend=backend, model=model)
    except BackendUnavailableError as e:
        _fail(str(e))
    except AllBackendsExhaustedError as e:
        engine.notifier.join(timeout=10)
        click.echo(e.task.result or "", err=True)
        _fail(str(e))
    except ValueError as e:
        _fail(str(e))
    engine.notifier.join(timeout=10)
    if not quiet:
        click.echo(f"[{task.id}] done with {task.assigned_backend}", err=True)
    click.echo(task.result)


# ── Daemon Commands ──────────────────────────────────────────────────────────


@main.command("start")
@click.option("--workers", "-w", default=None, type=int, help="Max parallel tasks (default: unlimited)")
@click.option("--poll-interval", default=None, type=float, help="Seconds between queue polls")
def start_daemon(workers, poll_interval):
    """Run the scheduler in the foreground until stopped."""
    config = get_config()
    running_pid = _read_live_pid(config.pid_file)
    if running_pid:
        _fail(f"Daemon already running (PID {running_pid})")

    _configure_logging(config)
    engine = _get_engine(config)
    scheduler = Scheduler(engine, poll_interval=poll_interval, max_workers=workers)

    config.pid_file.parent.mkdir(parents=True, exist_ok=True)
    config.pid_file.write_text(str(os.getpid()))

    def _handle_term(signum, frame):
        scheduler.stop(wait=False)

    signal.signal(signal.SIGTERM, _handle_term)

    limit = scheduler.max_workers or "unlimited"
    logging.getLogger(__name__).info("Daemon started (PID %s) - Max workers: %s", os.getpid(), limit)
    engine.notifier.notify("LLM Daemon", f"Started with {limit} workers")
    try:
        scheduler.run_forever()
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop(wait=True)
        engine.notifier.join(timeout=10)
        config.pid_file.unlink(missing_ok=True)


@main.command("stop")
def stop_daemon():
    """Stop a running daemon."""
    config = get_config()
    pid = _read_live_pid(config.pid_file)
    if not pid:
        config.pid_file.unlink(missing_ok=True)
        click.echo("Daemon not running")
        return
    os.kill(pid, signal.SIGTERM)
    click.echo(f"Daemon stopped (PID {pid})")


@main.command("status")
def daemon_status():
    """Show daemon state and queue counts."""
    config = get_config()
    pid = _read_live_pid(config.pid_file)
    if pid:
        click.echo(f"Daemon running (PID {pid})")
    else:
        click.echo("Daemon not running")
    counts = _get_engine(config).counts()
    click.echo(
        f"Pending: {counts['pending']} | Running: {counts['processing']} | "
        f"Done: {counts['done']} | Failed: {counts['failed']}"
    )


@main.command("logs")
@click.option("--lines", "-n", default=50, type=int, help="Number of lines to show")
def show_logs(lines):
    """Show the tail of the daemon log."""
    config = get_config()
    if not config.log_file.exists():
        _fail(f"No log file at {config.log_file}")
    with open(config.log_file) as f:
        for line in deque(f, maxlen=lines):
            click.echo(line.rstrip("\n"))


# ── Dashboard Command ────────────────────────────────────────────────────────


@main.command("ui")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8787, type=int, help="Port to listen on")
@click.option("--open/--no-open", default=True, help="Open browser automatically")
def ui_command(host, port, open):
    """Launch the web dashboard and JSON API."""
    import webbrowser

    from llm_manager.web.app import run_server

    url = f"http://{host}:{port}"
    click.echo(f"Starting dashboard at {url}")
    if open:
        webbrowser.open(url)
    run_server(host=host, port=port)


# ── MCP Server Command ───────────────────────────────────────────────────────


@main.group("mcp")
def mcp_group():
    """MCP server commands."""
    pass


@mcp_group.command("serve")
def mcp_serve():
    """Start the MCP server (stdio transport)."""
    from llm_manager.mcp.server import mcp
    from llm_manager.mcp import prompts  # noqa: F401 - registers prompts

    mcp.run(transport="stdio")


# ── Helpers ───────────────────────────────────────────────────────────────────


def _read_live_pid(pid_file: Path) -> int | None:
    """Return the PID in ``pid_file`` if that process is still alive."""
    try:
        pid = int(pid_file.read_text().strip())
    except (OSError, ValueError):
        return None
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return None
    except PermissionError:
        return pid
    return pid


def _short(text: str, width: int) -> str:
    return text if len(text) <= width else text[:width] + "..."


def _task_dict(task) -> dict:
    return {
        "id": task.id,
        "description": task.description,
        "status": task.status,
        "backend": task.backend,
        "model": task.model,
        "assigned_backend": task.assigned_backend,
        "result": task.result,
        "created_at": task.created_at.isoformat() if task.created_at else None,
        "completed_at": task.completed_at.isoformat() if task.completed_at else None,
    }


if __name__ == "__main__":
    main()
