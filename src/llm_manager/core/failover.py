"""Drive one claimed task through its backend ranking until it succeeds or runs out."""

import logging
import sqlite3
import time
from collections.abc import Callable, Sequence
from datetime import datetime
from pathlib import Path

from llm_manager.core import executor
from llm_manager.core.backends import BACKENDS, Backend
from llm_manager.core.tasks import complete_task, record_attempt
from llm_manager.db.models import Attempt, Task
from llm_manager.integrations.notify import Notifier

logger = logging.getLogger(__name__)

Invoker = Callable[..., executor.InvocationResult]


class AllBackendsExhaustedError(Exception):
    """Raised to foreground callers when every backend failed every retry."""

    def __init__(self, task: Task):
        super().__init__(f"Task {task.id} failed on every available backend")
        self.task = task


def run_with_failover(
    db: sqlite3.Connection,
    task: Task,
    ranking: Sequence[Backend],
    notifier: Notifier,
    invoke: Invoker = executor.invoke,
    max_retries: int = 3,
    retry_delay: float = 0.0,
    timeout: float | None = None,
    cwd: Path | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Task:
    """Try each backend in ranking order, up to ``max_retries`` times each.

    The task must already be claimed. Returns the task in its terminal state.
    The model override only applies to the primary backend; fallbacks run with
    their own default model.
    """
    if not ranking:
        names = ", ".join(b.name for b in BACKENDS)
        logger.error("[%s] No backends available", task.id)
        failed = complete_task(
            db, task.id, False, f"No available backends. Install one of: {names}"
        )
        _notify(notifier, "Task Failed", f"{task.id} failed: no backends available", failed)
        return failed

    last_output = ""
    for position, backend in enumerate(ranking):
        model = task.model if position == 0 else None
        for attempt_number in range(1, max_retries + 1):
            logger.info("[%s] Attempt %d with %s", task.id, attempt_number, backend.name)
            started_at = datetime.now()
            result = _invoke_safely(invoke, backend, task.description, model, timeout, cwd)
            record_attempt(
                db,
                task.id,
                Attempt(
                    backend=backend.name,
                    attempt_number=attempt_number,
                    outcome="success" if result.success else "error",
                    duration_ms=result.duration_ms,
                    exit_code=result.exit_code,
                    timed_out=result.timed_out,
                    output=result.output,
                    started_at=started_at,
                ),
            )
            last_output = result.output

            if result.success:
                logger.info(
                    "[%s] SUCCESS with %s in %.1fs",
                    task.id, backend.name, result.duration_ms / 1000,
                )
                done = complete_task(db, task.id, True, result.output)
                _notify(notifier, "Task Complete", f"{task.id} finished with {backend.name}", done)
                return done

            logger.warning(
                "[%s] FAILED attempt %d with %s (exit_code=%s%s)",
                task.id, attempt_number, backend.name, result.exit_code,
                ", timed out" if result.timed_out else "",
            )
            if retry_delay > 0 and attempt_number < max_retries:
                sleep(retry_delay)

        if position < len(ranking) - 1:
            logger.warning("[%s] Failing over from %s...", task.id, backend.name)

    logger.error("[%s] ALL BACKENDS FAILED", task.id)
    failed = complete_task(db, task.id, False, last_output)
    _notify(notifier, "Task Failed", f"{task.id} failed after all retries", failed)
    return failed


def _invoke_safely(invoke, backend, description, model, timeout, cwd) -> executor.InvocationResult:
    try:
        return invoke(backend, description, model=model, timeout=timeout, cwd=cwd)
    except Exception as e:
        logger.exception("Invoker crashed for %s", backend.name)
        return executor.InvocationResult(success=False, output=f"{type(e).__name__}: {e}")


def _notify(notifier: Notifier, title: str, message: str, task: Task):
    try:
        notifier.notify(
            title,
            message,
            task_id=task.id,
            status=task.status,
            backend=task.assigned_backend,
            description=task.description,
        )
    except Exception:
        logger.exception("Notifier failed for task %s", task.id)
