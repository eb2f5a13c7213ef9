"""Engine: one object holding the store location, registry probe, invoker and notifier."""

import logging
import time
from collections.abc import Callable, Iterable, Iterator

from llm_manager.config import Config
from llm_manager.core import executor
from llm_manager.core import router
from llm_manager.core import tasks as tasks_mod
from llm_manager.core.backends import (
    BACKENDS,
    Backend,
    BackendUnavailableError,
    available_backends,
    get_backend,
)
from llm_manager.core.failover import AllBackendsExhaustedError, Invoker, run_with_failover
from llm_manager.db.engine import get_db
from llm_manager.db.models import FAILED, PENDING, PROCESSING, Task, TaskEvent
from llm_manager.integrations.notify import Notifier

logger = logging.getLogger(__name__)


class Engine:
    """Entry point used by the CLI, web API, MCP server and scheduler.

    Every call opens its own sqlite connection, so one Engine can be shared by
    any number of worker threads.
    """

    def __init__(
        self,
        config: Config,
        probe: Callable[[], Iterable[Backend]] | None = None,
        invoke: Invoker | None = None,
        notifier: Notifier | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.probe = probe or available_backends
        self.invoke = invoke or executor.invoke
        self.notifier = notifier or Notifier(
            completions_log=config.completions_log,
            slack_token=config.slack_bot_token,
            slack_channel=config.slack_channel,
        )
        self.sleep = sleep

    def connect(self):
        return get_db(self.config.db_path)

    def _require_backends(self) -> tuple[Backend, ...]:
        available = self.available_backends()
        if not available:
            names = ", ".join(b.name for b in BACKENDS)
            raise BackendUnavailableError(f"No supported backend found. Install one of: {names}")
        return available

    # ── Routing ──────────────────────────────────────────────────────────────

    def available_backends(self) -> tuple[Backend, ...]:
        return tuple(self.probe())

    def rank(self, description: str, preferred: str | None = None) -> list[Backend]:
        return router.rank(description, self.available_backends(), preferred=preferred)

    # ── Queue ────────────────────────────────────────────────────────────────

    def submit(
        self,
        description: str,
        backend: str | None = None,
        model: str | None = None,
        require_backend: bool = True,
    ) -> Task:
        """Queue a task.

        Raises BackendUnavailableError when no backend is installed, unless
        ``require_backend`` is False; such a task then fails at execution.
        """
        if backend:
            backend = get_backend(backend).name
        if require_backend:
            self._require_backends()
        with self.connect() as db:
            task = tasks_mod.submit_task(db, description, backend=backend, model=model)
        logger.info("[%s] Queued: %s", task.id, task.description[:60])
        return task

    def brainstorm(self, description: str) -> list[Task]:
        """Queue one copy of a task per installed backend, each pinned to it.

        Every backend answers the same question; the copies are independent
        tasks and still fail over if their pinned backend fails.
        """
        available = self._require_backends()
        tasks = [
            self.submit(description, backend=b.name, require_backend=False)
            for b in available
        ]
        logger.info(
            "Brainstorm queued %d task(s): %s",
            len(tasks), ", ".join(f"{t.id}={t.backend}" for t in tasks),
        )
        return tasks

    def get_task(self, task_id: str) -> Task:
        with self.connect() as db:
            return tasks_mod.get_task(db, task_id)

    def list_tasks(self, status: str | None = None, with_attempts: bool = False) -> Iterator[Task]:
        with self.connect() as db:
            yield from tasks_mod.list_tasks(db, status, with_attempts=with_attempts)

    def counts(self) -> dict[str, int]:
        with self.connect() as db:
            return tasks_mod.count_by_status(db)

    def events(self, task_id: str) -> list[TaskEvent]:
        with self.connect() as db:
            tasks_mod.get_task(db, task_id)
            return tasks_mod.get_task_events(db, task_id)

    def purge(self, status: str | Iterable[str] | None = None) -> int:
        with self.connect() as db:
            removed = tasks_mod.purge_tasks(db, status)
        logger.info("Purged %d task(s)", removed)
        return removed

    def wait(self, interval: float = 2.0, timeout: float | None = None) -> bool:
        """Block until nothing is pending or processing. False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            counts = self.counts()
            if counts[PENDING] == 0 and counts[PROCESSING] == 0:
                return True
            if deadline is not None and time.monotonic() >= deadline:
                return False
            self.sleep(interval)

    # ── Execution ────────────────────────────────────────────────────────────

    def claim(self, task_id: str) -> Task:
        with self.connect() as db:
            return tasks_mod.claim_task(db, task_id)

    def execute(self, task: Task) -> Task:
        """Run a claimed task through routing, retries and failover."""
        ranking = self.rank(task.description, preferred=task.backend)
        logger.info(
            "[%s] Processing: %s... (ranking: %s)",
            task.id, task.description[:50], ", ".join(b.name for b in ranking) or "none",
        )
        with self.connect() as db:
            return run_with_failover(
                db,
                task,
                ranking,
                self.notifier,
                invoke=self.invoke,
                max_retries=self.config.max_retries,
                retry_delay=self.config.retry_delay,
                timeout=self.config.task_timeout,
                cwd=self.config.workdir,
                sleep=self.sleep,
            )

    def fail(self, task_id: str, output: str) -> Task:
        """Force a processing task to failed, keeping ``output`` as its result."""
        with self.connect() as db:
            return tasks_mod.complete_task(db, task_id, False, output)

    def run_foreground(
        self,
        description: str,
        backend: str | None = None,
        model: str | None = None,
    ) -> Task:
        """Submit, claim and execute a task in the calling thread."""
        task = self.submit(description, backend=backend, model=model)
        final = self.execute(self.claim(task.id))
        if final.status == FAILED:
            raise AllBackendsExhaustedError(final)
        return final
