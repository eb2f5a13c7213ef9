"""Polling scheduler: admits pending tasks up to a worker ceiling."""

import logging
import threading

from llm_manager.core import tasks as tasks_mod
from llm_manager.core.engine import Engine
from llm_manager.core.tasks import AlreadyClaimedError, TaskNotFoundError, TaskStoreError
from llm_manager.db.models import PENDING

logger = logging.getLogger(__name__)


class Scheduler:
    """Background thread that polls the queue and starts one worker thread per claimed task.

    The capacity check counts ``processing`` rows in the store. A task claimed
    in this loop is counted before the next one is considered, so a single
    scheduler never runs more than ``max_workers`` tasks at once.
    """

    def __init__(
        self,
        engine: Engine,
        poll_interval: float | None = None,
        max_workers: int | None = None,
    ):
        self.engine = engine
        self.poll_interval = (
            poll_interval if poll_interval is not None else engine.config.poll_interval
        )
        self.max_workers = max_workers if max_workers is not None else engine.config.max_workers
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._workers: dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start the polling thread."""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="task-scheduler", daemon=True
        )
        self._thread.start()
        logger.info(
            "Scheduler started - Max workers: %s",
            self.max_workers if self.max_workers else "unlimited",
        )

    def stop(self, wait: bool = True, timeout: float | None = 10):
        """Stop polling. With ``wait``, also join in-flight workers."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
        if wait:
            for thread in self.active_workers():
                thread.join(timeout=timeout)
        logger.info("Scheduler stopped")

    def run_forever(self):
        """Poll in the calling thread until ``stop`` is called from elsewhere."""
        self._stop_event.clear()
        self._run()

    def active_workers(self) -> list[threading.Thread]:
        with self._lock:
            return list(self._workers.values())

    def _run(self):
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except Exception:
                logger.exception("Error in scheduler loop")
            self._stop_event.wait(self.poll_interval)

    def poll_once(self) -> list[str]:
        """Claim as many pending tasks as capacity allows. Returns the claimed ids."""
        claimed = []
        with self.engine.connect() as db:
            pending = list(tasks_mod.list_tasks(db, PENDING))
            for task in pending:
                if self._stop_event.is_set():
                    break
                if self.max_workers:
                    current = tasks_mod.count_processing(db)
                    if current >= self.max_workers:
                        logger.info(
                            "Worker limit reached (%d/%d), waiting...", current, self.max_workers
                        )
                        break
                try:
                    task = tasks_mod.claim_task(db, task.id)
                except (AlreadyClaimedError, TaskNotFoundError):
                    continue
                self._spawn(task)
                claimed.append(task.id)
        return claimed

    def _spawn(self, task):
        thread = threading.Thread(
            target=self._work, args=(task,), name=f"task-{task.id}", daemon=True
        )
        with self._lock:
            self._workers[task.id] = thread
        thread.start()

    def _work(self, task):
        try:
            self.engine.execute(task)
        except Exception as e:
            logger.exception("[%s] Worker crashed", task.id)
            try:
                self.engine.fail(task.id, f"Worker crashed: {type(e).__name__}: {e}")
            except TaskStoreError:
                logger.exception("[%s] Could not mark crashed task as failed", task.id)
        finally:
            with self._lock:
                self._workers.pop(task.id, None)
