"""Tests for the engine facade and the polling scheduler."""

import tempfile
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from llm_manager.config import Config
from llm_manager.core.backends import BACKENDS, CLAUDE, CODEX, GEMINI, QWEN, BackendUnavailableError
from llm_manager.core.engine import Engine
from llm_manager.core.executor import InvocationResult
from llm_manager.core.failover import AllBackendsExhaustedError
from llm_manager.core.scheduler import Scheduler
from llm_manager.core.tasks import AlreadyClaimedError, TaskNotFoundError
from llm_manager.integrations.notify import Notifier


class SlowInvoker:
    """Succeeds after a short sleep and tracks the peak number of concurrent calls."""

    def __init__(self, delay=0.2):
        self.delay = delay
        self.active = 0
        self.peak = 0
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, backend, description, model=None, timeout=None, cwd=None):
        with self._lock:
            self.active += 1
            self.calls += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(self.delay)
            return InvocationResult(success=True, output=f"did: {description}", exit_code=0)
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def config():
    with tempfile.TemporaryDirectory() as tmp:
        yield Config(
            db_path=Path(tmp) / "test.db",
            completions_log=Path(tmp) / "completions.log",
            max_retries=2,
            retry_delay=0,
            poll_interval=0.05,
        )


def _engine(config, invoke, backends=BACKENDS):
    return Engine(
        config,
        probe=lambda: backends,
        invoke=invoke,
        notifier=MagicMock(spec=Notifier),
    )


class TestEngine:
    def test_submit_and_get(self, config):
        engine = _engine(config, SlowInvoker())
        task = engine.submit("draw a logo", backend="Gemini")
        assert task.backend == "gemini"
        assert engine.get_task(task.id).status == "pending"

    def test_submit_unknown_backend(self, config):
        engine = _engine(config, SlowInvoker())
        with pytest.raises(ValueError):
            engine.submit("draw a logo", backend="gpt")

    def test_submit_without_backends_rejected(self, config):
        engine = _engine(config, SlowInvoker(), backends=())
        with pytest.raises(BackendUnavailableError, match="No supported backend found"):
            engine.submit("draw a logo")
        assert engine.counts()["pending"] == 0

    def test_backend_vanishing_after_submit_fails_at_execution(self, config):
        installed = list(BACKENDS)
        engine = _engine(config, SlowInvoker())
        engine.probe = lambda: installed
        task = engine.submit("draw a logo")
        installed.clear()
        final = engine.execute(engine.claim(task.id))
        assert final.status == "failed"
        assert "No available backends" in final.result

    def test_brainstorm_one_task_per_backend(self, config):
        engine = _engine(config, SlowInvoker(), backends=(GEMINI, QWEN, CLAUDE))
        tasks = engine.brainstorm("How should we cache sessions?")
        assert [t.backend for t in tasks] == ["gemini", "qwen", "claude"]
        assert len({t.id for t in tasks}) == 3
        assert all(t.status == "pending" for t in tasks)
        assert all(t.description == "How should we cache sessions?" for t in tasks)
        assert engine.counts()["pending"] == 3

    def test_brainstorm_runs_each_on_its_backend(self, config):
        invoke = MagicMock(return_value=InvocationResult(success=True, output="idea", exit_code=0))
        engine = _engine(config, invoke, backends=(CODEX, QWEN))
        for task in engine.brainstorm("refactor this module"):
            engine.execute(engine.claim(task.id))
        assert sorted(t.assigned_backend for t in engine.list_tasks("done")) == ["codex", "qwen"]

    def test_brainstorm_without_backends(self, config):
        engine = _engine(config, SlowInvoker(), backends=())
        with pytest.raises(BackendUnavailableError):
            engine.brainstorm("anything")
        assert engine.counts()["pending"] == 0

    def test_execute_uses_pinned_backend(self, config):
        invoke = MagicMock(return_value=InvocationResult(success=True, output="ok", exit_code=0))
        engine = _engine(config, invoke)
        task = engine.submit("generate a logo", backend="claude", model="opus")
        final = engine.execute(engine.claim(task.id))
        assert final.assigned_backend == "claude"
        backend, description = invoke.call_args[0]
        assert backend.name == "claude"
        assert invoke.call_args[1]["model"] == "opus"

    def test_run_foreground_success(self, config):
        engine = _engine(config, SlowInvoker(delay=0))
        task = engine.run_foreground("refactor this module")
        assert task.status == "done"
        assert task.assigned_backend == "codex"
        assert task.result == "did: refactor this module\nSUCCESS"

    def test_run_foreground_exhausted(self, config):
        invoke = MagicMock(return_value=InvocationResult(success=False, output="nope", exit_code=1))
        engine = _engine(config, invoke, backends=(CODEX,))
        with pytest.raises(AllBackendsExhaustedError) as exc_info:
            engine.run_foreground("refactor this module")
        assert exc_info.value.task.status == "failed"
        assert invoke.call_count == config.max_retries

    def test_events_unknown_task(self, config):
        engine = _engine(config, SlowInvoker())
        with pytest.raises(TaskNotFoundError):
            engine.events("nope")

    def test_wait_times_out(self, config):
        engine = _engine(config, SlowInvoker())
        engine.sleep = lambda _: None
        engine.submit("never runs")
        assert engine.wait(interval=0, timeout=0.05) is False

    def test_wait_empty_queue(self, config):
        engine = _engine(config, SlowInvoker())
        assert engine.wait(timeout=0) is True


class TestScheduler:
    def test_processes_all_tasks(self, config):
        invoke = SlowInvoker(delay=0.05)
        engine = _engine(config, invoke)
        ids = [engine.submit(f"task {i}").id for i in range(4)]

        scheduler = Scheduler(engine)
        scheduler.start()
        try:
            assert engine.wait(interval=0.05, timeout=10)
        finally:
            scheduler.stop()

        assert [engine.get_task(i).status for i in ids] == ["done"] * 4
        assert invoke.calls == 4

    def test_max_workers_one_runs_serially(self, config):
        invoke = SlowInvoker(delay=0.2)
        engine = _engine(config, invoke)
        for i in range(3):
            engine.submit(f"task {i}")

        scheduler = Scheduler(engine, max_workers=1)
        scheduler.start()
        try:
            assert engine.wait(interval=0.05, timeout=10)
        finally:
            scheduler.stop()

        assert invoke.peak == 1
        assert engine.counts()["done"] == 3

    def test_poll_once_respects_capacity(self, config):
        engine = _engine(config, SlowInvoker(delay=0.3))
        for i in range(3):
            engine.submit(f"task {i}")

        scheduler = Scheduler(engine, max_workers=2)
        claimed = scheduler.poll_once()
        try:
            assert len(claimed) == 2
            assert engine.counts()["processing"] == 2
            assert engine.counts()["pending"] == 1
        finally:
            scheduler.stop()

    def test_unbounded_claims_everything(self, config):
        engine = _engine(config, SlowInvoker(delay=0.1))
        for i in range(5):
            engine.submit(f"task {i}")

        scheduler = Scheduler(engine)
        claimed = scheduler.poll_once()
        scheduler.stop()

        assert len(claimed) == 5
        assert engine.counts()["done"] == 5

    def test_claimed_task_is_not_reclaimed(self, config):
        engine = _engine(config, SlowInvoker())
        task = engine.submit("task")
        engine.claim(task.id)
        with pytest.raises(AlreadyClaimedError):
            engine.claim(task.id)
        assert Scheduler(engine).poll_once() == []

    def test_crashed_worker_marks_task_failed(self, config):
        engine = _engine(config, SlowInvoker())
        engine.rank = MagicMock(side_effect=RuntimeError("router exploded"))
        task = engine.submit("task")

        scheduler = Scheduler(engine)
        scheduler.poll_once()
        scheduler.stop()

        final = engine.get_task(task.id)
        assert final.status == "failed"
        assert "router exploded" in final.result

    def test_stop_is_idempotent(self, config):
        scheduler = Scheduler(_engine(config, SlowInvoker()))
        scheduler.start()
        assert scheduler.running
        scheduler.stop()
        scheduler.stop()
        assert not scheduler.running
