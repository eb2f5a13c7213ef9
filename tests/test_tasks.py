"""Tests for the task store."""

import tempfile
import threading
from pathlib import Path

import pytest

from llm_manager.core import tasks as tasks_mod
from llm_manager.db.engine import init_db
from llm_manager.db.models import Attempt


@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp) / "test.db"


@pytest.fixture
def db(db_path):
    """Create a temporary SQLite database for testing."""
    conn = init_db(db_path)
    yield conn
    conn.close()


class TestSubmit:
    def test_submit_creates_pending(self, db):
        task = tasks_mod.submit_task(db, "Write a hello world script")
        assert task.status == "pending"
        assert task.description == "Write a hello world script"
        assert task.assigned_backend is None
        assert task.attempts == []
        assert task.created_at is not None
        assert task.completed_at is None

    def test_ids_are_unique(self, db):
        ids = {tasks_mod.submit_task(db, f"Task {i}").id for i in range(20)}
        assert len(ids) == 20

    def test_duplicate_id(self, db):
        tasks_mod.submit_task(db, "First", task_id="abc12345")
        with pytest.raises(tasks_mod.DuplicateIdError):
            tasks_mod.submit_task(db, "Second", task_id="abc12345")

    def test_empty_description_rejected(self, db):
        with pytest.raises(ValueError, match="empty"):
            tasks_mod.submit_task(db, "   ")

    def test_backend_and_model_stored(self, db):
        task = tasks_mod.submit_task(db, "Draw a logo", backend="gemini", model="gemini-2.5-pro")
        assert task.backend == "gemini"
        assert task.model == "gemini-2.5-pro"


class TestGetAndList:
    def test_get_nonexistent(self, db):
        with pytest.raises(tasks_mod.TaskNotFoundError):
            tasks_mod.get_task(db, "nope")

    def test_find_nonexistent(self, db):
        assert tasks_mod.find_task(db, "nope") is None

    def test_list_in_creation_order(self, db):
        created = [tasks_mod.submit_task(db, f"Task {i}").id for i in range(5)]
        assert [t.id for t in tasks_mod.list_tasks(db)] == created

    def test_list_by_status(self, db):
        a = tasks_mod.submit_task(db, "Task A")
        b = tasks_mod.submit_task(db, "Task B")
        tasks_mod.claim_task(db, a.id)
        pending = list(tasks_mod.list_tasks(db, "pending"))
        assert [t.id for t in pending] == [b.id]

    def test_list_is_lazy(self, db):
        tasks_mod.submit_task(db, "Task A")
        result = tasks_mod.list_tasks(db)
        assert not isinstance(result, list)
        assert len(list(result)) == 1

    def test_list_unknown_status(self, db):
        with pytest.raises(ValueError, match="Unknown status"):
            list(tasks_mod.list_tasks(db, "todo"))

    def test_count_by_status(self, db):
        a = tasks_mod.submit_task(db, "Task A")
        tasks_mod.submit_task(db, "Task B")
        tasks_mod.claim_task(db, a.id)
        counts = tasks_mod.count_by_status(db)
        assert counts == {"pending": 1, "processing": 1, "done": 0, "failed": 0}


class TestClaim:
    def test_claim_moves_to_processing(self, db):
        task = tasks_mod.submit_task(db, "Claim me")
        claimed = tasks_mod.claim_task(db, task.id)
        assert claimed.status == "processing"

    def test_claim_twice_fails(self, db):
        task = tasks_mod.submit_task(db, "Claim me")
        tasks_mod.claim_task(db, task.id)
        with pytest.raises(tasks_mod.AlreadyClaimedError):
            tasks_mod.claim_task(db, task.id)

    def test_claim_terminal_fails(self, db):
        task = tasks_mod.submit_task(db, "Claim me")
        tasks_mod.claim_task(db, task.id)
        tasks_mod.complete_task(db, task.id, True, "ok")
        with pytest.raises(tasks_mod.AlreadyClaimedError):
            tasks_mod.claim_task(db, task.id)

    def test_claim_nonexistent(self, db):
        with pytest.raises(tasks_mod.TaskNotFoundError):
            tasks_mod.claim_task(db, "nope")

    def test_concurrent_claims_single_winner(self, db, db_path):
        task = tasks_mod.submit_task(db, "Contended")
        winners = []
        losers = []
        barrier = threading.Barrier(8)

        def claimer():
            conn = init_db(db_path)
            try:
                barrier.wait()
                tasks_mod.claim_task(conn, task.id)
                winners.append(threading.get_ident())
            except tasks_mod.AlreadyClaimedError:
                losers.append(threading.get_ident())
            finally:
                conn.close()

        threads = [threading.Thread(target=claimer) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(winners) == 1
        assert len(losers) == 7


class TestComplete:
    def test_complete_success(self, db):
        task = tasks_mod.submit_task(db, "Finish me")
        tasks_mod.claim_task(db, task.id)
        done = tasks_mod.complete_task(db, task.id, True, "all good\n")
        assert done.status == "done"
        assert done.result == "all good\nSUCCESS"
        assert done.marker == "SUCCESS"
        assert done.completed_at is not None

    def test_complete_failure_keeps_output(self, db):
        task = tasks_mod.submit_task(db, "Fail me")
        tasks_mod.claim_task(db, task.id)
        failed = tasks_mod.complete_task(db, task.id, False, "Traceback: boom")
        assert failed.status == "failed"
        assert "Traceback: boom" in failed.result
        assert failed.marker == "FAILED"

    def test_complete_without_output(self, db):
        task = tasks_mod.submit_task(db, "Quiet")
        tasks_mod.claim_task(db, task.id)
        assert tasks_mod.complete_task(db, task.id, False).result == "FAILED"

    def test_complete_idempotent(self, db):
        task = tasks_mod.submit_task(db, "Twice")
        tasks_mod.claim_task(db, task.id)
        first = tasks_mod.complete_task(db, task.id, True, "out")
        second = tasks_mod.complete_task(db, task.id, True, "other")
        assert second.status == "done"
        assert second.result == first.result

    def test_complete_opposite_outcome_fails(self, db):
        task = tasks_mod.submit_task(db, "Twice")
        tasks_mod.claim_task(db, task.id)
        tasks_mod.complete_task(db, task.id, True, "out")
        with pytest.raises(tasks_mod.InvalidTransitionError):
            tasks_mod.complete_task(db, task.id, False, "out")

    def test_complete_pending_fails(self, db):
        task = tasks_mod.submit_task(db, "Not started")
        with pytest.raises(tasks_mod.InvalidTransitionError):
            tasks_mod.complete_task(db, task.id, True, "out")

    def test_complete_nonexistent(self, db):
        with pytest.raises(tasks_mod.TaskNotFoundError):
            tasks_mod.complete_task(db, "nope", True)


class TestAttempts:
    def test_record_attempt_sets_backend(self, db):
        task = tasks_mod.submit_task(db, "Attempted")
        tasks_mod.claim_task(db, task.id)
        tasks_mod.record_attempt(
            db, task.id,
            Attempt(backend="codex", attempt_number=1, outcome="error", duration_ms=12, exit_code=1),
        )
        tasks_mod.record_attempt(
            db, task.id,
            Attempt(backend="qwen", attempt_number=1, outcome="success", duration_ms=40, exit_code=0),
        )
        loaded = tasks_mod.get_task(db, task.id)
        assert loaded.assigned_backend == "qwen"
        assert [(a.backend, a.outcome) for a in loaded.attempts] == [
            ("codex", "error"),
            ("qwen", "success"),
        ]
        assert loaded.attempts[0].exit_code == 1

    def test_record_attempt_requires_processing(self, db):
        task = tasks_mod.submit_task(db, "Not claimed")
        with pytest.raises(tasks_mod.InvalidTransitionError):
            tasks_mod.record_attempt(db, task.id, Attempt(backend="codex"))


class TestPurge:
    def test_purge_done(self, db):
        a = tasks_mod.submit_task(db, "Task A")
        b = tasks_mod.submit_task(db, "Task B")
        tasks_mod.claim_task(db, a.id)
        tasks_mod.complete_task(db, a.id, True, "ok")
        assert tasks_mod.purge_tasks(db, "done") == 1
        assert tasks_mod.find_task(db, a.id) is None
        assert tasks_mod.find_task(db, b.id) is not None

    def test_purge_twice_is_noop(self, db):
        a = tasks_mod.submit_task(db, "Task A")
        tasks_mod.claim_task(db, a.id)
        tasks_mod.complete_task(db, a.id, True, "ok")
        tasks_mod.purge_tasks(db, "done")
        assert tasks_mod.purge_tasks(db, "done") == 0

    def test_purge_multiple_statuses_removes_attempts(self, db):
        a = tasks_mod.submit_task(db, "Task A")
        tasks_mod.claim_task(db, a.id)
        tasks_mod.record_attempt(db, a.id, Attempt(backend="codex"))
        tasks_mod.complete_task(db, a.id, False, "bad")
        assert tasks_mod.purge_tasks(db, ["done", "failed"]) == 1
        assert tasks_mod.get_attempts(db, a.id) == []

    def test_purge_all(self, db):
        tasks_mod.submit_task(db, "Task A")
        tasks_mod.submit_task(db, "Task B")
        assert tasks_mod.purge_tasks(db) == 2
        assert list(tasks_mod.list_tasks(db)) == []


class TestEvents:
    def test_lifecycle_events(self, db):
        task = tasks_mod.submit_task(db, "Eventful")
        tasks_mod.claim_task(db, task.id)
        tasks_mod.record_attempt(db, task.id, Attempt(backend="claude", outcome="success"))
        tasks_mod.complete_task(db, task.id, True, "ok")
        events = tasks_mod.get_task_events(db, task.id)
        assert [e.event_type for e in events] == [
            "created", "status_changed", "attempt", "status_changed",
        ]
        assert (events[1].old_value, events[1].new_value) == ("pending", "processing")
        assert (events[3].old_value, events[3].new_value) == ("processing", "done")
