"""Task store: durable task records and their atomic state transitions.

All mutation goes through ``submit``, ``claim``, ``record_attempt``,
``complete`` and ``purge``. Each is a single sqlite transaction, so callers on
separate connections (one per worker thread) never observe a half-applied
change. ``claim`` is the only mutual-exclusion primitive: a conditional
``UPDATE ... WHERE status = 'pending'`` whose rowcount tells the caller whether
it won the task.
"""

import sqlite3
import uuid
from collections.abc import Iterable, Iterator
from datetime import datetime

from llm_manager.db.models import (
    DONE,
    FAILED,
    FAILED_MARKER,
    PENDING,
    PROCESSING,
    STATUSES,
    SUCCESS_MARKER,
    Attempt,
    Task,
    TaskEvent,
)


class TaskStoreError(Exception):
    """Base class for task store contract violations."""


class TaskNotFoundError(TaskStoreError):
    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class AlreadyClaimedError(TaskStoreError):
    def __init__(self, task_id: str, status: str):
        super().__init__(f"Task '{task_id}' is not pending (status: {status})")
        self.task_id = task_id
        self.status = status


class InvalidTransitionError(TaskStoreError):
    def __init__(self, task_id: str, old_status: str, new_status: str):
        super().__init__(
            f"Invalid transition for task '{task_id}': {old_status} -> {new_status}"
        )
        self.task_id = task_id
        self.old_status = old_status
        self.new_status = new_status


class DuplicateIdError(TaskStoreError):
    def __init__(self, task_id: str):
        super().__init__(f"Task id already exists: {task_id}")
        self.task_id = task_id


def new_task_id() -> str:
    return uuid.uuid4().hex[:8]


def submit_task(
    db: sqlite3.Connection,
    description: str,
    backend: str | None = None,
    model: str | None = None,
    task_id: str | None = None,
) -> Task:
    """Create a pending task."""
    description = description.strip()
    if not description:
        raise ValueError("Task description must not be empty")

    task_id = task_id or new_task_id()
    now = _now()
    try:
        db.execute(
            """INSERT INTO tasks (id, description, status, backend, model, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (task_id, description, PENDING, backend, model, now, now),
        )
    except sqlite3.IntegrityError as e:
        db.rollback()
        raise DuplicateIdError(task_id) from e
    _log_event(db, task_id, "created", None, PENDING)
    db.commit()
    return get_task(db, task_id)


def claim_task(db: sqlite3.Connection, task_id: str) -> Task:
    """Atomically move a task from pending to processing."""
    cur = db.execute(
        "UPDATE tasks SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
        (PROCESSING, _now(), task_id, PENDING),
    )
    if cur.rowcount != 1:
        db.rollback()
        status = _current_status(db, task_id)
        raise AlreadyClaimedError(task_id, status)
    _log_event(db, task_id, "status_changed", PENDING, PROCESSING)
    db.commit()
    return get_task(db, task_id)


def record_attempt(db: sqlite3.Connection, task_id: str, attempt: Attempt) -> Attempt:
    """Append an attempt to a processing task and mark its backend as assigned."""
    cur = db.execute(
        "UPDATE tasks SET assigned_backend = ?, updated_at = ? WHERE id = ? AND status = ?",
        (attempt.backend, _now(), task_id, PROCESSING),
    )
    if cur.rowcount != 1:
        db.rollback()
        status = _current_status(db, task_id)
        raise InvalidTransitionError(task_id, status, "attempt")

    started_at = attempt.started_at or datetime.now()
    cur = db.execute(
        """INSERT INTO attempts
           (task_id, backend, attempt_number, outcome, duration_ms, exit_code, timed_out, output, started_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            task_id,
            attempt.backend,
            attempt.attempt_number,
            attempt.outcome,
            attempt.duration_ms,
            attempt.exit_code,
            int(attempt.timed_out),
            attempt.output,
            started_at.isoformat(),
        ),
    )
    _log_event(
        db, task_id, "attempt", None,
        f"{attempt.backend}#{attempt.attempt_number}: {attempt.outcome}",
    )
    db.commit()
    attempt.id = cur.lastrowid
    attempt.task_id = task_id
    attempt.started_at = started_at
    return attempt


def complete_task(
    db: sqlite3.Connection,
    task_id: str,
    succeeded: bool,
    output: str = "",
) -> Task:
    """Move a processing task to done or failed and store its result.

    Repeating the call with the same outcome returns the task unchanged.
    """
    new_status = DONE if succeeded else FAILED
    marker = SUCCESS_MARKER if succeeded else FAILED_MARKER
    body = output.rstrip("\n")
    result = f"{body}\n{marker}" if body else marker
    now = _now()

    cur = db.execute(
        """UPDATE tasks SET status = ?, result = ?, completed_at = ?, updated_at = ?
           WHERE id = ? AND status = ?""",
        (new_status, result, now, now, task_id, PROCESSING),
    )
    if cur.rowcount != 1:
        db.rollback()
        status = _current_status(db, task_id)
        if status == new_status:
            return get_task(db, task_id)
        raise InvalidTransitionError(task_id, status, new_status)
    _log_event(db, task_id, "status_changed", PROCESSING, new_status)
    db.commit()
    return get_task(db, task_id)


def get_task(db: sqlite3.Connection, task_id: str) -> Task:
    """Get a task by ID with its attempt history."""
    row = db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
    if not row:
        raise TaskNotFoundError(task_id)
    task = _row_to_task(row)
    task.attempts = get_attempts(db, task_id)
    return task


def find_task(db: sqlite3.Connection, task_id: str) -> Task | None:
    try:
        return get_task(db, task_id)
    except TaskNotFoundError:
        return None


def list_tasks(
    db: sqlite3.Connection,
    status: str | None = None,
    with_attempts: bool = False,
) -> Iterator[Task]:
    """Yield tasks in creation order, optionally filtered by status."""
    query = "SELECT * FROM tasks"
    params: list = []
    if status:
        _check_status(status)
        query += " WHERE status = ?"
        params.append(status)
    query += " ORDER BY created_at ASC, rowid ASC"

    for row in db.execute(query, params):
        task = _row_to_task(row)
        if with_attempts:
            task.attempts = get_attempts(db, task.id)
        yield task


def get_attempts(db: sqlite3.Connection, task_id: str) -> list[Attempt]:
    rows = db.execute(
        "SELECT * FROM attempts WHERE task_id = ? ORDER BY id ASC", (task_id,)
    ).fetchall()
    return [_row_to_attempt(r) for r in rows]


def count_by_status(db: sqlite3.Connection) -> dict[str, int]:
    counts = {s: 0 for s in STATUSES}
    rows = db.execute("SELECT status, COUNT(*) AS n FROM tasks GROUP BY status").fetchall()
    for r in rows:
        counts[r["status"]] = r["n"]
    return counts


def count_processing(db: sqlite3.Connection) -> int:
    row = db.execute(
        "SELECT COUNT(*) AS n FROM tasks WHERE status = ?", (PROCESSING,)
    ).fetchone()
    return row["n"]


def purge_tasks(
    db: sqlite3.Connection,
    status: str | Iterable[str] | None = None,
) -> int:
    """Delete every task matching the filter, with its attempts and events.

    Returns the number of tasks removed.
    """
    if status is None:
        cur = db.execute("DELETE FROM tasks")
    else:
        statuses = [status] if isinstance(status, str) else list(status)
        for s in statuses:
            _check_status(s)
        if not statuses:
            return 0
        placeholders = ", ".join("?" for _ in statuses)
        cur = db.execute(
            f"DELETE FROM tasks WHERE status IN ({placeholders})", statuses
        )
    db.commit()
    return cur.rowcount


def get_task_events(db: sqlite3.Connection, task_id: str) -> list[TaskEvent]:
    """Get the event history for a task."""
    rows = db.execute(
        "SELECT * FROM task_events WHERE task_id = ? ORDER BY id",
        (task_id,),
    ).fetchall()
    return [
        TaskEvent(
            id=r["id"],
            task_id=r["task_id"],
            event_type=r["event_type"],
            old_value=r["old_value"],
            new_value=r["new_value"],
            created_at=_parse_dt(r["created_at"]),
        )
        for r in rows
    ]


def _log_event(
    db: sqlite3.Connection,
    task_id: str,
    event_type: str,
    old_value: str | None,
    new_value: str | None,
):
    db.execute(
        "INSERT INTO task_events (task_id, event_type, old_value, new_value) VALUES (?, ?, ?, ?)",
        (task_id, event_type, old_value, new_value),
    )


def _current_status(db: sqlite3.Connection, task_id: str) -> str:
    row = db.execute("SELECT status FROM tasks WHERE id = ?", (task_id,)).fetchone()
    if not row:
        raise TaskNotFoundError(task_id)
    return row["status"]


def _check_status(status: str):
    if status not in STATUSES:
        raise ValueError(f"Unknown status: {status!r}. Use one of {', '.join(STATUSES)}.")


def _now() -> str:
    return datetime.now().isoformat()


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        description=row["description"],
        status=row["status"],
        backend=row["backend"],
        model=row["model"],
        assigned_backend=row["assigned_backend"],
        result=row["result"],
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
        completed_at=_parse_dt(row["completed_at"]),
    )


def _row_to_attempt(row: sqlite3.Row) -> Attempt:
    return Attempt(
        id=row["id"],
        task_id=row["task_id"],
        backend=row["backend"],
        attempt_number=row["attempt_number"],
        outcome=row["outcome"],
        duration_ms=row["duration_ms"],
        exit_code=row["exit_code"],
        timed_out=bool(row["timed_out"]),
        output=row["output"] or "",
        started_at=_parse_dt(row["started_at"]),
    )


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)
