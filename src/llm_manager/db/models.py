"""Data models for the task queue."""

from dataclasses import dataclass, field
from datetime import datetime

PENDING = "pending"
PROCESSING = "processing"
DONE = "done"
FAILED = "failed"

STATUSES = (PENDING, PROCESSING, DONE, FAILED)
TERMINAL_STATUSES = (DONE, FAILED)

SUCCESS_MARKER = "SUCCESS"
FAILED_MARKER = "FAILED"


@dataclass
class Attempt:
    id: int | None = None
    task_id: str = ""
    backend: str = ""
    attempt_number: int = 1
    outcome: str = "error"
    duration_ms: int = 0
    exit_code: int | None = None
    timed_out: bool = False
    output: str = ""
    started_at: datetime | None = None


@dataclass
class Task:
    id: str
    description: str
    status: str = PENDING
    backend: str | None = None
    model: str | None = None
    assigned_backend: str | None = None
    result: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    attempts: list[Attempt] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def marker(self) -> str | None:
        """Last line of the result: SUCCESS or FAILED once terminal."""
        if not self.result:
            return None
        return self.result.rstrip("\n").rsplit("\n", 1)[-1]


@dataclass
class TaskEvent:
    id: int | None = None
    task_id: str = ""
    event_type: str = ""
    old_value: str | None = None
    new_value: str | None = None
    created_at: datetime | None = None
