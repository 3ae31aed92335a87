"""
models/task.py
--------------
Per-table migration state and the end-of-run report.

State machine::

    PENDING ──► SCHEMA_CREATED ──► DATA_MIGRATED
       │              │
       └──────────────┴──────────► FAILED

``DATA_MIGRATED`` and ``FAILED`` are terminal.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


class TaskState(str, Enum):
    PENDING = "pending"
    SCHEMA_CREATED = "schema_created"
    DATA_MIGRATED = "data_migrated"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.DATA_MIGRATED, TaskState.FAILED)


_ALLOWED = {
    TaskState.PENDING: {TaskState.SCHEMA_CREATED, TaskState.FAILED},
    TaskState.SCHEMA_CREATED: {TaskState.DATA_MIGRATED, TaskState.FAILED},
    TaskState.DATA_MIGRATED: set(),
    TaskState.FAILED: set(),
}


class InvalidTransitionError(ValueError):
    """Raised when a task is moved along an edge the state machine lacks."""


@dataclass
class MigrationTask:
    """Progress and outcome of migrating one table."""
    table_name: str
    state: TaskState = TaskState.PENDING
    rows_read: int = 0
    rows_written: int = 0
    rows_skipped: int = 0
    batches: int = 0
    error: Exception | None = None
    started_at: float = field(default_factory=time.monotonic)
    elapsed_seconds: float = 0.0

    def _move(self, new_state: TaskState) -> None:
        if new_state not in _ALLOWED[self.state]:
            raise InvalidTransitionError(
                f"Task '{self.table_name}' cannot move from {self.state.value} to {new_state.value}"
            )
        self.state = new_state
        if new_state.is_terminal:
            self.elapsed_seconds = time.monotonic() - self.started_at

    def mark_schema_created(self) -> None:
        self._move(TaskState.SCHEMA_CREATED)

    def mark_migrated(self) -> None:
        self._move(TaskState.DATA_MIGRATED)

    def fail(self, error: Exception) -> None:
        self.error = error
        self._move(TaskState.FAILED)

    @property
    def error_kind(self) -> str | None:
        if self.error is None:
            return None
        return getattr(self.error, "kind", type(self.error).__name__)

    @property
    def error_detail(self) -> str | None:
        if self.error is None:
            return None
        return getattr(self.error, "detail", None) or str(self.error)

    def __str__(self) -> str:
        line = (
            f"[{self.state.value.upper()}] {self.table_name}: "
            f"{self.rows_written}/{self.rows_read} rows in {self.batches} batch(es)"
        )
        if self.rows_skipped:
            line += f", {self.rows_skipped} skipped"
        if self.error is not None:
            line += f"\n  {self.error_kind}: {self.error_detail}"
        return line


@dataclass
class MigrationReport:
    """Terminal state of every table, in introspection order."""
    tasks: list[MigrationTask] = field(default_factory=list)

    @property
    def failed(self) -> list[MigrationTask]:
        return [t for t in self.tasks if t.state == TaskState.FAILED]

    @property
    def succeeded(self) -> list[MigrationTask]:
        return [t for t in self.tasks if t.state == TaskState.DATA_MIGRATED]

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    @property
    def total_rows(self) -> int:
        return sum(t.rows_written for t in self.tasks)

    def __str__(self) -> str:
        header = (
            f"Migrated {len(self.succeeded)}/{len(self.tasks)} table(s), "
            f"{self.total_rows} row(s) written"
        )
        return "\n".join([header] + [str(t) for t in self.tasks])
