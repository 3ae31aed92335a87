"""
migrator/loader.py
------------------
Groups a table's rows into bounded batches and submits them in order.

Design Decisions:
    * A batch closes when it holds ``batch_size`` rows or when the next row
      would push it past ``max_batch_bytes``; a row is never split and a
      batch always holds at least one row.
    * Batches are submitted synchronously, one at a time, in scan order.
      The target may still apply them in any order.
    * A failing batch is retried with exponential back-off; once retries
      are exhausted the table fails with the batch's row range.
    * Cancellation is checked between batches only, so a batch is either
      fully submitted or never submitted.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable

from logger import get_logger
from migrator.errors import BatchWriteError, MigrationCancelled, StoreError
from migrator.synthesizer import TablePlan
from migrator.target import TargetStore
from models.schema import Row

log = get_logger(__name__)

ProgressCallback = Callable[[str, int], None]  # table name, rows written so far


def estimate_row_bytes(row: Row) -> int:
    """Rough serialized size of *row*; fixed-width values count as 8 bytes."""
    size = 0
    for value in row:
        if value is None:
            continue
        if isinstance(value, (bytes, bytearray)):
            size += len(value)
        elif isinstance(value, str):
            size += len(value.encode("utf-8", errors="surrogateescape"))
        else:
            size += 8
    return size


@dataclass
class LoadResult:
    rows_written: int = 0
    batch_sizes: list[int] = field(default_factory=list)

    @property
    def batches(self) -> int:
        return len(self.batch_sizes)


class BatchLoader:
    """
    Args:
        target:          Handle providing ``execute_batch``.
        batch_size:      Maximum rows per batch.
        max_batch_bytes: Optional byte bound per batch (estimated).
        retries:         Extra attempts after a failed batch write.
        backoff:         Base delay in seconds; attempt *n* waits ``backoff * 2**(n-1)``.
        cancel_event:    Set by the caller to stop between batches.
        progress_cb:     Called after each committed batch.
        sleep:           Injectable for tests.
    """

    def __init__(
        self,
        target: TargetStore,
        batch_size: int = 100,
        max_batch_bytes: int | None = None,
        retries: int = 3,
        backoff: float = 0.5,
        cancel_event: threading.Event | None = None,
        progress_cb: ProgressCallback | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if retries < 0:
            raise ValueError("retries cannot be negative")
        self._target = target
        self._batch_size = batch_size
        self._max_bytes = max_batch_bytes
        self._retries = retries
        self._backoff = backoff
        self._cancel = cancel_event or threading.Event()
        self._progress_cb = progress_cb
        self._sleep = sleep

    def _check_cancelled(self, table: str) -> None:
        if self._cancel.is_set():
            raise MigrationCancelled(f"Migration of '{table}' was cancelled.", table=table)

    def _submit(self, plan: TablePlan, batch: list[Row], first_row: int) -> None:
        table = plan.schema.name
        last_row = first_row + len(batch) - 1
        attempts = self._retries + 1
        for attempt in range(1, attempts + 1):
            try:
                self._target.execute_batch(plan.insert, batch)
                log.debug(
                    "Batch rows %d-%d of '%s' submitted (%d row(s)).",
                    first_row, last_row, table, len(batch),
                )
                return
            except StoreError as exc:
                if attempt == attempts:
                    raise BatchWriteError(
                        f"Batch write to '{plan.target_table}' failed: {exc}",
                        table=table,
                        first_row=first_row,
                        last_row=last_row,
                        attempts=attempts,
                    ) from exc
                delay = self._backoff * (2 ** (attempt - 1))
                log.warning(
                    "Batch rows %d-%d of '%s' failed (attempt %d/%d): %s. Retrying in %.2fs.",
                    first_row, last_row, table, attempt, attempts, exc, delay,
                )
                self._sleep(delay)
                self._check_cancelled(table)

    def load(
        self, plan: TablePlan, rows: Iterable[Row], result: LoadResult | None = None
    ) -> LoadResult:
        """
        Submit *rows* for *plan* in batches.

        Pass *result* to keep the counts of committed batches when loading fails.

        Raises:
            BatchWriteError:    A batch still failed after all retries.
            MigrationCancelled: The cancel event was set between batches.
        """
        table = plan.schema.name
        result = result if result is not None else LoadResult()
        buffer: list[Row] = []
        buffer_bytes = 0

        def flush() -> None:
            nonlocal buffer, buffer_bytes
            self._check_cancelled(table)
            self._submit(plan, buffer, first_row=result.rows_written)
            result.rows_written += len(buffer)
            result.batch_sizes.append(len(buffer))
            buffer = []
            buffer_bytes = 0
            if self._progress_cb is not None:
                self._progress_cb(table, result.rows_written)

        for row in rows:
            self._check_cancelled(table)
            row_bytes = estimate_row_bytes(row) if self._max_bytes else 0
            if buffer and self._max_bytes and buffer_bytes + row_bytes > self._max_bytes:
                flush()
            buffer.append(row)
            buffer_bytes += row_bytes
            if len(buffer) >= self._batch_size:
                flush()

        if buffer:
            flush()

        log.info(
            "Loaded %d row(s) into '%s' in %d batch(es).",
            result.rows_written, plan.target_table, result.batches,
        )
        return result
