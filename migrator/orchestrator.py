"""
migrator/orchestrator.py
------------------------
Runs a whole migration: introspect once, then for every table create the
target schema and stream its rows into batches.

Design Decisions:
    * The orchestrator is a plain class with injected dependencies (source
      and target handles, type mapper, policies). No global state.
    * This is the only place failure isolation is decided: every engine
      error raised while migrating one table ends that table's task as
      FAILED and the run moves on. Only :class:`SchemaReadError` (no usable
      catalog) escapes ``run``.
    * Tables run sequentially unless ``max_workers`` > 1, in which case
      they are spread over a thread pool; each table's batches are still
      produced and submitted by a single thread in scan order.
    * ``cancel()`` may be called from any thread. In-flight batches finish;
      tables that have not started end FAILED with kind ``Cancelled``.
    * Progress is reported via a callback so the CLI can display updates
      without this module knowing how.
"""
from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from config import CONFIG, MigrationConfig
from logger import get_logger
from migrator.errors import MigrationCancelled, MigrationError, SchemaWriteError, StoreError
from migrator.introspector import SchemaIntrospector
from migrator.loader import BatchLoader, LoadResult, ProgressCallback
from migrator.sources import SourceStore
from migrator.streamer import RowStreamer, StreamStats
from migrator.synthesizer import TargetSchemaSynthesizer
from migrator.target import TargetStore, create_keyspace_cql, target_identifier
from migrator.type_mapper import TypeMapper
from models.policy import RowErrorPolicy
from models.schema import TableSchema
from models.task import MigrationReport, MigrationTask

log = get_logger(__name__)


class MigrationOrchestrator:
    """
    Orchestrates migration of every table in the source catalog.

    Args:
        source:             Read-only source handle.
        target:             Target handle shared by every table.
        keyspace:           Target keyspace (created if absent).
        type_mapper:        Column type policy; defaults to :class:`TypeMapper`.
        batch_size:         Rows per batch.
        max_batch_bytes:    Optional byte bound per batch.
        batch_retries:      Retries per failing batch.
        retry_backoff:      Base back-off delay in seconds.
        row_error_policy:   Skip undecodable rows or abort their table.
        key_columns:        Leading columns used as key when the source has none.
        replication_factor: Used when creating the keyspace.
        max_workers:        Tables migrated concurrently (1 = sequential).
        tables:             Optional subset of tables to migrate.
        progress_cb:        ``(table, rows_written)`` after each batch.
        sleep:              Back-off sleep, injectable for tests.

    Example::

        with SQLiteSource("chinook.db") as src, ScyllaTarget(desc) as dst:
            report = MigrationOrchestrator(src, dst, keyspace="music").run()
            print(report)
    """

    def __init__(
        self,
        source: SourceStore,
        target: TargetStore,
        keyspace: str,
        type_mapper: TypeMapper | None = None,
        batch_size: int = 100,
        max_batch_bytes: int | None = None,
        batch_retries: int = 3,
        retry_backoff: float = 0.5,
        row_error_policy: RowErrorPolicy = RowErrorPolicy.ABORT_TABLE,
        key_columns: int = 1,
        replication_factor: int = 1,
        max_workers: int = 1,
        tables: list[str] | None = None,
        progress_cb: ProgressCallback | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._source = source
        self._target = target
        self._keyspace = keyspace
        self._replication_factor = replication_factor
        self._max_workers = max_workers
        self._cancel = threading.Event()

        self._introspector = SchemaIntrospector(source, tables=tables)
        self._synthesizer = TargetSchemaSynthesizer(
            target, type_mapper or TypeMapper(), keyspace, key_columns=key_columns
        )
        self._streamer = RowStreamer(source, policy=row_error_policy)
        self._loader = BatchLoader(
            target,
            batch_size=batch_size,
            max_batch_bytes=max_batch_bytes,
            retries=batch_retries,
            backoff=retry_backoff,
            cancel_event=self._cancel,
            progress_cb=progress_cb or self._default_progress,
            sleep=sleep,
        )

    @classmethod
    def from_config(
        cls,
        source: SourceStore,
        target: TargetStore,
        keyspace: str | None = None,
        settings: MigrationConfig | None = None,
        **overrides,
    ) -> "MigrationOrchestrator":
        """Convenience factory using values from the application config."""
        settings = settings or CONFIG.migration
        options = dict(
            type_mapper=TypeMapper.for_policy(settings.unsupported_type_policy),
            batch_size=settings.batch_size,
            max_batch_bytes=settings.max_batch_bytes,
            batch_retries=settings.batch_retries,
            retry_backoff=settings.retry_backoff,
            row_error_policy=settings.row_error_policy,
            key_columns=settings.key_columns,
            replication_factor=CONFIG.target.replication_factor,
            max_workers=settings.max_workers,
        )
        options.update(overrides)
        return cls(source, target, keyspace or CONFIG.target.keyspace, **options)

    @staticmethod
    def _default_progress(table: str, rows_written: int) -> None:
        log.debug("%s: %d row(s) written", table, rows_written)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Ask the run to stop; safe to call from a signal handler or another thread."""
        if not self._cancel.is_set():
            log.warning("Cancellation requested; finishing in-flight batches.")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def run(self) -> MigrationReport:
        """
        Migrate every table and return the terminal state of each.

        Raises:
            SchemaReadError: The source catalog could not be read; no table
                             work has started.
        """
        schemas = self._introspector.introspect()
        report = MigrationReport()

        keyspace_error = self._ensure_keyspace()
        if keyspace_error is not None:
            for schema in schemas:
                task = MigrationTask(table_name=schema.name)
                task.fail(keyspace_error)
                report.tasks.append(task)
            self._log_report(report)
            return report

        collisions = self._claim_target_names(schemas)

        def run_one(schema: TableSchema) -> MigrationTask:
            error = collisions.get(schema.name)
            if error is None:
                return self.migrate_table(schema)
            task = MigrationTask(table_name=schema.name)
            task.fail(error)
            log.error("Table '%s' failed: %s", schema.name, task.error_detail)
            return task

        if self._max_workers == 1 or len(schemas) <= 1:
            report.tasks.extend(run_one(s) for s in schemas)
        else:
            with ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="migrate"
            ) as pool:
                futures = [pool.submit(run_one, s) for s in schemas]
                report.tasks.extend(f.result() for f in futures)

        self._log_report(report)
        return report

    def migrate_table(self, schema: TableSchema) -> MigrationTask:
        """Run one table through schema creation and data load; never raises."""
        task = MigrationTask(table_name=schema.name)
        if self._cancel.is_set():
            task.fail(MigrationCancelled("Cancelled before start.", table=schema.name))
            return task

        log.info("Migrating '%s' (%d column(s))...", schema.name, len(schema))
        stats = StreamStats()
        loaded = LoadResult()
        try:
            plan = self._synthesizer.synthesize(schema)
            task.mark_schema_created()

            rows = self._streamer.stream(plan, stats)
            try:
                self._loader.load(plan, rows, loaded)
            finally:
                rows.close()
        except MigrationError as exc:
            task.fail(exc)
        except Exception as exc:
            log.exception("Unexpected error while migrating '%s'", schema.name)
            task.fail(exc)
        else:
            task.mark_migrated()
        finally:
            task.rows_read = stats.rows_read
            task.rows_skipped = stats.rows_skipped
            task.rows_written = loaded.rows_written
            task.batches = loaded.batches

        if task.error is not None:
            log.error("Table '%s' failed: %s", schema.name, task.error_detail)
        else:
            log.info(
                "Table '%s' done: %d row(s), %d batch(es), %d skipped, %.2fs.",
                schema.name, task.rows_written, task.batches,
                task.rows_skipped, task.elapsed_seconds,
            )
        return task

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _claim_target_names(schemas: list[TableSchema]) -> dict[str, SchemaWriteError]:
        """Tables whose target name an earlier table already took."""
        owners: dict[str, str] = {}
        collisions: dict[str, SchemaWriteError] = {}
        for schema in schemas:
            name = target_identifier(schema.name)
            owner = owners.setdefault(name, schema.name)
            if owner != schema.name:
                collisions[schema.name] = SchemaWriteError(
                    f"Target table '{name}' is already used by '{owner}'",
                    table=schema.name,
                )
        return collisions

    def _ensure_keyspace(self) -> SchemaWriteError | None:
        cql = create_keyspace_cql(self._keyspace, self._replication_factor)
        try:
            self._target.execute_schema(cql)
        except StoreError as exc:
            log.error("Could not create keyspace '%s': %s", self._keyspace, exc)
            return SchemaWriteError(
                f"Creating keyspace '{self._keyspace}' failed: {exc}", statement=cql
            )
        return None

    @staticmethod
    def _log_report(report: MigrationReport) -> None:
        level = log.error if report.failed else log.info
        level("Migration finished.\n%s", report)
