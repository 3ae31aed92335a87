"""
migrator/errors.py
------------------
Exception taxonomy of the migration engine.

Every exception carries a stable ``kind`` (used in the final report) and a
``detail`` string identifying the table and, where relevant, the column or
row range involved. Catalog-scoped errors end the run; all others are caught
at the orchestrator's per-table boundary.
"""
from __future__ import annotations


class MigrationError(Exception):
    """Base class for all engine errors."""
    kind = "MigrationError"

    def __init__(self, message: str, table: str | None = None) -> None:
        super().__init__(message)
        self.table = table

    @property
    def detail(self) -> str:
        return str(self)


class SchemaReadError(MigrationError):
    """The source catalog, or one table's column metadata, could not be read."""
    kind = "SchemaReadError"


class UnsupportedTypeError(MigrationError):
    """A source column type has no target mapping."""
    kind = "UnsupportedTypeError"

    def __init__(self, column: str, source_type: str, table: str | None = None) -> None:
        where = f"'{table}'.'{column}'" if table else f"'{column}'"
        super().__init__(
            f"No target type mapping for column {where} of type '{source_type}'",
            table=table,
        )
        self.column = column
        self.source_type = source_type


class SchemaWriteError(MigrationError):
    """The target rejected a schema-definition statement."""
    kind = "SchemaWriteError"

    def __init__(self, message: str, table: str | None = None, statement: str = "") -> None:
        super().__init__(message, table=table)
        self.statement = statement


class RowReadError(MigrationError):
    """A single source row could not be decoded into target literals."""
    kind = "RowReadError"

    def __init__(
        self,
        message: str,
        table: str | None = None,
        row_index: int = -1,
        column: str | None = None,
    ) -> None:
        super().__init__(message, table=table)
        self.row_index = row_index
        self.column = column

    @property
    def detail(self) -> str:
        return f"{self} (table '{self.table}', row {self.row_index})"


class BatchWriteError(MigrationError):
    """A batch could not be committed to the target after all retries."""
    kind = "BatchWriteError"

    def __init__(
        self,
        message: str,
        table: str | None = None,
        first_row: int = 0,
        last_row: int = 0,
        attempts: int = 1,
    ) -> None:
        super().__init__(message, table=table)
        self.first_row = first_row
        self.last_row = last_row
        self.attempts = attempts

    @property
    def detail(self) -> str:
        return (
            f"{self} (table '{self.table}', rows {self.first_row}-{self.last_row}, "
            f"{self.attempts} attempt(s))"
        )


class MigrationCancelled(MigrationError):
    """The run was cancelled before this table finished."""
    kind = "Cancelled"


class StoreError(Exception):
    """Low-level failure reported by a store handle (connection, query, batch)."""
