"""
migrator/synthesizer.py
-----------------------
Builds and applies the target schema for one introspected table.

Key selection:
    * Source primary key of one column  → that column is the partition key.
    * Composite source primary key      → first key column partitions, the
                                          rest cluster, in key order.
    * No source primary key             → the first ``key_columns`` declared
                                          columns, the first partitioning.

The target requires an explicit key while the source may not declare one,
so the fallback is deterministic: it depends only on declaration order.
"""
from __future__ import annotations

from dataclasses import dataclass

from logger import get_logger
from migrator.errors import SchemaWriteError, StoreError
from migrator.target import CreateTableStatement, InsertStatement, TargetStore, target_identifier
from migrator.type_mapper import TypeMapper
from models.schema import TableSchema

log = get_logger(__name__)


@dataclass(frozen=True)
class TablePlan:
    """Everything derived from one ``TableSchema``; all lists are in schema order."""
    schema: TableSchema
    target_table: str
    target_columns: tuple[str, ...]
    target_types: tuple[str, ...]
    create: CreateTableStatement
    insert: InsertStatement
    key_indices: tuple[int, ...] = ()


class TargetSchemaSynthesizer:
    """
    Args:
        target:      Handle used to issue the schema statement.
        type_mapper: Column type policy.
        keyspace:    Keyspace that receives every table.
        key_columns: Leading columns used as the key when the source names none.
    """

    def __init__(
        self,
        target: TargetStore,
        type_mapper: TypeMapper,
        keyspace: str,
        key_columns: int = 1,
    ) -> None:
        if key_columns < 1:
            raise ValueError("key_columns must be at least 1")
        self._target = target
        self._mapper = type_mapper
        self._keyspace = keyspace
        self._key_columns = key_columns

    def _key_for(self, table: TableSchema) -> list[str]:
        pk = table.primary_key
        if pk:
            return pk
        chosen = table.column_names[: self._key_columns]
        log.info(
            "Table '%s' declares no primary key; using %s as the target key.",
            table.name, ", ".join(chosen),
        )
        return chosen

    def plan(self, table: TableSchema) -> TablePlan:
        """
        Derive the target statements without touching the target.

        Raises:
            UnsupportedTypeError: A column type has no mapping (and no fallback).
            SchemaWriteError:     Two source columns collapse to one target name.
        """
        target_types = self._mapper.map_table(table)
        target_columns = [target_identifier(name) for name in table.column_names]
        if len(set(target_columns)) != len(target_columns):
            raise SchemaWriteError(
                f"Columns of '{table.name}' collide after renaming: {', '.join(target_columns)}",
                table=table.name,
            )

        by_source = dict(zip(table.column_names, target_columns))
        key_names = self._key_for(table)
        key = [by_source[name] for name in key_names]
        key_indices = tuple(table.column_names.index(name) for name in key_names)
        nullable_keys = [c.name for c in table.columns if c.name in key_names and c.nullable]
        if nullable_keys:
            log.info(
                "Key column(s) %s of '%s' are nullable; rows with a null key are rejected.",
                ", ".join(nullable_keys), table.name,
            )
        target_table = target_identifier(table.name)

        create = CreateTableStatement(
            keyspace=self._keyspace,
            table=target_table,
            columns=tuple(zip(target_columns, target_types)),
            partition_key=(key[0],),
            clustering=tuple(key[1:]),
        )
        insert = InsertStatement(
            keyspace=self._keyspace,
            table=target_table,
            columns=tuple(target_columns),
        )
        return TablePlan(
            schema=table,
            target_table=target_table,
            target_columns=tuple(target_columns),
            target_types=tuple(target_types),
            create=create,
            insert=insert,
            key_indices=key_indices,
        )

    def synthesize(self, table: TableSchema) -> TablePlan:
        """Plan the table and issue its create-if-absent statement."""
        plan = self.plan(table)
        cql = plan.create.cql
        log.debug("Schema for '%s': %s", table.name, cql)
        try:
            self._target.execute_schema(cql)
        except StoreError as exc:
            raise SchemaWriteError(
                f"Creating '{self._keyspace}.{plan.target_table}' failed: {exc}",
                table=table.name,
                statement=cql,
            ) from exc
        log.info("Table '%s.%s' is in place.", self._keyspace, plan.target_table)
        return plan
