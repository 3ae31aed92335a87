"""
migrator/introspector.py
------------------------
Reads the source catalog once and freezes it into ``TableSchema`` values.

A partial catalog is never returned: if the table list, or any one table's
column metadata, cannot be read the whole run stops with
:class:`SchemaReadError`.
"""
from __future__ import annotations

from logger import get_logger
from migrator.errors import SchemaReadError, StoreError
from migrator.sources import SourceStore
from models.schema import TableSchema

log = get_logger(__name__)


class SchemaIntrospector:
    """
    Args:
        source: Any handle providing ``list_tables`` and ``describe_table``.
        tables: Optional allow-list of table names; order is still catalog order.
    """

    def __init__(self, source: SourceStore, tables: list[str] | None = None) -> None:
        self._source = source
        self._only = set(tables) if tables else None

    def introspect(self) -> list[TableSchema]:
        try:
            names = self._source.list_tables()
        except StoreError as exc:
            raise SchemaReadError(f"Cannot enumerate source tables: {exc}") from exc

        if self._only is not None:
            missing = self._only.difference(names)
            if missing:
                raise SchemaReadError(
                    f"Requested table(s) not in source catalog: {', '.join(sorted(missing))}"
                )
            names = [n for n in names if n in self._only]

        schemas: list[TableSchema] = []
        for name in names:
            try:
                columns = self._source.describe_table(name)
            except StoreError as exc:
                raise SchemaReadError(
                    f"Cannot read column metadata for '{name}': {exc}", table=name
                ) from exc
            schemas.append(TableSchema(name=name, columns=tuple(columns)))
            log.debug(
                "Table '%s': %s", name,
                ", ".join(f"{c.name} {c.source_type}" for c in columns),
            )

        if not schemas:
            log.warning("Source catalog contains no user tables.")
        log.info(
            "Introspected %d table(s), %d column(s) total.",
            len(schemas), sum(len(s) for s in schemas),
        )
        return schemas
