"""
models/schema.py
----------------
Typed description of a source table as read from the catalog.

Design Decision:
    ``TableSchema`` is frozen and its columns are a tuple: the column order
    captured at introspection is the only order ever used for DDL, insert
    statements and row tuples, so nothing downstream may reorder or extend it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# One value per schema column, positionally aligned with TableSchema.columns.
# Values are plain Python literals: str, int, float, Decimal, datetime, bytes, bool or None.
Row = tuple[Any, ...]


@dataclass(frozen=True)
class ColumnSchema:
    """
    One source column.

    Attributes:
        name:        Column name exactly as declared in the source.
        source_type: Native declared type, e.g. ``"NVARCHAR(120)"``.
        pk_position: 1-based position inside the primary key, 0 if not a key column.
        nullable:    False when the source declares NOT NULL.
    """
    name: str
    source_type: str
    pk_position: int = 0
    nullable: bool = True

    @property
    def is_primary_key(self) -> bool:
        return self.pk_position > 0


@dataclass(frozen=True)
class TableSchema:
    """A source table: its name and its columns in declaration order."""
    name: str
    columns: tuple[ColumnSchema, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        # Accept any sequence but always store a tuple.
        object.__setattr__(self, "columns", tuple(self.columns))

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    @property
    def primary_key(self) -> list[str]:
        """Primary key columns in key order (empty if the source names none)."""
        keyed = sorted((c for c in self.columns if c.is_primary_key), key=lambda c: c.pk_position)
        return [c.name for c in keyed]

    def __len__(self) -> int:
        return len(self.columns)
