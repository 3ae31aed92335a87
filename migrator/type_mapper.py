"""
migrator/type_mapper.py
-----------------------
Source column type → CQL column type.

The mapping is an explicit table keyed by base type keyword. A type that is
not in the table is an error unless the mapper was built with a fallback
type (the ``fallback_text`` policy), in which case the fallback is used and a
warning is logged.

Design Decision:
    The mapper is a value, not module state: the engine receives one, tests
    build their own, and swapping the compatibility policy never touches the
    engine. The table encodes domain knowledge as data (grouped keyword sets)
    rather than a nested if/else tree.
"""
from __future__ import annotations

import re
from types import MappingProxyType
from typing import Mapping

from logger import get_logger
from migrator.errors import UnsupportedTypeError
from models.policy import UnsupportedTypePolicy
from models.schema import TableSchema

log = get_logger(__name__)

# ---------------------------------------------------------------------------
# Type keyword groups (SQLite declared types and MySQL column types)
# ---------------------------------------------------------------------------
_INT_TYPES = frozenset(
    {"int", "integer", "tinyint", "smallint", "mediumint", "int2", "year"}
)
_BIGINT_TYPES = frozenset({"bigint", "int8", "big int"})
_FLOAT_TYPES = frozenset({"real", "double", "double precision", "float"})
_DECIMAL_TYPES = frozenset({"numeric", "decimal", "fixed"})
_TEXT_TYPES = frozenset(
    {
        "text", "varchar", "nvarchar", "char", "nchar", "character",
        "varying character", "native character", "clob", "tinytext",
        "mediumtext", "longtext", "enum", "set", "json",
    }
)
_BLOB_TYPES = frozenset(
    {"blob", "binary", "varbinary", "tinyblob", "mediumblob", "longblob"}
)

_DEFAULT_TYPE_MAP: dict[str, str] = {}
for _group, _target in (
    (_INT_TYPES, "int"),
    (_BIGINT_TYPES, "bigint"),
    (_FLOAT_TYPES, "double"),
    (_DECIMAL_TYPES, "decimal"),
    (_TEXT_TYPES, "text"),
    (_BLOB_TYPES, "blob"),
):
    for _keyword in _group:
        _DEFAULT_TYPE_MAP[_keyword] = _target
_DEFAULT_TYPE_MAP.update(
    {
        "datetime": "timestamp",
        "timestamp": "timestamp",
        "date": "date",
        "time": "time",
        "boolean": "boolean",
        "bool": "boolean",
    }
)

DEFAULT_TYPE_MAP: Mapping[str, str] = MappingProxyType(_DEFAULT_TYPE_MAP)

# Widening applied to unsigned integer columns so the full range still fits.
_UNSIGNED_WIDENING = {"int": "bigint", "bigint": "varint"}
_MODIFIERS = frozenset({"unsigned", "signed", "zerofill"})
_PARAMS_RE = re.compile(r"\([^)]*\)")


def get_base_type(type_string: str) -> str:
    """
    Reduce a declared column type to its base keyword(s).

    Examples::

        get_base_type("NVARCHAR(120)")       →  "nvarchar"
        get_base_type("int(10) unsigned")    →  "int"
        get_base_type("UNSIGNED BIG INT")    →  "big int"
        get_base_type("DOUBLE PRECISION")    →  "double precision"
        get_base_type("")                    →  ""
    """
    if not type_string:
        return ""
    words = _PARAMS_RE.sub(" ", type_string).lower().split()
    return " ".join(w for w in words if w not in _MODIFIERS)


def is_unsigned(type_string: str) -> bool:
    return "unsigned" in type_string.lower().split()


class TypeMapper:
    """
    Maps source column types to target column types.

    Args:
        mapping:  Base type keyword → target type. Defaults to
                  :data:`DEFAULT_TYPE_MAP`. Keys are matched case-insensitively.
        fallback: Target type used for unmapped source types. ``None`` (the
                  default) makes unmapped types an :class:`UnsupportedTypeError`.

    Example::

        mapper = TypeMapper()
        mapper.map("NVARCHAR(160)", column="Title")   # "text"
        mapper.map("NUMERIC(10,2)", column="Total")   # "decimal"
    """

    def __init__(
        self,
        mapping: Mapping[str, str] | None = None,
        fallback: str | None = None,
    ) -> None:
        source = DEFAULT_TYPE_MAP if mapping is None else mapping
        self._mapping = {get_base_type(k): v.lower() for k, v in source.items()}
        self._fallback = fallback.lower() if fallback else None

    @classmethod
    def for_policy(
        cls,
        policy: UnsupportedTypePolicy,
        mapping: Mapping[str, str] | None = None,
    ) -> "TypeMapper":
        fallback = "text" if policy == UnsupportedTypePolicy.FALLBACK_TEXT else None
        return cls(mapping=mapping, fallback=fallback)

    def map(self, source_type: str, column: str = "?", table: str | None = None) -> str:
        """
        Return the target type for *source_type*.

        Raises:
            UnsupportedTypeError: If the type is unmapped and no fallback is set.
        """
        base = get_base_type(source_type)
        target = self._mapping.get(base)
        if target is None:
            if self._fallback is None:
                raise UnsupportedTypeError(column=column, source_type=source_type, table=table)
            log.warning(
                "Column '%s'.'%s' has unmapped type '%s'; falling back to %s.",
                table, column, source_type, self._fallback,
            )
            return self._fallback
        if is_unsigned(source_type):
            target = _UNSIGNED_WIDENING.get(target, target)
        return target

    def map_table(self, table: TableSchema) -> list[str]:
        """Target types for every column of *table*, in schema order."""
        return [self.map(c.source_type, column=c.name, table=table.name) for c in table.columns]
