"""migrator/__init__.py"""
from migrator.errors import (
    BatchWriteError,
    MigrationCancelled,
    MigrationError,
    RowReadError,
    SchemaReadError,
    SchemaWriteError,
    StoreError,
    UnsupportedTypeError,
)
from migrator.introspector import SchemaIntrospector
from migrator.loader import BatchLoader, LoadResult
from migrator.orchestrator import MigrationOrchestrator
from migrator.sources import MySQLSource, SQLiteSource, open_source
from migrator.streamer import RowStreamer, StreamStats, coerce_value
from migrator.synthesizer import TablePlan, TargetSchemaSynthesizer
from migrator.target import CreateTableStatement, InsertStatement, ScyllaTarget, target_identifier
from migrator.type_mapper import DEFAULT_TYPE_MAP, TypeMapper, get_base_type

__all__ = [
    "BatchWriteError",
    "MigrationCancelled",
    "MigrationError",
    "RowReadError",
    "SchemaReadError",
    "SchemaWriteError",
    "StoreError",
    "UnsupportedTypeError",
    "SchemaIntrospector",
    "BatchLoader",
    "LoadResult",
    "MigrationOrchestrator",
    "MySQLSource",
    "SQLiteSource",
    "open_source",
    "RowStreamer",
    "StreamStats",
    "coerce_value",
    "TablePlan",
    "TargetSchemaSynthesizer",
    "CreateTableStatement",
    "InsertStatement",
    "ScyllaTarget",
    "target_identifier",
    "DEFAULT_TYPE_MAP",
    "TypeMapper",
    "get_base_type",
]
