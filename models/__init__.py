"""models/__init__.py"""
from models.connection import SourceDescriptor, TargetDescriptor
from models.policy import RowErrorPolicy, UnsupportedTypePolicy
from models.schema import ColumnSchema, Row, TableSchema
from models.task import (
    InvalidTransitionError,
    MigrationReport,
    MigrationTask,
    TaskState,
)

__all__ = [
    "SourceDescriptor",
    "TargetDescriptor",
    "RowErrorPolicy",
    "UnsupportedTypePolicy",
    "ColumnSchema",
    "Row",
    "TableSchema",
    "InvalidTransitionError",
    "MigrationReport",
    "MigrationTask",
    "TaskState",
]
