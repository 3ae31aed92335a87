"""
models/policy.py
----------------
Per-table error policies selectable from configuration.
"""
from __future__ import annotations

from enum import Enum


class RowErrorPolicy(str, Enum):
    """What to do when a single source row cannot be decoded."""
    ABORT_TABLE = "abort_table"
    SKIP_ROW = "skip_row"


class UnsupportedTypePolicy(str, Enum):
    """What to do when a column type has no target mapping."""
    ABORT_TABLE = "abort_table"
    FALLBACK_TEXT = "fallback_text"
