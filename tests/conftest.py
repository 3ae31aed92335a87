"""
tests/conftest.py
-----------------
Shared fixtures: a real temporary SQLite source and an in-memory target.
"""
from __future__ import annotations

import re
import sqlite3
from pathlib import Path
from typing import Sequence

import pytest

from migrator.errors import StoreError
from migrator.sources import SQLiteSource
from migrator.target import InsertStatement

_CREATE_TABLE_RE = re.compile(r"CREATE TABLE IF NOT EXISTS (\w+)\.(\"?\w+\"?) \(")
_CREATE_KEYSPACE_RE = re.compile(r"CREATE KEYSPACE IF NOT EXISTS (\w+)")
_PRIMARY_KEY_RE = re.compile(r"PRIMARY KEY \(\(([^)]*)\)(?:, ([^)]*))?\)\);$")


class FakeTarget:
    """
    Records schema statements and batches the way a target would apply them.

    ``CREATE … IF NOT EXISTS`` is idempotent: a second create of the same
    table keeps the first definition and its rows.
    """

    def __init__(self) -> None:
        self.keyspaces: set[str] = set()
        self.tables: dict[str, str] = {}            # "ks.table" → create CQL
        self.rows: dict[str, list[dict]] = {}        # "ks.table" → rows by column
        self.keys: dict[str, list[str]] = {}         # "ks.table" → key columns
        self.schema_statements: list[str] = []
        self.batches: list[tuple[str, list[tuple]]] = []
        self.fail_schema_for: set[str] = set()       # target table names
        self.batch_failures_left = 0
        self.fail_batches_for: set[str] = set()      # always fail for these tables

    def execute_schema(self, cql: str) -> None:
        self.schema_statements.append(cql)
        ks_match = _CREATE_KEYSPACE_RE.match(cql)
        if ks_match:
            self.keyspaces.add(ks_match.group(1))
            return
        match = _CREATE_TABLE_RE.match(cql)
        if not match:
            raise StoreError(f"unsupported statement: {cql}")
        keyspace, table = match.groups()
        if table in self.fail_schema_for:
            raise StoreError(f"schema rejected for {table}")
        if keyspace not in self.keyspaces:
            raise StoreError(f"keyspace {keyspace} does not exist")
        key = f"{keyspace}.{table}"
        self.tables.setdefault(key, cql)
        partition, clustering = _PRIMARY_KEY_RE.search(self.tables[key]).groups()
        self.keys.setdefault(key, partition.split(", ") + (clustering.split(", ") if clustering else []))
        self.rows.setdefault(key, [])

    def execute_batch(self, insert: InsertStatement, rows: Sequence[tuple]) -> None:
        key = f"{insert.keyspace}.{insert.table}"
        if insert.table in self.fail_batches_for:
            raise StoreError("write timeout")
        if self.batch_failures_left > 0:
            self.batch_failures_left -= 1
            raise StoreError("write timeout")
        if key not in self.tables:
            raise StoreError(f"unconfigured table {key}")
        for row in rows:
            assert len(row) == len(insert.columns)
            values = dict(zip(insert.columns, row))
            if any(values[name] is None for name in self.keys[key]):
                raise StoreError("Invalid null value in condition for a key column")
        self.batches.append((key, list(rows)))
        self.rows[key].extend(dict(zip(insert.columns, row)) for row in rows)


def build_sqlite(path: Path, script: str) -> Path:
    conn = sqlite3.connect(path)
    try:
        conn.executescript(script)
        conn.commit()
    finally:
        conn.close()
    return path


CHINOOK_SUBSET = """
CREATE TABLE Artist (
    ArtistId INTEGER NOT NULL PRIMARY KEY,
    Name NVARCHAR(120)
);
CREATE TABLE Album (
    AlbumId INTEGER NOT NULL PRIMARY KEY,
    Title NVARCHAR(160) NOT NULL,
    ArtistId INTEGER NOT NULL
);
CREATE TABLE PlaylistTrack (
    PlaylistId INTEGER NOT NULL,
    TrackId INTEGER NOT NULL,
    PRIMARY KEY (PlaylistId, TrackId)
);
CREATE TABLE Invoice (
    InvoiceId INTEGER NOT NULL PRIMARY KEY,
    InvoiceDate DATETIME NOT NULL,
    Total NUMERIC(10,2) NOT NULL
);
INSERT INTO Artist VALUES (1, 'AC/DC'), (2, 'Accept'), (3, NULL);
INSERT INTO Album VALUES (1, 'For Those About To Rock', 1), (2, 'Balls to the Wall', 2);
INSERT INTO PlaylistTrack VALUES (1, 3402), (1, 3389), (8, 3402);
INSERT INTO Invoice VALUES (1, '2009-01-01 00:00:00', 1.98), (2, '2009-01-02 00:00:00', 3.96);
"""


@pytest.fixture
def chinook_db(tmp_path: Path) -> Path:
    return build_sqlite(tmp_path / "chinook.db", CHINOOK_SUBSET)


@pytest.fixture
def chinook_source(chinook_db: Path):
    with SQLiteSource(chinook_db) as source:
        yield source


@pytest.fixture
def fake_target() -> FakeTarget:
    return FakeTarget()


@pytest.fixture
def make_db(tmp_path: Path):
    """Factory: ``make_db(script, name="src.db")`` → path of a fresh SQLite file."""
    def _make(script: str, name: str = "src.db") -> Path:
        return build_sqlite(tmp_path / name, script)
    return _make
