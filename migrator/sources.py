"""
migrator/sources.py
-------------------
Read-only handles on the relational source store.

The engine needs exactly three capabilities from a source:

    * ``list_tables()``        – user tables, system tables excluded
    * ``describe_table(name)`` – columns in declaration order
    * ``scan(name, columns)``  – lazy iterator over rows in native order

Design Decisions:
    * Handles are context managers: ``__enter__`` connects, ``__exit__``
      closes and never suppresses exceptions.
    * Each ``scan`` opens its own connection and closes it when the iterator
      is exhausted or closed, so scans are re-openable, independent of the
      catalog connection, and safe to run from worker threads.
    * Driver exceptions are re-raised as :class:`StoreError`; the engine
      decides which of its own errors that becomes.
    * Identifiers are quoted; no value is ever interpolated into SQL.
"""
from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import Iterator, Protocol

import mysql.connector

from logger import get_logger
from migrator.errors import StoreError
from models.connection import SourceDescriptor
from models.schema import ColumnSchema

log = get_logger(__name__)

_FETCH_SIZE = 500


class SourceStore(Protocol):
    def list_tables(self) -> list[str]: ...

    def describe_table(self, table_name: str) -> list[ColumnSchema]: ...

    def scan(self, table_name: str, columns: list[str]) -> Iterator[tuple]: ...

    def close(self) -> None: ...


def _lenient_text(raw: bytes) -> str:
    # Undecodable bytes survive as surrogates and are rejected per row later.
    return raw.decode("utf-8", errors="surrogateescape")


def _quote_sqlite(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _quote_mysql(identifier: str) -> str:
    return "`" + identifier.replace("`", "``") + "`"


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------

class SQLiteSource:
    """
    Source handle over a SQLite database file, opened read-only.

    Example::

        with SQLiteSource("chinook.db") as src:
            for name in src.list_tables():
                print(name, [c.name for c in src.describe_table(name)])
    """

    def __init__(self, path: str | Path, fetch_size: int = _FETCH_SIZE) -> None:
        self._path = Path(path)
        self._fetch_size = fetch_size
        self._conn: sqlite3.Connection | None = None

    def __enter__(self) -> "SQLiteSource":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False  # Never suppress exceptions

    def _open(self) -> sqlite3.Connection:
        if not self._path.is_file():
            raise StoreError(f"SQLite database '{self._path}' does not exist.")
        uri = self._path.resolve().as_uri() + "?mode=ro"
        try:
            conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open SQLite database '{self._path}': {exc}") from exc
        conn.text_factory = _lenient_text
        return conn

    def connect(self) -> None:
        if self._conn is None:
            self._conn = self._open()
            log.info("Opened SQLite source '%s' (read-only).", self._path)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            log.debug("SQLite source '%s' closed.", self._path)

    def _query(self, sql: str, params: tuple = ()) -> list[tuple]:
        self.connect()
        assert self._conn is not None
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"SQLite catalog query failed: {exc}") from exc

    def list_tables(self) -> list[str]:
        rows = self._query(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite\\_%' ESCAPE '\\' "
            "ORDER BY name"
        )
        return [row[0] for row in rows]

    def describe_table(self, table_name: str) -> list[ColumnSchema]:
        # PRAGMA table_info → (cid, name, type, notnull, dflt_value, pk)
        rows = self._query(f"PRAGMA table_info({_quote_sqlite(table_name)})")
        if not rows:
            raise StoreError(f"Table '{table_name}' has no readable columns.")
        return [
            ColumnSchema(
                name=row[1],
                source_type=row[2] or "",
                pk_position=int(row[5] or 0),
                nullable=not row[3],
            )
            for row in sorted(rows, key=lambda r: r[0])
        ]

    def scan(self, table_name: str, columns: list[str]) -> Iterator[tuple]:
        conn = self._open()
        select_list = ", ".join(_quote_sqlite(c) for c in columns)
        try:
            cursor = conn.execute(f"SELECT {select_list} FROM {_quote_sqlite(table_name)}")
            while True:
                rows = cursor.fetchmany(self._fetch_size)
                if not rows:
                    break
                yield from rows
        except sqlite3.Error as exc:
            raise StoreError(f"Scan of '{table_name}' failed: {exc}") from exc
        finally:
            conn.close()


# ---------------------------------------------------------------------------
# MySQL
# ---------------------------------------------------------------------------

class MySQLSource:
    """
    Source handle over one MySQL database.

    Connects with linear back-off retries, like the rest of the tool's MySQL
    access; scans use a dedicated unbuffered connection each.
    """

    def __init__(
        self,
        descriptor: SourceDescriptor,
        connect_timeout: int = 10,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        fetch_size: int = _FETCH_SIZE,
    ) -> None:
        self._descriptor = descriptor
        self._connect_timeout = connect_timeout
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._fetch_size = fetch_size
        self._conn = None

    def __enter__(self) -> "MySQLSource":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def _open(self):
        d = self._descriptor
        for attempt in range(1, self._max_retries + 1):
            try:
                log.info(
                    "Connecting to MySQL at %s:%s (attempt %d/%d)",
                    d.host, d.port, attempt, self._max_retries,
                )
                return mysql.connector.connect(
                    host=d.host,
                    port=d.port,
                    user=d.user,
                    password=d.password,
                    database=d.database,
                    charset=d.charset,
                    connect_timeout=self._connect_timeout,
                )
            except mysql.connector.Error as exc:
                log.warning("Connection attempt %d failed: %s", attempt, exc)
                if attempt < self._max_retries:
                    time.sleep(self._retry_delay * attempt)
        raise StoreError(
            f"Could not connect to MySQL at {d.host}:{d.port} "
            f"after {self._max_retries} attempts."
        )

    def connect(self) -> None:
        if self._conn is None or not self._conn.is_connected():
            self._conn = self._open()

    def close(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            except mysql.connector.Error as exc:
                log.warning("Error while closing MySQL connection: %s", exc)
            self._conn = None

    def _query(self, sql: str, params: tuple = ()) -> list[tuple]:
        self.connect()
        cursor = self._conn.cursor()
        try:
            cursor.execute(sql, params)
            return cursor.fetchall()
        except mysql.connector.Error as exc:
            raise StoreError(f"MySQL catalog query failed: {exc}") from exc
        finally:
            cursor.close()

    def list_tables(self) -> list[str]:
        rows = self._query(
            "SELECT TABLE_NAME FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = %s AND TABLE_TYPE = 'BASE TABLE' "
            "ORDER BY TABLE_NAME",
            (self._descriptor.database,),
        )
        return [row[0] for row in rows]

    def describe_table(self, table_name: str) -> list[ColumnSchema]:
        rows = self._query(
            "SELECT COLUMN_NAME, COLUMN_TYPE, IS_NULLABLE "
            "FROM information_schema.COLUMNS "
            "WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s "
            "ORDER BY ORDINAL_POSITION",
            (self._descriptor.database, table_name),
        )
        if not rows:
            raise StoreError(f"Table '{table_name}' has no readable columns.")
        key_rows = self._query(
            "SELECT COLUMN_NAME, ORDINAL_POSITION FROM information_schema.KEY_COLUMN_USAGE "
            "WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s AND CONSTRAINT_NAME = 'PRIMARY'",
            (self._descriptor.database, table_name),
        )
        pk_positions = {name: int(position) for name, position in key_rows}
        return [
            ColumnSchema(
                name=name,
                source_type=column_type,
                pk_position=pk_positions.get(name, 0),
                nullable=is_nullable == "YES",
            )
            for name, column_type, is_nullable in rows
        ]

    def scan(self, table_name: str, columns: list[str]) -> Iterator[tuple]:
        conn = self._open()
        cursor = conn.cursor(buffered=False)
        select_list = ", ".join(_quote_mysql(c) for c in columns)
        try:
            cursor.execute(f"SELECT {select_list} FROM {_quote_mysql(table_name)}")
            while True:
                rows = cursor.fetchmany(self._fetch_size)
                if not rows:
                    break
                yield from rows
        except mysql.connector.Error as exc:
            raise StoreError(f"Scan of '{table_name}' failed: {exc}") from exc
        finally:
            # An abandoned unbuffered cursor raises "Unread result found" on close.
            try:
                cursor.close()
            except mysql.connector.Error as exc:
                log.warning("Closing scan cursor of '%s' early: %s", table_name, exc)
            finally:
                conn.close()


def open_source(descriptor: SourceDescriptor) -> SQLiteSource | MySQLSource:
    """Build the source handle matching *descriptor* (not yet connected)."""
    if descriptor.kind == "sqlite":
        return SQLiteSource(descriptor.path)
    return MySQLSource(descriptor)
