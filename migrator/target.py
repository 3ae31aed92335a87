"""
migrator/target.py
------------------
Statements for, and a handle on, the wide-column target (Scylla/Cassandra).

The engine needs exactly two capabilities from a target:

    * ``execute_schema(cql)``          – run one schema-definition statement
    * ``execute_batch(insert, rows)``  – bind every row to *insert* and submit
                                         them together as one batch

Design Decisions:
    * Statements are small immutable values rendering CQL text; row values
      are only ever bound to ``?`` markers, never interpolated.
    * Each distinct insert text is prepared once per session and cached.
    * Batches are UNLOGGED: rows of one batch may span partitions and the
      engine already tracks what was submitted.
    * Driver exceptions are re-raised as :class:`StoreError`.
"""
from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from typing import Protocol, Sequence

from cassandra import DriverException
from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import Cluster, NoHostAvailable
from cassandra.query import BatchStatement, BatchType

from logger import get_logger
from migrator.errors import StoreError
from models.connection import TargetDescriptor
from models.schema import Row

log = get_logger(__name__)

CQL_RESERVED = frozenset(
    {
        "add", "aggregate", "all", "allow", "alter", "and", "apply", "asc",
        "authorize", "batch", "begin", "by", "columnfamily", "create", "delete",
        "desc", "describe", "drop", "entries", "execute", "from", "full",
        "grant", "if", "in", "index", "infinity", "insert", "into", "keyspace",
        "limit", "modify", "nan", "norecursive", "not", "null", "of", "on",
        "or", "order", "primary", "rename", "replace", "revoke", "schema",
        "select", "set", "table", "to", "token", "truncate", "unlogged",
        "update", "use", "using", "view", "where", "with",
    }
)

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_INVALID_RE = re.compile(r"[^a-z0-9_]+")


def target_identifier(name: str) -> str:
    """
    Convert a source identifier to a CQL identifier.

    Examples::

        target_identifier("AlbumId")        →  "album_id"
        target_identifier("playlist_track") →  "playlist_track"
        target_identifier("Order")          →  '"order"'
        target_identifier("2fa code")       →  '"2fa_code"'
    """
    ident = _CAMEL_RE.sub("_", name.strip()).lower()
    ident = _INVALID_RE.sub("_", ident).strip("_") or "col"
    if ident in CQL_RESERVED or ident[0].isdigit():
        return f'"{ident}"'
    return ident


@dataclass(frozen=True)
class CreateTableStatement:
    """``CREATE TABLE IF NOT EXISTS`` for one table; column order is kept."""
    keyspace: str
    table: str
    columns: tuple[tuple[str, str], ...]
    partition_key: tuple[str, ...]
    clustering: tuple[str, ...] = ()

    @property
    def cql(self) -> str:
        col_lines = [f"{name} {cql_type}" for name, cql_type in self.columns]
        key = "(" + ", ".join(self.partition_key) + ")"
        if self.clustering:
            key += ", " + ", ".join(self.clustering)
        col_lines.append(f"PRIMARY KEY ({key})")
        return (
            f"CREATE TABLE IF NOT EXISTS {self.keyspace}.{self.table} ("
            + ", ".join(col_lines)
            + ");"
        )


@dataclass(frozen=True)
class InsertStatement:
    """Positional ``INSERT``; values bind in the order of ``columns``."""
    keyspace: str
    table: str
    columns: tuple[str, ...]

    @property
    def cql(self) -> str:
        markers = ", ".join("?" for _ in self.columns)
        return (
            f"INSERT INTO {self.keyspace}.{self.table} "
            f"({', '.join(self.columns)}) VALUES ({markers})"
        )


def create_keyspace_cql(keyspace: str, replication_factor: int) -> str:
    return (
        f"CREATE KEYSPACE IF NOT EXISTS {keyspace} WITH REPLICATION = "
        f"{{'class': 'SimpleStrategy', 'replication_factor': {replication_factor}}};"
    )


class TargetStore(Protocol):
    def execute_schema(self, cql: str) -> None: ...

    def execute_batch(self, insert: InsertStatement, rows: Sequence[Row]) -> None: ...


class ScyllaTarget:
    """
    Session wrapper over a Scylla or Cassandra cluster.

    The session is shared by every table; the driver's session is
    thread-safe and the prepared-statement cache is guarded by a lock.

    Example::

        with ScyllaTarget(TargetDescriptor(nodes=["127.0.0.1"])) as target:
            target.execute_schema(create_keyspace_cql("music", 1))
            target.execute_schema(create.cql)
            target.execute_batch(insert, rows)
    """

    def __init__(self, descriptor: TargetDescriptor) -> None:
        self._descriptor = descriptor
        self._cluster: Cluster | None = None
        self._session = None
        self._prepared: dict[str, object] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> "ScyllaTarget":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def connect(self) -> None:
        if self._session is not None:
            return
        d = self._descriptor
        auth_provider = None
        if d.username:
            auth_provider = PlainTextAuthProvider(d.username, d.password or "")
        self._cluster = Cluster(
            contact_points=d.nodes,
            port=d.port,
            auth_provider=auth_provider,
            connect_timeout=d.connect_timeout,
            control_connection_timeout=d.connect_timeout,
        )
        log.info("Connecting to Scylla at %s ...", d.describe())
        try:
            self._session = self._cluster.connect()
        except (NoHostAvailable, DriverException) as exc:
            self._cluster.shutdown()
            self._cluster = None
            raise StoreError(f"Unable to connect to Scylla at {d.describe()}: {exc}") from exc
        log.info("Connected to Scylla.")

    def close(self) -> None:
        if self._cluster is not None:
            self._cluster.shutdown()
            log.info("Scylla connection closed.")
        self._cluster = None
        self._session = None
        self._prepared.clear()

    def _require_session(self):
        if self._session is None:
            raise StoreError("Target session is not open. Call connect() first.")
        return self._session

    def execute_schema(self, cql: str) -> None:
        session = self._require_session()
        try:
            session.execute(cql)
        except (NoHostAvailable, DriverException) as exc:
            raise StoreError(str(exc)) from exc

    def _prepare(self, insert: InsertStatement):
        text = insert.cql
        with self._lock:
            prepared = self._prepared.get(text)
            if prepared is None:
                prepared = self._require_session().prepare(text)
                self._prepared[text] = prepared
            return prepared

    def execute_batch(self, insert: InsertStatement, rows: Sequence[Row]) -> None:
        session = self._require_session()
        try:
            prepared = self._prepare(insert)
            batch = BatchStatement(batch_type=BatchType.UNLOGGED)
            for row in rows:
                batch.add(prepared, row)
            session.execute(batch)
        except (NoHostAvailable, DriverException) as exc:
            raise StoreError(str(exc)) from exc
