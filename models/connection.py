"""
models/connection.py
--------------------
Validated connection descriptors for the source and target stores.

Design Decision:
    pydantic models reject malformed descriptors (unknown scheme, empty node
    list, out-of-range port) before any connection is attempted, so store
    handles can assume their inputs are well formed.
"""
from __future__ import annotations

from typing import Literal, Optional
from urllib.parse import unquote, urlparse

from pydantic import BaseModel, Field, field_validator, model_validator


class SourceDescriptor(BaseModel):
    """Where the relational source lives: a SQLite file or a MySQL server."""
    kind: Literal["sqlite", "mysql"] = "sqlite"
    path: Optional[str] = None
    host: str = "localhost"
    port: int = Field(default=3306, ge=1, le=65535)
    user: Optional[str] = None
    password: Optional[str] = None
    database: Optional[str] = None
    charset: str = "utf8mb4"

    @model_validator(mode="after")
    def _check_kind_fields(self) -> "SourceDescriptor":
        if self.kind == "sqlite" and not self.path:
            raise ValueError("a SQLite source needs a file path")
        if self.kind == "mysql" and not self.database:
            raise ValueError("a MySQL source needs a database name")
        return self

    @classmethod
    def from_url(cls, url: str) -> "SourceDescriptor":
        """
        Parse a source URL.

        Examples::

            SourceDescriptor.from_url("chinook.db")
            SourceDescriptor.from_url("sqlite:///data/chinook.db")
            SourceDescriptor.from_url("mysql://root:secret@db:3306/chinook")
        """
        if "://" not in url:
            return cls(kind="sqlite", path=url)

        parsed = urlparse(url)
        scheme = parsed.scheme.lower()
        if scheme == "sqlite":
            # sqlite:///relative.db → "relative.db"; sqlite:////abs/x.db → "/abs/x.db"
            path = url.split("://", 1)[1]
            if path.startswith("/"):
                path = path[1:]
            return cls(kind="sqlite", path=unquote(path))
        if scheme == "mysql":
            return cls(
                kind="mysql",
                host=parsed.hostname or "localhost",
                port=parsed.port or 3306,
                user=unquote(parsed.username) if parsed.username else None,
                password=unquote(parsed.password) if parsed.password else None,
                database=parsed.path.lstrip("/") or None,
            )
        raise ValueError(f"Unsupported source URL scheme '{parsed.scheme}'")

    def describe(self) -> str:
        """Credential-free label for logs."""
        if self.kind == "sqlite":
            return f"sqlite:{self.path}"
        return f"mysql:{self.host}:{self.port}/{self.database}"


class TargetDescriptor(BaseModel):
    """Contact points and keyspace of the wide-column target cluster."""
    nodes: list[str] = Field(default_factory=lambda: ["127.0.0.1"])
    port: int = Field(default=9042, ge=1, le=65535)
    keyspace: str = "music"
    replication_factor: int = Field(default=1, ge=1)
    username: Optional[str] = None
    password: Optional[str] = None
    connect_timeout: int = Field(default=10, ge=1)

    @field_validator("nodes")
    @classmethod
    def _nodes_not_empty(cls, value: list[str]) -> list[str]:
        nodes = [n.strip() for n in value if n and n.strip()]
        if not nodes:
            raise ValueError("at least one contact point is required")
        return nodes

    @field_validator("keyspace")
    @classmethod
    def _keyspace_is_identifier(cls, value: str) -> str:
        if not value or not value.replace("_", "").isalnum():
            raise ValueError(f"invalid keyspace name '{value}'")
        return value.lower()

    def describe(self) -> str:
        return f"{','.join(self.nodes)}:{self.port}/{self.keyspace}"
