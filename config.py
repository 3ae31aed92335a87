"""
config.py
---------
Centralised configuration management for the SQLite → Scylla migration tool.

Loads settings from environment variables (with .env file support via
python-dotenv). Provides typed settings as frozen dataclasses so
configuration is immutable at runtime.

Design Decision:
    Using a dataclass with class-level defaults means the tool works
    "out of the box" against a local ``chinook.db`` and a single local
    Scylla node, while still allowing environment-based overrides.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from models.policy import RowErrorPolicy, UnsupportedTypePolicy

_env_path = Path(__file__).parent / ".env"
if _env_path.exists():
    load_dotenv(dotenv_path=_env_path)


def _optional_int(name: str) -> int | None:
    raw = os.getenv(name)
    return int(raw) if raw else None


@dataclass(frozen=True)
class SourceConfig:
    """Where rows are read from."""
    # A bare path is a SQLite file; sqlite:///… and mysql://… URLs are also accepted.
    url: str = field(default_factory=lambda: os.getenv("SOURCE_URL", "chinook.db"))


@dataclass(frozen=True)
class TargetConfig:
    """Scylla / Cassandra cluster settings."""
    nodes: tuple[str, ...] = field(
        default_factory=lambda: tuple(
            n.strip() for n in os.getenv("SCYLLA_NODES", "127.0.0.1").split(",") if n.strip()
        )
    )
    port: int = field(default_factory=lambda: int(os.getenv("SCYLLA_PORT", "9042")))
    keyspace: str = field(default_factory=lambda: os.getenv("SCYLLA_KEYSPACE", "music"))
    replication_factor: int = field(
        default_factory=lambda: int(os.getenv("SCYLLA_REPLICATION_FACTOR", "1"))
    )
    connect_timeout: int = field(
        default_factory=lambda: int(os.getenv("SCYLLA_CONNECT_TIMEOUT", "10"))
    )
    # Credentials are optional; most local nodes run without authentication.
    username: str | None = field(default_factory=lambda: os.getenv("SCYLLA_USERNAME"))
    password: str | None = field(default_factory=lambda: os.getenv("SCYLLA_PASSWORD"))


@dataclass(frozen=True)
class MigrationConfig:
    """Migration engine settings."""
    batch_size: int = field(
        default_factory=lambda: int(os.getenv("MIGRATION_BATCH_SIZE", "100"))
    )
    max_batch_bytes: int | None = field(
        default_factory=lambda: _optional_int("MIGRATION_MAX_BATCH_BYTES")
    )
    batch_retries: int = field(
        default_factory=lambda: int(os.getenv("MIGRATION_BATCH_RETRIES", "3"))
    )
    retry_backoff: float = field(
        default_factory=lambda: float(os.getenv("MIGRATION_RETRY_BACKOFF", "0.5"))
    )
    row_error_policy: RowErrorPolicy = field(
        default_factory=lambda: RowErrorPolicy(
            os.getenv("MIGRATION_ROW_ERROR_POLICY", RowErrorPolicy.ABORT_TABLE.value).lower()
        )
    )
    unsupported_type_policy: UnsupportedTypePolicy = field(
        default_factory=lambda: UnsupportedTypePolicy(
            os.getenv(
                "MIGRATION_UNSUPPORTED_TYPE_POLICY", UnsupportedTypePolicy.ABORT_TABLE.value
            ).lower()
        )
    )
    max_workers: int = field(
        default_factory=lambda: int(os.getenv("MIGRATION_MAX_WORKERS", "1"))
    )
    key_columns: int = field(
        default_factory=lambda: int(os.getenv("MIGRATION_KEY_COLUMNS", "1"))
    )
    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper()
    )
    log_file: str | None = field(
        default_factory=lambda: os.getenv("LOG_FILE")  # None → log to stderr only
    )


@dataclass(frozen=True)
class AppConfig:
    """Root application configuration."""
    source: SourceConfig = field(default_factory=SourceConfig)
    target: TargetConfig = field(default_factory=TargetConfig)
    migration: MigrationConfig = field(default_factory=MigrationConfig)
    app_name: str = "sqlite2scylla"
    app_version: str = "1.0.0"


def load_config() -> AppConfig:
    """
    Build and return the application configuration.

    Returns:
        AppConfig: Fully populated (and frozen) configuration object.

    Example::

        cfg = load_config()
        print(cfg.target.keyspace)        # "music"
        print(cfg.migration.batch_size)   # 100
    """
    return AppConfig()


# Module-level singleton used throughout the application
CONFIG: AppConfig = load_config()


def get_log_level() -> int:
    """Convert string log level from config to logging module constant."""
    level = getattr(logging, CONFIG.migration.log_level, None)
    if not isinstance(level, int):
        return logging.INFO
    return level
