"""
tests/test_orchestrator.py
--------------------------
End-to-end tests for migrator/orchestrator.py: a real SQLite source, an
in-memory target.
Run with: python -m pytest tests/
"""
from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from config import MigrationConfig
from migrator.errors import SchemaReadError, StoreError
from migrator.orchestrator import MigrationOrchestrator
from migrator.sources import SQLiteSource
from migrator.type_mapper import DEFAULT_TYPE_MAP, TypeMapper
from models.policy import RowErrorPolicy, UnsupportedTypePolicy
from models.task import TaskState

ARTISTS = """
CREATE TABLE artists (id INTEGER PRIMARY KEY, name TEXT);
INSERT INTO artists VALUES (1, 'A'), (2, 'B');
"""


def _no_sleep(_: float) -> None:
    pass


def _orchestrator(source, target, **kwargs) -> MigrationOrchestrator:
    kwargs.setdefault("sleep", _no_sleep)
    return MigrationOrchestrator(source, target, keyspace="music", **kwargs)


def _by_key(target, table: str, key: str) -> dict:
    return {row[key]: row for row in target.rows[f"music.{table}"]}


class TestSingleTable:
    def test_artists_in_two_batches(self, make_db, fake_target) -> None:
        with SQLiteSource(make_db(ARTISTS)) as source:
            report = _orchestrator(source, fake_target, batch_size=1).run()

        task = report.tasks[0]
        assert task.state == TaskState.DATA_MIGRATED
        assert (task.rows_read, task.rows_written, task.batches) == (2, 2, 2)
        assert [rows for _, rows in fake_target.batches] == [[(1, "A")], [(2, "B")]]
        assert report.exit_code == 0

    def test_creates_keyspace_then_table(self, make_db, fake_target) -> None:
        with SQLiteSource(make_db(ARTISTS)) as source:
            _orchestrator(source, fake_target, replication_factor=3).run()
        first, second = fake_target.schema_statements
        assert first.startswith("CREATE KEYSPACE IF NOT EXISTS music")
        assert "'replication_factor': 3" in first
        assert second.startswith("CREATE TABLE IF NOT EXISTS music.artists")

    def test_empty_table(self, make_db, fake_target) -> None:
        path = make_db("CREATE TABLE empty (id INTEGER PRIMARY KEY, v TEXT);")
        with SQLiteSource(path) as source:
            task = _orchestrator(source, fake_target).run().tasks[0]
        assert task.state == TaskState.DATA_MIGRATED
        assert task.batches == 0
        assert "music.empty" in fake_target.tables

    def test_rerun_is_idempotent(self, make_db, fake_target) -> None:
        path = make_db(ARTISTS)
        for _ in range(2):
            with SQLiteSource(path) as source:
                report = _orchestrator(source, fake_target).run()
            assert report.exit_code == 0
        assert list(fake_target.tables) == ["music.artists"]
        assert _by_key(fake_target, "artists", "id") == {
            1: {"id": 1, "name": "A"},
            2: {"id": 2, "name": "B"},
        }

    def test_values_land_in_their_own_columns(self, make_db, fake_target) -> None:
        path = make_db(
            "CREATE TABLE wide (k INTEGER PRIMARY KEY, a INTEGER, b TEXT, c REAL,"
            " d NUMERIC(10,2), e DATETIME, f BLOB);"
            "INSERT INTO wide VALUES (1, 11, 'bee', 3.5, 4.25, '2020-05-06 07:08:09', X'0A0B');"
            "INSERT INTO wide VALUES (2, NULL, NULL, NULL, NULL, NULL, NULL);"
        )
        with SQLiteSource(path) as source:
            report = _orchestrator(source, fake_target).run()
        assert report.exit_code == 0

        rows = _by_key(fake_target, "wide", "k")
        assert rows[1] == {
            "k": 1, "a": 11, "b": "bee", "c": 3.5, "d": Decimal("4.25"),
            "e": dt.datetime(2020, 5, 6, 7, 8, 9), "f": b"\x0a\x0b",
        }
        assert rows[2] == {"k": 2, "a": None, "b": None, "c": None, "d": None, "e": None, "f": None}

    def test_camel_case_names_are_snake_cased(self, chinook_source, fake_target) -> None:
        _orchestrator(chinook_source, fake_target, tables=["Album"]).run()
        assert "music.album" in fake_target.tables
        row = _by_key(fake_target, "album", "album_id")[1]
        assert row == {"album_id": 1, "title": "For Those About To Rock", "artist_id": 1}

    def test_composite_key(self, chinook_source, fake_target) -> None:
        _orchestrator(chinook_source, fake_target, tables=["PlaylistTrack"]).run()
        cql = fake_target.tables["music.playlist_track"]
        assert "PRIMARY KEY ((playlist_id), track_id)" in cql


class TestFailureIsolation:
    def test_unmapped_type_fails_only_its_table(self, make_db, fake_target) -> None:
        path = make_db(
            "CREATE TABLE a (id INTEGER PRIMARY KEY, price DECIMAL(10,2));"
            "CREATE TABLE b (id INTEGER PRIMARY KEY, name TEXT);"
            "INSERT INTO a VALUES (1, 9.99);"
            "INSERT INTO b VALUES (1, 'x');"
        )
        mapping = {k: v for k, v in DEFAULT_TYPE_MAP.items() if v != "decimal"}
        with SQLiteSource(path) as source:
            report = _orchestrator(source, fake_target, type_mapper=TypeMapper(mapping)).run()

        a, b = report.tasks
        assert a.state == TaskState.FAILED
        assert a.error_kind == "UnsupportedTypeError"
        assert "price" in a.error_detail
        assert "music.a" not in fake_target.tables
        assert b.state == TaskState.DATA_MIGRATED
        assert report.exit_code == 1

    def test_text_fallback_keeps_table(self, make_db, fake_target) -> None:
        path = make_db(
            "CREATE TABLE g (id INTEGER PRIMARY KEY, shape GEOMETRY);"
            "INSERT INTO g VALUES (1, 'POINT(1 2)');"
        )
        mapper = TypeMapper.for_policy(UnsupportedTypePolicy.FALLBACK_TEXT)
        with SQLiteSource(path) as source:
            report = _orchestrator(source, fake_target, type_mapper=mapper).run()
        assert report.tasks[0].state == TaskState.DATA_MIGRATED
        assert "shape text" in fake_target.tables["music.g"]

    def test_schema_rejection_fails_only_its_table(self, chinook_source, fake_target) -> None:
        fake_target.fail_schema_for.add("album")
        report = _orchestrator(chinook_source, fake_target).run()
        states = {t.table_name: t.state for t in report.tasks}
        assert states["Album"] == TaskState.FAILED
        assert report.tasks[0].error_kind == "SchemaWriteError"
        assert states["Artist"] == TaskState.DATA_MIGRATED
        assert states["Invoice"] == TaskState.DATA_MIGRATED
        assert states["PlaylistTrack"] == TaskState.DATA_MIGRATED

    def test_batch_failure_reports_committed_rows(self, chinook_source, fake_target) -> None:
        fake_target.fail_batches_for.add("artist")
        report = _orchestrator(chinook_source, fake_target, batch_retries=1).run()
        artist = next(t for t in report.tasks if t.table_name == "Artist")
        assert artist.state == TaskState.FAILED
        assert artist.error_kind == "BatchWriteError"
        assert artist.rows_written == 0
        assert len(report.succeeded) == 3

    def test_tables_sharing_a_target_name(self, make_db, fake_target) -> None:
        path = make_db(
            "CREATE TABLE AlbumTrack (id INTEGER PRIMARY KEY, v TEXT);"
            "CREATE TABLE album_track (id INTEGER PRIMARY KEY, v TEXT);"
            "INSERT INTO AlbumTrack VALUES (1, 'first');"
            "INSERT INTO album_track VALUES (1, 'second');"
        )
        with SQLiteSource(path) as source:
            report = _orchestrator(source, fake_target, max_workers=2).run()
        first, second = report.tasks
        assert (first.table_name, first.state) == ("AlbumTrack", TaskState.DATA_MIGRATED)
        assert (second.table_name, second.state) == ("album_track", TaskState.FAILED)
        assert second.error_kind == "SchemaWriteError"
        assert "AlbumTrack" in second.error_detail
        assert _by_key(fake_target, "album_track", "id") == {1: {"id": 1, "v": "first"}}

    def test_missing_source_table_is_fatal(self, chinook_source, fake_target) -> None:
        with pytest.raises(SchemaReadError):
            _orchestrator(chinook_source, fake_target, tables=["Ghost"]).run()
        assert fake_target.schema_statements == []

    def test_keyspace_failure_fails_every_table(self, chinook_source, fake_target, monkeypatch) -> None:
        def reject(cql: str) -> None:
            raise StoreError("Unauthorized")

        monkeypatch.setattr(fake_target, "execute_schema", reject)
        report = _orchestrator(chinook_source, fake_target).run()
        assert len(report.tasks) == 4
        assert all(t.state == TaskState.FAILED for t in report.tasks)
        assert {t.error_kind for t in report.tasks} == {"SchemaWriteError"}


class TestBadRows:
    SCRIPT = (
        "CREATE TABLE t (id INTEGER PRIMARY KEY, n INTEGER);"
        "INSERT INTO t VALUES (1, 10), (2, 'oops'), (3, 30), (4, 40);"
    )

    def test_abort_policy_fails_table(self, make_db, fake_target) -> None:
        with SQLiteSource(make_db(self.SCRIPT)) as source:
            task = _orchestrator(source, fake_target, batch_size=1).run().tasks[0]
        assert task.state == TaskState.FAILED
        assert task.error_kind == "RowReadError"
        assert "row 1" in task.error_detail
        assert task.rows_written == 1

    def test_skip_policy_accounts_for_every_row(self, make_db, fake_target) -> None:
        with SQLiteSource(make_db(self.SCRIPT)) as source:
            task = _orchestrator(
                source, fake_target, row_error_policy=RowErrorPolicy.SKIP_ROW
            ).run().tasks[0]
        assert task.state == TaskState.DATA_MIGRATED
        assert task.rows_read == 4
        assert task.rows_skipped == 1
        assert task.rows_written == task.rows_read - task.rows_skipped
        assert sorted(_by_key(fake_target, "t", "id")) == [1, 3, 4]


class TestRunControl:
    def test_report_keeps_introspection_order_with_workers(self, chinook_source, fake_target) -> None:
        report = _orchestrator(chinook_source, fake_target, max_workers=2).run()
        assert [t.table_name for t in report.tasks] == ["Album", "Artist", "Invoice", "PlaylistTrack"]
        assert report.exit_code == 0
        assert report.total_rows == 2 + 3 + 2 + 3

    def test_cancel_before_run(self, chinook_source, fake_target) -> None:
        orchestrator = _orchestrator(chinook_source, fake_target)
        orchestrator.cancel()
        report = orchestrator.run()
        assert orchestrator.cancelled
        assert {t.error_kind for t in report.tasks} == {"Cancelled"}
        assert fake_target.batches == []
        assert report.exit_code == 1

    def test_cancel_during_run_stops_after_current_batch(self, chinook_source, fake_target) -> None:
        orchestrator = _orchestrator(
            chinook_source, fake_target, batch_size=1,
            progress_cb=lambda *_: orchestrator.cancel(),
        )
        report = orchestrator.run()
        assert len(fake_target.batches) == 1
        assert all(t.state == TaskState.FAILED for t in report.tasks)

    def test_invalid_worker_count(self, chinook_source, fake_target) -> None:
        with pytest.raises(ValueError):
            _orchestrator(chinook_source, fake_target, max_workers=0)

    def test_from_config(self, make_db, fake_target) -> None:
        settings = MigrationConfig(
            batch_size=1,
            max_batch_bytes=None,
            batch_retries=0,
            retry_backoff=0.0,
            row_error_policy=RowErrorPolicy.ABORT_TABLE,
            unsupported_type_policy=UnsupportedTypePolicy.ABORT_TABLE,
            max_workers=1,
            key_columns=1,
        )
        with SQLiteSource(make_db(ARTISTS)) as source:
            orchestrator = MigrationOrchestrator.from_config(
                source, fake_target, keyspace="music", settings=settings, sleep=_no_sleep
            )
            report = orchestrator.run()
        assert report.tasks[0].batches == 2

    def test_keyless_table_uses_leading_column(self, make_db, fake_target) -> None:
        path = make_db("CREATE TABLE log (ts TEXT, msg TEXT); INSERT INTO log VALUES ('t1', 'hi');")
        with SQLiteSource(path) as source:
            report = _orchestrator(source, fake_target).run()
        assert report.exit_code == 0
        assert "PRIMARY KEY ((ts))" in fake_target.tables["music.log"]


class TestNullKeys:
    SCRIPT = (
        "CREATE TABLE notes (tag TEXT, body TEXT);"
        "INSERT INTO notes VALUES ('a', 'x'), (NULL, 'y'), ('c', 'z');"
    )

    def test_skip_policy_keeps_neighbours_of_null_key_row(self, make_db, fake_target) -> None:
        with SQLiteSource(make_db(self.SCRIPT)) as source:
            task = _orchestrator(
                source, fake_target, row_error_policy=RowErrorPolicy.SKIP_ROW
            ).run().tasks[0]
        assert task.state == TaskState.DATA_MIGRATED
        assert task.rows_skipped == 1
        assert sorted(_by_key(fake_target, "notes", "tag")) == ["a", "c"]

    def test_abort_policy_names_key_column(self, make_db, fake_target) -> None:
        with SQLiteSource(make_db(self.SCRIPT)) as source:
            task = _orchestrator(source, fake_target).run().tasks[0]
        assert task.state == TaskState.FAILED
        assert task.error_kind == "RowReadError"
        assert task.error.column == "tag"
