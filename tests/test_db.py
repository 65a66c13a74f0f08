"""Tests for the SqliteDatabase connection layer."""

import os
import sqlite3

import pytest

from conftest import Property
from relstore.db import SqliteDatabase
from relstore.errors import StorageError, ValidationError


class TestOpen:

    def test_named_database_lives_in_base_dir(self, tmp_path):
        db = SqliteDatabase.named("Scratch")
        try:
            assert db.db_file_path == str(tmp_path / "relstore-data" / "Scratch.db")
            assert os.path.exists(db.db_file_path)
        finally:
            db.close()

    @pytest.mark.parametrize("name", ["", "../escape", "nested/name"])
    def test_named_rejects_paths(self, name):
        with pytest.raises(ValidationError):
            SqliteDatabase.named(name)

    def test_pragmas_applied(self, tmp_path):
        with SqliteDatabase(str(tmp_path / "p.db")) as db:
            assert db.query("PRAGMA journal_mode")[0][0] == "wal"
            assert db.query("PRAGMA foreign_keys")[0][0] == 1

    def test_journal_mode_option(self, tmp_path):
        with SqliteDatabase(str(tmp_path / "d.db"), journal_mode="delete", foreign_keys=False) as db:
            assert db.query("PRAGMA journal_mode")[0][0] == "delete"
            assert db.query("PRAGMA foreign_keys")[0][0] == 0

    def test_unknown_journal_mode(self, tmp_path):
        with pytest.raises(ValidationError):
            SqliteDatabase(str(tmp_path / "x.db"), journal_mode="fast")

    def test_in_memory(self):
        with SqliteDatabase(":memory:") as db:
            db.transact_ddl("CREATE TABLE t (id INTEGER PRIMARY KEY AUTOINCREMENT, v text)")
            assert db.table_names() == ["t"]

    def test_not_a_database_file(self, tmp_path):
        junk = tmp_path / "junk.db"
        junk.write_bytes(b"this is not a sqlite database\n" * 128)
        with pytest.raises(StorageError) as exc_info:
            SqliteDatabase(str(junk))
        assert isinstance(exc_info.value.__cause__, sqlite3.DatabaseError)


class TestTransactions:

    @pytest.fixture
    def mem_db(self):
        db = SqliteDatabase(":memory:")
        db.transact_ddl("CREATE TABLE t (id INTEGER PRIMARY KEY AUTOINCREMENT, v text UNIQUE)")
        yield db
        db.close()

    def test_commit_on_success(self, mem_db):
        with mem_db.transaction() as cursor:
            cursor.execute("INSERT INTO t (v) VALUES (?)", ("a",))
        assert mem_db.query("SELECT v FROM t")[0]["v"] == "a"
        assert mem_db.conn.in_transaction is False

    def test_rollback_on_driver_error(self, mem_db):
        with pytest.raises(StorageError) as exc_info:
            with mem_db.transaction() as cursor:
                cursor.execute("INSERT INTO t (v) VALUES (?)", ("a",))
                cursor.execute("INSERT INTO t (v) VALUES (?)", ("a",))
        assert isinstance(exc_info.value.__cause__, sqlite3.IntegrityError)
        assert mem_db.query("SELECT COUNT(*) FROM t")[0][0] == 0

    def test_rollback_on_other_exception(self, mem_db):
        with pytest.raises(RuntimeError):
            with mem_db.transaction() as cursor:
                cursor.execute("INSERT INTO t (v) VALUES (?)", ("a",))
                raise RuntimeError("boom")
        assert mem_db.query("SELECT COUNT(*) FROM t")[0][0] == 0
        assert mem_db.conn.in_transaction is False

    def test_cursor_closed_after_block(self, mem_db):
        with mem_db.transaction() as cursor:
            pass
        with pytest.raises(sqlite3.ProgrammingError):
            cursor.execute("SELECT 1")

    def test_execute_returns_rowcount(self, mem_db):
        mem_db.execute("INSERT INTO t (v) VALUES (?)", ("a",))
        mem_db.execute("INSERT INTO t (v) VALUES (?)", ("b",))
        assert mem_db.execute("UPDATE t SET v = v || '!'") == 2

    def test_query_error_is_storage_error(self, mem_db):
        with pytest.raises(StorageError):
            mem_db.query("SELECT * FROM missing")


class TestSchemaHelpers:

    def test_transact_ddl_multiple_statements(self, db):
        db.transact_ddl(
            "CREATE TABLE a (id INTEGER PRIMARY KEY AUTOINCREMENT);\n"
            "CREATE TABLE b (id INTEGER PRIMARY KEY AUTOINCREMENT, a_id INTEGER REFERENCES a(id));\n"
        )
        assert {"a", "b"} <= set(db.table_names())

    def test_transact_ddl_is_atomic(self, db):
        with pytest.raises(StorageError):
            db.transact_ddl(
                "CREATE TABLE good (id INTEGER PRIMARY KEY);\n"
                "CREATE TABLE Property (id INTEGER PRIMARY KEY);\n"
            )
        assert not db.table_exists("good")

    def test_try_drop_table(self, db):
        assert db.try_drop_table("Property") is True
        assert db.try_drop_table("Property") is False
        assert not db.table_exists("Property")

    def test_table_exists_ignores_case(self, db):
        assert db.table_exists("property")

    def test_table_columns(self, db):
        assert db.table_columns("Property") == ["Id", "Name", "Address"]

    def test_table_names_hide_internal_tables(self, db, property_store):
        property_store.add(Property(name="x"))
        assert db.table_names() == ["Property"]

    def test_uses_autoincrement(self, db):
        db.transact_ddl("CREATE TABLE plain (id INTEGER PRIMARY KEY)")
        assert db.uses_autoincrement("Property") is True
        assert db.uses_autoincrement("plain") is False
        assert db.uses_autoincrement("missing") is False
