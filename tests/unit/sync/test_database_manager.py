"""Tests for the SQLite DatabaseManager."""

import sqlite3

import pytest

from picqer_sync.sync.database import DatabaseManager


class TestDatabaseManager:
    def test_context_manager_connects_and_closes(self, temp_db):
        with DatabaseManager(temp_db) as db:
            assert db.conn is not None
        assert db.conn is None

    def test_execute_connects_lazily(self, temp_db):
        db = DatabaseManager(temp_db)
        db.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT)")
        assert db.table_exists("t")
        db.close()

    def test_introspection(self, db_manager):
        db_manager.execute("CREATE TABLE receipts (row_id INTEGER PRIMARY KEY, idreceipt INTEGER, status TEXT)")
        db_manager.execute("CREATE INDEX idx_receipts_status ON receipts(status)")

        assert db_manager.get_columns("receipts") == ["row_id", "idreceipt", "status"]
        assert db_manager.get_columns("missing") == []
        assert db_manager.index_exists("idx_receipts_status")
        assert not db_manager.index_exists("idx_receipts_idreceipt")
        assert not db_manager.table_exists("missing")

    def test_transaction_commits(self, db_manager):
        db_manager.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT)")

        with db_manager.transaction() as cursor:
            cursor.execute("INSERT INTO t (name) VALUES (?)", ("a",))
            cursor.execute("INSERT INTO t (name) VALUES (?)", ("b",))

        assert db_manager.count_rows("t") == 2

    def test_transaction_rolls_back_on_error(self, db_manager):
        db_manager.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT NOT NULL)")

        with pytest.raises(sqlite3.IntegrityError):
            with db_manager.transaction() as cursor:
                cursor.execute("INSERT INTO t (name) VALUES (?)", ("a",))
                cursor.execute("INSERT INTO t (name) VALUES (?)", (None,))

        assert db_manager.count_rows("t") == 0
