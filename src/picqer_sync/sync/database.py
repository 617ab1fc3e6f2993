"""SQLite database manager for sync operations."""

import sqlite3
from contextlib import contextmanager
from typing import Optional


class DatabaseManager:
    """Manages the SQLite connection shared by the sync components."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None

    def connect(self):
        """Establish database connection."""
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        """Context manager entry - establish connection."""
        if not self.conn:
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close connection."""
        self.close()
        return False

    def execute(self, sql: str, params: Optional[tuple] = None) -> sqlite3.Cursor:
        """Execute SQL statement and commit."""
        if not self.conn:
            self.connect()
        cursor = self.conn.cursor()
        if params:
            cursor.execute(sql, params)
        else:
            cursor.execute(sql)
        self.conn.commit()
        return cursor

    def query(self, sql: str, params: Optional[tuple] = None) -> list[sqlite3.Row]:
        """Run a read-only query and return all rows."""
        if not self.conn:
            self.connect()
        cursor = self.conn.cursor()
        cursor.execute(sql, params or ())
        return cursor.fetchall()

    @contextmanager
    def transaction(self):
        """
        Run several statements as one unit.

        Yields a cursor; commits on normal exit, rolls back and re-raises on error.
        """
        if not self.conn:
            self.connect()
        cursor = self.conn.cursor()
        try:
            yield cursor
        except BaseException:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()

    def table_exists(self, table_name: str) -> bool:
        """Check if table exists."""
        rows = self.query(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
            (table_name,),
        )
        return bool(rows)

    def index_exists(self, index_name: str) -> bool:
        """Check if index exists."""
        rows = self.query(
            "SELECT name FROM sqlite_master WHERE type='index' AND name=?",
            (index_name,),
        )
        return bool(rows)

    def get_columns(self, table_name: str) -> list[str]:
        """Column names of an existing table, in declaration order (empty if absent)."""
        rows = self.query(f"PRAGMA table_info({table_name})")
        return [row["name"] for row in rows]

    def count_rows(self, table_name: str) -> int:
        rows = self.query(f"SELECT COUNT(*) FROM {table_name}")  # noqa: S608 - table name from manifest
        return rows[0][0]
