"""Natural-key upserts of upstream records and their child collections."""

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Optional

from ..errors import RecordError
from ..timestamps import format_timestamp, utc_now
from ..type_mapping import LAST_SYNC_COLUMN, EntityManifest, TableManifest, coerce_value, get_nested_value
from .database import DatabaseManager

logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    """Outcome of writing one top-level record."""

    is_new: bool
    children_saved: int = 0
    children_failed: int = 0


class UpsertWriter:
    """
    Writes upstream records into their manifest tables.

    Each row is matched on its natural key: an existing row is updated in
    place, otherwise a new row is inserted and the store assigns the
    surrogate key. Rows are never deleted.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def map_record(self, table: TableManifest, record: dict, parent_key: Any = None) -> dict[str, Any]:
        """
        Map an upstream record to column values for a table.

        Missing values become None. When parent_key is given it fills the
        table's parent reference column.

        Raises:
            RecordError: If the record is not an object, lacks its natural key
                or holds a value that cannot be stored as the declared type
        """
        if not isinstance(record, dict):
            msg = f"Expected an object for {table.table_name}, got {type(record).__name__}"
            raise RecordError(msg)

        values = {}
        for column in table.columns:
            if column.name == table.parent_key and parent_key is not None:
                raw = parent_key
            else:
                raw = get_nested_value(record, column.source_path)
            try:
                values[column.name] = coerce_value(raw, column.type)
            except (TypeError, ValueError) as e:
                msg = f"Invalid value for {table.table_name}.{column.name}: {e}"
                raise RecordError(msg) from e

        if table.natural_key and values.get(table.natural_key) is None:
            msg = f"Record for {table.table_name} has no natural key '{table.natural_key}'"
            raise RecordError(msg)

        return values

    def save(self, table: TableManifest, record: dict, parent_key: Any = None) -> bool:
        """
        Insert or update one row.

        Args:
            table: Target table manifest
            record: Upstream record
            parent_key: Parent's natural key, for child tables

        Returns:
            True if a new row was inserted, False if an existing row was updated

        Raises:
            RecordError: If the record cannot be mapped or written
        """
        values = self.map_record(table, record, parent_key)
        if table.track_sync_date:
            values[LAST_SYNC_COLUMN] = format_timestamp(utc_now())

        key_column = table.natural_key
        key_value = values[key_column]
        columns = list(values.keys())

        try:
            with self.db.transaction() as cursor:
                # S608: SQL safe - table/column names from manifest, values parameterized
                cursor.execute(
                    f"SELECT {table.surrogate_key} FROM {table.table_name} WHERE {key_column} = ?",  # noqa: S608 - table/column names from manifest, values parameterized
                    (key_value,),
                )
                existing = cursor.fetchone()

                if existing is None:
                    placeholders = ",".join(["?" for _ in columns])
                    sql = f"INSERT INTO {table.table_name} ({','.join(columns)}) VALUES ({placeholders})"  # noqa: S608 - table/column names from manifest, values parameterized
                    cursor.execute(sql, tuple(values[col] for col in columns))
                    return True

                assignments = ", ".join(f"{col} = ?" for col in columns)
                sql = f"UPDATE {table.table_name} SET {assignments} WHERE {table.surrogate_key} = ?"  # noqa: S608 - table/column names from manifest, values parameterized
                cursor.execute(sql, (*(values[col] for col in columns), existing[0]))
                return False

        except (sqlite3.Error, OverflowError) as e:
            msg = f"Failed to write {table.table_name} {key_column}={key_value}: {e}"
            raise RecordError(msg) from e

    def save_record(self, entity: EntityManifest, record: dict) -> WriteResult:
        """
        Write a top-level record, then each of its child records.

        Children are only written once the parent succeeded. A failing child
        is logged and counted; it does not stop its siblings or undo the parent.

        Raises:
            RecordError: If the top-level record cannot be written
        """
        is_new = self.save(entity.table, record)
        result = WriteResult(is_new=is_new)

        parent_value = self.map_record(entity.table, record)[entity.natural_key]

        for child in entity.children:
            items = record.get(child.source)
            if items is None:
                continue
            if not isinstance(items, list):
                logger.warning(
                    "%s %s: '%s' is not a list, skipping children",
                    entity.name,
                    parent_value,
                    child.source,
                )
                result.children_failed += 1
                continue

            for item in items:
                try:
                    self.save(child.table, item, parent_key=parent_value)
                    result.children_saved += 1
                except RecordError as e:
                    result.children_failed += 1
                    logger.warning("Failed to save %s child of %s %s: %s", child.source, entity.name, parent_value, e)

        return result

    def find(self, table: TableManifest, key_value: Any) -> Optional[dict]:
        """Current row for a natural key, None if absent."""
        rows = self.db.query(
            f"SELECT * FROM {table.table_name} WHERE {table.natural_key} = ?",  # noqa: S608 - table/column names from manifest, values parameterized
            (key_value,),
        )
        return dict(rows[0]) if rows else None
