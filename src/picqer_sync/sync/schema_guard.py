"""Self-healing table creation driven by entity manifests."""

import logging
import sqlite3
from dataclasses import dataclass, field

from ..errors import SchemaError
from ..type_mapping import LAST_SYNC_COLUMN, ColumnDefinition, EntityManifest, IndexDefinition, TableManifest
from .database import DatabaseManager

logger = logging.getLogger(__name__)

SYNC_STATE_TABLE = "_sync_state"
SYNC_PROGRESS_TABLE = "_sync_progress"

# SQLite rejects ALTER TABLE ADD COLUMN with these defaults
NON_CONSTANT_DEFAULTS = ("CURRENT_TIMESTAMP", "CURRENT_DATE", "CURRENT_TIME")

SYNC_STATE_MANIFEST = TableManifest(
    table_name=SYNC_STATE_TABLE,
    natural_key="entity_type",
    columns=[
        ColumnDefinition("entity_type", "string", nullable=False),
        ColumnDefinition("watermark", "datetime"),
        ColumnDefinition("last_sync_time", "datetime"),
        ColumnDefinition("last_count", "integer", default="0"),
        ColumnDefinition("last_status", "string"),
    ],
    surrogate_key="id",
    track_sync_date=False,
)

SYNC_PROGRESS_MANIFEST = TableManifest(
    table_name=SYNC_PROGRESS_TABLE,
    natural_key="run_id",
    columns=[
        ColumnDefinition("run_id", "string", nullable=False),
        ColumnDefinition("entity_type", "string", nullable=False),
        ColumnDefinition("status", "string", nullable=False, default="'in_progress'"),
        ColumnDefinition("started_at", "datetime", nullable=False, default="CURRENT_TIMESTAMP"),
        ColumnDefinition("ended_at", "datetime"),
        ColumnDefinition("item_count", "integer", default="0"),
        ColumnDefinition("items_failed", "integer", default="0"),
        ColumnDefinition("degraded", "boolean", default="0"),
        ColumnDefinition("window_start", "datetime"),
        ColumnDefinition("error_message", "text"),
    ],
    indexes=[IndexDefinition("idx__sync_progress_entity_type_started_at", ["entity_type", "started_at"])],
    surrogate_key="id",
    track_sync_date=False,
)


@dataclass
class SchemaReport:
    """What an ensure() call changed."""

    tables_created: list[str] = field(default_factory=list)
    columns_added: list[str] = field(default_factory=list)  # "table.column"
    indexes_created: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.tables_created or self.columns_added or self.indexes_created)

    def summary(self) -> str:
        return (
            f"{len(self.tables_created)} tables created, "
            f"{len(self.columns_added)} columns added, "
            f"{len(self.indexes_created)} indexes created"
        )


def generate_create_table_sql(table: TableManifest) -> str:
    """
    Generate CREATE TABLE SQL for a manifest table.

    Surrogate key first, then declared columns, then last_sync_date
    for synced tables.
    """
    column_defs = [f"  {table.surrogate_key} INTEGER PRIMARY KEY AUTOINCREMENT"]
    column_defs.extend(f"  {col.definition_sql()}" for col in table.columns)
    if table.track_sync_date and LAST_SYNC_COLUMN not in table.column_names:
        column_defs.append(f"  {LAST_SYNC_COLUMN} TEXT")

    return f"CREATE TABLE {table.table_name} (\n" + ",\n".join(column_defs) + "\n)"


def generate_add_column_sql(table_name: str, column: ColumnDefinition) -> str:
    """
    Generate ALTER TABLE ADD COLUMN SQL.

    SQLite cannot add a NOT NULL column without a default, nor a column with a
    non-constant default, so those constraints are relaxed here.
    """
    relaxed = ColumnDefinition(
        name=column.name,
        type=column.type,
        source=column.source,
        nullable=column.nullable,
        default=column.default,
    )
    if relaxed.default is not None and relaxed.default.upper() in NON_CONSTANT_DEFAULTS:
        relaxed.default = None
    if not relaxed.nullable and relaxed.default is None:
        logger.warning(
            "Adding NOT NULL column %s.%s as nullable (no default available)",
            table_name,
            column.name,
        )
        relaxed.nullable = True
    return f"ALTER TABLE {table_name} ADD COLUMN {relaxed.definition_sql()}"


def generate_create_index_sql(table_name: str, index: IndexDefinition) -> str:
    unique = "UNIQUE " if index.is_unique else ""
    return f"CREATE {unique}INDEX {index.name} ON {table_name}({', '.join(index.columns)})"


class SchemaGuard:
    """
    Ensures tables, columns and indexes described by manifests exist.

    Only additive changes are made: missing tables are created, missing
    columns added and missing indexes created. Existing columns are never
    dropped or retyped. Every DDL statement is preceded by an existence
    check, so ensuring an up-to-date schema issues no DDL at all.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def ensure(self, manifest: EntityManifest) -> SchemaReport:
        """
        Ensure the parent and child tables of an entity exist with all columns and indexes.

        Raises:
            SchemaError: If the storage shape could not be created
        """
        return self.ensure_tables(manifest.tables(), context=manifest.name)

    def ensure_sync_tables(self) -> SchemaReport:
        """Ensure the bookkeeping tables (_sync_state, _sync_progress) exist."""
        return self.ensure_tables([SYNC_STATE_MANIFEST, SYNC_PROGRESS_MANIFEST], context="sync bookkeeping")

    def ensure_tables(self, tables: list[TableManifest], context: str = "") -> SchemaReport:
        report = SchemaReport()
        try:
            for table in tables:
                self._ensure_table(table, report)
        except sqlite3.Error as e:
            msg = f"Failed to ensure schema for {context or 'tables'}: {e}"
            raise SchemaError(msg) from e

        if report.changed:
            logger.info("Schema for %s: %s", context or "tables", report.summary())
        return report

    def _ensure_table(self, table: TableManifest, report: SchemaReport):
        if not self.db.table_exists(table.table_name):
            self.db.execute(generate_create_table_sql(table))
            report.tables_created.append(table.table_name)
            logger.info("Created table %s", table.table_name)
        else:
            self._add_missing_columns(table, report)

        for index in table.required_indexes():
            if self.db.index_exists(index.name):
                continue
            self.db.execute(generate_create_index_sql(table.table_name, index))
            report.indexes_created.append(index.name)

    def _add_missing_columns(self, table: TableManifest, report: SchemaReport):
        existing = set(self.db.get_columns(table.table_name))

        if table.surrogate_key not in existing:
            # A primary key cannot be added to an existing SQLite table
            logger.warning(
                "Table %s has no surrogate key column %s; leaving as is",
                table.table_name,
                table.surrogate_key,
            )

        wanted = list(table.columns)
        if table.track_sync_date and LAST_SYNC_COLUMN not in table.column_names:
            wanted.append(ColumnDefinition(LAST_SYNC_COLUMN, "datetime"))

        for column in wanted:
            if column.name in existing:
                continue
            self.db.execute(generate_add_column_sql(table.table_name, column))
            report.columns_added.append(f"{table.table_name}.{column.name}")
            logger.info("Added column %s.%s", table.table_name, column.name)
