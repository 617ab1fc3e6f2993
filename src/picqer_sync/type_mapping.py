"""Manifest data structures and value mapping for Picqer entities."""

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional

# Column added to every synced table, stamped on each write
LAST_SYNC_COLUMN = "last_sync_date"

# Columns that get a secondary index whenever a table declares them
COMMONLY_FILTERED_COLUMNS = ("status",)


@dataclass
class ColumnDefinition:
    """Declared column of a synced table."""

    name: str
    type: str = "string"
    source: Optional[str] = None  # Dotted path in the upstream record, defaults to name
    nullable: bool = True
    default: Optional[str] = None  # SQL literal, e.g. "0" or "CURRENT_TIMESTAMP"

    @property
    def db_type(self) -> str:
        return map_type_to_db(self.type)

    @property
    def source_path(self) -> str:
        return self.source or self.name

    def definition_sql(self) -> str:
        """Column definition as used in CREATE TABLE / ADD COLUMN."""
        sql = f"{self.name} {self.db_type}"
        if not self.nullable:
            sql += " NOT NULL"
        if self.default is not None:
            sql += f" DEFAULT {self.default}"
        return sql


@dataclass
class IndexDefinition:
    """Secondary index on a synced table."""

    name: str
    columns: list[str]
    is_unique: bool = False


@dataclass
class TableManifest:
    """Complete storage shape for one table."""

    table_name: str
    natural_key: Optional[str] = None
    columns: list[ColumnDefinition] = field(default_factory=list)
    parent_key: Optional[str] = None  # Column holding the parent's natural key
    indexes: list[IndexDefinition] = field(default_factory=list)
    surrogate_key: str = "row_id"
    track_sync_date: bool = True

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def get_column(self, name: str) -> Optional[ColumnDefinition]:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def required_indexes(self) -> list[IndexDefinition]:
        """
        Declared indexes plus the ones every synced table needs.

        Natural key (unique), parent foreign key, status and the
        last_sync_date watermark column are indexed when present.
        """
        indexes = list(self.indexes)
        seen = {tuple(idx.columns) for idx in indexes}

        def add(column: str, unique: bool = False):
            if (column,) in seen:
                return
            seen.add((column,))
            indexes.append(IndexDefinition(f"idx_{self.table_name}_{column}", [column], unique))

        if self.natural_key:
            add(self.natural_key, unique=True)
        if self.parent_key:
            add(self.parent_key)
        for column in COMMONLY_FILTERED_COLUMNS:
            if column in self.column_names:
                add(column)
        if self.track_sync_date:
            add(LAST_SYNC_COLUMN)

        return indexes


@dataclass
class ChildCollection:
    """Nested collection inside an upstream record stored in its own table."""

    source: str  # Key in the parent record, e.g. 'products'
    table: TableManifest


@dataclass
class EntityManifest:
    """Sync configuration for one upstream entity type."""

    name: str  # Entity type, e.g. 'receipts'
    endpoint: str  # API path relative to the base URL, e.g. 'picklists/batches'
    table: TableManifest
    updated_filter: Optional[str] = None  # Query parameter for incremental sync
    children: list[ChildCollection] = field(default_factory=list)
    description: str = ""

    @property
    def natural_key(self) -> str:
        return self.table.natural_key

    @property
    def supports_incremental(self) -> bool:
        return self.updated_filter is not None

    def tables(self) -> list[TableManifest]:
        """Parent table first, then child tables."""
        return [self.table] + [child.table for child in self.children]


# Logical manifest type to SQLite type mapping
TYPE_MAP_SQLITE = {
    "integer": "INTEGER",
    "number": "REAL",
    "boolean": "INTEGER",
    "string": "TEXT",
    "text": "TEXT",
    "datetime": "TEXT",
    "json": "TEXT",
}


def map_type_to_db(logical_type: str) -> str:
    """
    Map a manifest column type to a SQLite column type.

    Raises:
        ValueError: If the type is not a known manifest type
    """
    try:
        return TYPE_MAP_SQLITE[logical_type.lower()]
    except KeyError:
        msg = f"Unsupported column type: {logical_type}"
        raise ValueError(msg) from None


def get_nested_value(record: dict, path: str) -> Any:
    """Resolve a dotted path ('supplier.idsupplier') in a record, None if any step is missing."""
    value = record
    for key in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(key)
        if value is None:
            return None
    return value


def coerce_value(value: Any, logical_type: str) -> Any:  # noqa: PLR0911 - one branch per type
    """
    Convert an upstream JSON value to the value stored for a manifest type.

    Raises:
        ValueError: If the value cannot be represented as the declared type
    """
    if value is None:
        return None

    kind = logical_type.lower()

    if kind == "integer":
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, float) and not value.is_integer():
            msg = f"Expected integer, got {value!r}"
            raise ValueError(msg)
        return int(value)

    if kind == "number":
        return float(value)

    if kind == "boolean":
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "1", "yes"):
                return 1
            if lowered in ("false", "0", "no", ""):
                return 0
            msg = f"Expected boolean, got {value!r}"
            raise ValueError(msg)
        return 1 if value else 0

    if kind == "datetime":
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        return str(value)

    if kind == "json" or isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)

    return str(value)
