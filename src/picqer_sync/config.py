"""Configuration loading for the Picqer sync engine."""

import json
import os
from dataclasses import dataclass
from importlib.resources import files
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .type_mapping import (
    ChildCollection,
    ColumnDefinition,
    EntityManifest,
    IndexDefinition,
    TableManifest,
    map_type_to_db,
)

DEFAULT_PAGE_SIZE = 100
DEFAULT_SAFETY_CEILING = 10_000
DEFAULT_LOOKBACK_DAYS = 30


@dataclass
class Config:
    """Configuration for Picqer API and database access."""

    api_url: str
    api_key: str
    sqlite_db_path: str = None
    page_size: int = DEFAULT_PAGE_SIZE
    safety_ceiling: int = DEFAULT_SAFETY_CEILING
    default_lookback_days: int = DEFAULT_LOOKBACK_DAYS
    wait_on_rate_limit: bool = True
    rate_limit_sleep_ms: int = 20_000
    max_rate_limit_retries: int = 5
    request_delay_ms: int = 100
    user_agent: str = "picqer-sync"


def get_default_config_path(filename: str) -> str:
    """
    Get default config file path from package data.

    Args:
        filename: Name of the config file (e.g., 'entities.json')

    Returns:
        Absolute path to the config file in package data directory
    """
    return str(files("picqer_sync").joinpath(f"data/{filename}"))


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        msg = f"Environment variable {name} must be an integer, got {raw!r}"
        raise ValueError(msg) from None


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_config(env_file: Optional[str] = None) -> Config:
    """
    Load configuration from environment variables.

    Environment variable loading precedence:
    1. If env_file provided via CLI, load from that path
    2. Otherwise, check for .env in current working directory
    3. Otherwise, use system environment variables

    Args:
        env_file: Optional path to .env file (CLI parameter)

    Returns:
        Config object with loaded settings

    Raises:
        ValueError: If required configuration is missing or malformed
    """
    if env_file:
        load_dotenv(env_file)
    elif Path(".env").exists():
        load_dotenv(".env")

    api_url = os.getenv("PICQER_API_URL")
    api_key = os.getenv("PICQER_API_KEY")
    sqlite_db_path = os.getenv("SQLITE_DB_PATH")

    required = {
        "PICQER_API_URL": api_url,
        "PICQER_API_KEY": api_key,
        "SQLITE_DB_PATH": sqlite_db_path,
    }
    missing = [name for name, value in required.items() if not value]
    if missing:
        msg = f"Missing required environment variables: {', '.join(missing)}"
        raise ValueError(msg)

    config = Config(
        api_url=api_url.rstrip("/"),
        api_key=api_key,
        sqlite_db_path=sqlite_db_path,
        page_size=_int_env("SYNC_PAGE_SIZE", DEFAULT_PAGE_SIZE),
        safety_ceiling=_int_env("SYNC_SAFETY_CEILING", DEFAULT_SAFETY_CEILING),
        default_lookback_days=_int_env("SYNC_DEFAULT_LOOKBACK_DAYS", DEFAULT_LOOKBACK_DAYS),
        wait_on_rate_limit=_bool_env("PICQER_RATE_LIMIT_WAIT", True),
        rate_limit_sleep_ms=_int_env("PICQER_RATE_LIMIT_SLEEP_MS", 20_000),
        max_rate_limit_retries=_int_env("PICQER_MAX_RATE_LIMIT_RETRIES", 5),
        request_delay_ms=_int_env("PICQER_REQUEST_DELAY_MS", 100),
    )

    if config.page_size <= 0:
        msg = "SYNC_PAGE_SIZE must be positive"
        raise ValueError(msg)
    if config.safety_ceiling < config.page_size:
        msg = "SYNC_SAFETY_CEILING must be at least SYNC_PAGE_SIZE"
        raise ValueError(msg)

    return config


def _parse_table(data: dict, context: str) -> TableManifest:
    """Build a TableManifest from its JSON form."""
    if not isinstance(data, dict):
        msg = f"Invalid table definition for {context}: {data}"
        raise TypeError(msg)

    table_name = data.get("table")
    if not table_name:
        msg = f"Invalid table definition for {context}: missing 'table'"
        raise ValueError(msg)

    raw_columns = data.get("columns", [])
    if not isinstance(raw_columns, list):
        msg = f"Invalid table definition for {context}: 'columns' must be a list"
        raise TypeError(msg)

    columns = []
    for raw in raw_columns:
        if not isinstance(raw, dict) or "name" not in raw:
            msg = f"Invalid column entry in {table_name}: {raw}"
            raise ValueError(msg)
        column = ColumnDefinition(
            name=raw["name"],
            type=raw.get("type", "string"),
            source=raw.get("source"),
            nullable=raw.get("nullable", True),
            default=raw.get("default"),
        )
        # Fail early on unknown types rather than at DDL time
        map_type_to_db(column.type)
        columns.append(column)

    names = [c.name for c in columns]
    natural_key = data.get("natural_key")
    if natural_key and natural_key not in names:
        msg = f"Natural key '{natural_key}' of {table_name} is not a declared column"
        raise ValueError(msg)

    parent_key = data.get("parent_key")
    if parent_key and parent_key not in names:
        msg = f"Parent key '{parent_key}' of {table_name} is not a declared column"
        raise ValueError(msg)

    indexes = [
        IndexDefinition(
            name=raw.get("name") or f"idx_{table_name}_{'_'.join(raw['columns'])}",
            columns=list(raw["columns"]),
            is_unique=raw.get("unique", False),
        )
        for raw in data.get("indexes", [])
    ]

    return TableManifest(
        table_name=table_name,
        natural_key=natural_key,
        columns=columns,
        parent_key=parent_key,
        indexes=indexes,
    )


def load_entity_manifests(path: Optional[str] = None) -> dict[str, EntityManifest]:
    """
    Load entity manifests from entities.json.

    Args:
        path: Optional path to entities configuration file.
              If None, uses package default from data/entities.json

    Returns:
        Dict mapping entity type (e.g. 'receipts') to its EntityManifest,
        in file order

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file is invalid
    """
    if path is None:
        path = get_default_config_path("entities.json")

    config_path = Path(path)

    if not config_path.exists():
        msg = f"Entity configuration file not found: {path}"
        raise FileNotFoundError(msg)

    with config_path.open(encoding="utf-8") as f:
        config = json.load(f)

    if "entities" not in config:
        msg = "Invalid entities.json: missing 'entities' key"
        raise ValueError(msg)

    entities = config["entities"]
    if not isinstance(entities, list):
        msg = "Invalid entities.json: 'entities' must be a list"
        raise TypeError(msg)

    manifests = {}
    for entity in entities:
        if not isinstance(entity, dict) or "name" not in entity:
            msg = f"Invalid entity entry: {entity}"
            raise ValueError(msg)

        name = entity["name"]
        table = _parse_table(entity, name)
        if not table.natural_key:
            msg = f"Entity '{name}' must declare a natural_key"
            raise ValueError(msg)

        children = []
        for child in entity.get("children", []):
            child_table = _parse_table(child, f"{name} child")
            if not child_table.natural_key or not child_table.parent_key:
                msg = f"Child table '{child_table.table_name}' must declare natural_key and parent_key"
                raise ValueError(msg)
            children.append(ChildCollection(source=child.get("source", "products"), table=child_table))

        manifests[name] = EntityManifest(
            name=name,
            # Endpoint defaults to the entity name (e.g. receipts → /receipts)
            endpoint=entity.get("endpoint", name).strip("/"),
            table=table,
            updated_filter=entity.get("updated_filter"),
            children=children,
            description=entity.get("description", ""),
        )

    return manifests
