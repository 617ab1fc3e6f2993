"""Shared pytest fixtures for all tests."""

import tempfile
from pathlib import Path

import pytest

from picqer_sync.config import Config
from picqer_sync.sync.database import DatabaseManager
from picqer_sync.type_mapping import ChildCollection, ColumnDefinition, EntityManifest, TableManifest


@pytest.fixture
def temp_db():
    """Create temporary database file that auto-cleans up."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    yield db_path
    Path(db_path).unlink(missing_ok=True)


@pytest.fixture
def test_config(temp_db):
    """Create test configuration with temporary database and no request delays."""
    return Config(
        api_url="https://test.picqer.com/api/v1",
        api_key="test-api-key",
        sqlite_db_path=temp_db,
        rate_limit_sleep_ms=0,
        request_delay_ms=0,
    )


@pytest.fixture
def db_manager(temp_db):
    """Connected DatabaseManager on the temporary database."""
    with DatabaseManager(temp_db) as db:
        yield db


@pytest.fixture
def receipts_manifest():
    """Receipts entity with a nested products collection."""
    return EntityManifest(
        name="receipts",
        endpoint="receipts",
        updated_filter="updated_after",
        table=TableManifest(
            table_name="receipts",
            natural_key="idreceipt",
            columns=[
                ColumnDefinition("idreceipt", "integer", nullable=False),
                ColumnDefinition("receiptid", "string"),
                ColumnDefinition("status", "string"),
                ColumnDefinition("supplier_idsupplier", "integer", source="supplier.idsupplier"),
                ColumnDefinition("supplier_name", "string", source="supplier.name"),
                ColumnDefinition("amount_received", "integer"),
                ColumnDefinition("created", "datetime"),
            ],
        ),
        children=[
            ChildCollection(
                source="products",
                table=TableManifest(
                    table_name="receipt_products",
                    natural_key="idreceipt_product",
                    parent_key="idreceipt",
                    columns=[
                        ColumnDefinition("idreceipt_product", "integer", nullable=False),
                        ColumnDefinition("idreceipt", "integer", nullable=False),
                        ColumnDefinition("idproduct", "integer"),
                        ColumnDefinition("productcode", "string"),
                        ColumnDefinition("amount", "integer"),
                    ],
                ),
            ),
        ],
    )


@pytest.fixture
def warehouses_manifest():
    """Flat entity without an incremental filter."""
    return EntityManifest(
        name="warehouses",
        endpoint="warehouses",
        table=TableManifest(
            table_name="warehouses",
            natural_key="idwarehouse",
            columns=[
                ColumnDefinition("idwarehouse", "integer", nullable=False),
                ColumnDefinition("name", "string"),
                ColumnDefinition("active", "boolean"),
            ],
        ),
    )


@pytest.fixture
def manifests(receipts_manifest, warehouses_manifest):
    return {"receipts": receipts_manifest, "warehouses": warehouses_manifest}


def make_receipt(idreceipt: int, status: str = "completed", products=None) -> dict:
    """Receipt record shaped like the Picqer API response."""
    return {
        "idreceipt": idreceipt,
        "receiptid": f"R{idreceipt:05d}",
        "status": status,
        "supplier": {"idsupplier": 7, "name": "Acme Supplies"},
        "amount_received": 3,
        "created": "2024-01-15 10:30:00",
        "products": products if products is not None else [],
    }


@pytest.fixture
def receipt_factory():
    return make_receipt
