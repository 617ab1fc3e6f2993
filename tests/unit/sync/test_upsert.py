"""Tests for natural-key upserts."""

import pytest

from picqer_sync.errors import RecordError
from picqer_sync.sync.schema_guard import SchemaGuard
from picqer_sync.sync.upsert import UpsertWriter


@pytest.fixture
def writer(db_manager, receipts_manifest, warehouses_manifest):
    guard = SchemaGuard(db_manager)
    guard.ensure(receipts_manifest)
    guard.ensure(warehouses_manifest)
    return UpsertWriter(db_manager)


class TestSave:
    def test_insert_then_update(self, writer, db_manager, warehouses_manifest):
        table = warehouses_manifest.table

        assert writer.save(table, {"idwarehouse": 1, "name": "Main", "active": True}) is True
        first = writer.find(table, 1)

        assert writer.save(table, {"idwarehouse": 1, "name": "Main DC", "active": False}) is False
        second = writer.find(table, 1)

        assert db_manager.count_rows("warehouses") == 1
        assert second["row_id"] == first["row_id"]
        assert second["name"] == "Main DC"
        assert second["active"] == 0
        assert second["last_sync_date"] >= first["last_sync_date"]

    def test_idempotent_replay(self, writer, db_manager, receipts_manifest, receipt_factory):
        batch = [receipt_factory(i) for i in range(1, 6)]

        for _ in range(3):
            for record in batch:
                writer.save_record(receipts_manifest, record)

        assert db_manager.count_rows("receipts") == 5
        rows = db_manager.query("SELECT idreceipt, COUNT(*) AS n FROM receipts GROUP BY idreceipt")
        assert all(row["n"] == 1 for row in rows)

    def test_nested_and_missing_values(self, writer, receipts_manifest):
        record = {"idreceipt": 9, "supplier": {"idsupplier": 3, "name": "Acme"}}

        writer.save(receipts_manifest.table, record)

        row = writer.find(receipts_manifest.table, 9)
        assert row["supplier_idsupplier"] == 3
        assert row["supplier_name"] == "Acme"
        assert row["status"] is None
        assert row["last_sync_date"] is not None

    def test_missing_natural_key(self, writer, receipts_manifest):
        with pytest.raises(RecordError, match="natural key"):
            writer.save(receipts_manifest.table, {"status": "completed"})

    def test_uncoercible_value(self, writer, receipts_manifest):
        with pytest.raises(RecordError, match="amount_received"):
            writer.save(receipts_manifest.table, {"idreceipt": 1, "amount_received": "many"})

    def test_integer_out_of_storage_range(self, writer, db_manager, receipts_manifest):
        with pytest.raises(RecordError, match="idreceipt=1"):
            writer.save(receipts_manifest.table, {"idreceipt": 1, "amount_received": 2**70})

        assert db_manager.count_rows("receipts") == 0

    def test_not_an_object(self, writer, receipts_manifest):
        with pytest.raises(RecordError):
            writer.save(receipts_manifest.table, ["idreceipt", 1])


class TestSaveRecord:
    def test_children_reference_parent(self, writer, db_manager, receipts_manifest, receipt_factory):
        products = [
            {"idreceipt_product": 100, "idproduct": 1, "productcode": "A-1", "amount": 2},
            {"idreceipt_product": 101, "idproduct": 2, "productcode": "B-2", "amount": 1},
        ]

        result = writer.save_record(receipts_manifest, receipt_factory(1, products=products))

        assert result.is_new is True
        assert result.children_saved == 2
        assert result.children_failed == 0
        rows = db_manager.query("SELECT idreceipt, productcode FROM receipt_products ORDER BY idreceipt_product")
        assert [(r["idreceipt"], r["productcode"]) for r in rows] == [(1, "A-1"), (1, "B-2")]

    def test_failing_child_does_not_stop_siblings(self, writer, db_manager, receipts_manifest, receipt_factory):
        products = [
            {"idreceipt_product": 100, "productcode": "A-1"},
            {"productcode": "no-id"},
            {"idreceipt_product": 102, "productcode": "C-3"},
        ]

        result = writer.save_record(receipts_manifest, receipt_factory(1, products=products))

        assert result.children_saved == 2
        assert result.children_failed == 1
        assert db_manager.count_rows("receipts") == 1
        assert db_manager.count_rows("receipt_products") == 2

    def test_children_not_written_when_parent_fails(self, writer, db_manager, receipts_manifest):
        record = {"status": "completed", "products": [{"idreceipt_product": 100}]}

        with pytest.raises(RecordError):
            writer.save_record(receipts_manifest, record)

        assert db_manager.count_rows("receipt_products") == 0

    def test_second_observation_updates(self, writer, receipts_manifest, receipt_factory):
        writer.save_record(receipts_manifest, receipt_factory(1, status="processing"))

        result = writer.save_record(receipts_manifest, receipt_factory(1, status="completed"))

        assert result.is_new is False
        assert writer.find(receipts_manifest.table, 1)["status"] == "completed"
