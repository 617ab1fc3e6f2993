"""Tests for environment configuration and entity manifest loading."""

import json

import pytest

from picqer_sync.config import load_config, load_entity_manifests

ENV_VARS = (
    "PICQER_API_URL",
    "PICQER_API_KEY",
    "SQLITE_DB_PATH",
    "SYNC_PAGE_SIZE",
    "SYNC_SAFETY_CEILING",
    "SYNC_DEFAULT_LOOKBACK_DAYS",
    "PICQER_RATE_LIMIT_WAIT",
    "PICQER_RATE_LIMIT_SLEEP_MS",
    "PICQER_MAX_RATE_LIMIT_RETRIES",
    "PICQER_REQUEST_DELAY_MS",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Empty working directory and no sync-related environment variables."""
    for name in ENV_VARS:
        # setenv first so values loaded by load_dotenv are undone at teardown
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


class TestLoadConfig:
    """Test environment-based configuration."""

    def test_required_variables(self, clean_env):
        clean_env.setenv("PICQER_API_URL", "https://shop.picqer.com/api/v1/")
        clean_env.setenv("PICQER_API_KEY", "secret")
        clean_env.setenv("SQLITE_DB_PATH", "picqer.db")

        config = load_config()

        assert config.api_url == "https://shop.picqer.com/api/v1"  # Trailing slash stripped
        assert config.api_key == "secret"
        assert config.sqlite_db_path == "picqer.db"
        assert config.page_size == 100
        assert config.safety_ceiling == 10_000
        assert config.default_lookback_days == 30
        assert config.wait_on_rate_limit is True
        assert config.rate_limit_sleep_ms == 20_000
        assert config.max_rate_limit_retries == 5

    def test_missing_variables_are_named(self, clean_env):
        clean_env.setenv("PICQER_API_URL", "https://shop.picqer.com/api/v1")

        with pytest.raises(ValueError, match="PICQER_API_KEY, SQLITE_DB_PATH"):
            load_config()

    def test_optional_overrides(self, clean_env):
        clean_env.setenv("PICQER_API_URL", "https://shop.picqer.com/api/v1")
        clean_env.setenv("PICQER_API_KEY", "secret")
        clean_env.setenv("SQLITE_DB_PATH", "picqer.db")
        clean_env.setenv("SYNC_PAGE_SIZE", "50")
        clean_env.setenv("SYNC_SAFETY_CEILING", "500")
        clean_env.setenv("PICQER_RATE_LIMIT_WAIT", "false")

        config = load_config()

        assert config.page_size == 50
        assert config.safety_ceiling == 500
        assert config.wait_on_rate_limit is False

    def test_malformed_integer(self, clean_env):
        clean_env.setenv("PICQER_API_URL", "https://shop.picqer.com/api/v1")
        clean_env.setenv("PICQER_API_KEY", "secret")
        clean_env.setenv("SQLITE_DB_PATH", "picqer.db")
        clean_env.setenv("SYNC_PAGE_SIZE", "lots")

        with pytest.raises(ValueError, match="SYNC_PAGE_SIZE"):
            load_config()

    def test_ceiling_below_page_size_rejected(self, clean_env):
        clean_env.setenv("PICQER_API_URL", "https://shop.picqer.com/api/v1")
        clean_env.setenv("PICQER_API_KEY", "secret")
        clean_env.setenv("SQLITE_DB_PATH", "picqer.db")
        clean_env.setenv("SYNC_SAFETY_CEILING", "10")

        with pytest.raises(ValueError, match="SYNC_SAFETY_CEILING"):
            load_config()

    def test_env_file(self, clean_env, tmp_path):
        env_file = tmp_path / "custom.env"
        env_file.write_text(
            "PICQER_API_URL=https://file.picqer.com/api/v1\nPICQER_API_KEY=from-file\nSQLITE_DB_PATH=file.db\n"
        )

        config = load_config(env_file=str(env_file))

        assert config.api_url == "https://file.picqer.com/api/v1"
        assert config.api_key == "from-file"
        assert config.sqlite_db_path == "file.db"


class TestEntityManifests:
    """Test entities.json loading."""

    def test_package_defaults(self):
        manifests = load_entity_manifests()

        assert set(manifests) == {
            "receipts",
            "purchaseorders",
            "picklists",
            "batches",
            "suppliers",
            "products",
            "warehouses",
            "users",
        }

        receipts = manifests["receipts"]
        assert receipts.natural_key == "idreceipt"
        assert receipts.updated_filter == "updated_after"
        assert receipts.table.get_column("supplier_idsupplier").source == "supplier.idsupplier"
        assert [c.table.table_name for c in receipts.children] == ["receipt_products"]
        assert receipts.children[0].table.parent_key == "idreceipt"

        assert manifests["batches"].endpoint == "picklists/batches"
        assert manifests["warehouses"].supports_incremental is False

    def test_endpoint_defaults_to_name(self, tmp_path):
        config_data = {
            "entities": [
                {
                    "name": "suppliers",
                    "table": "suppliers",
                    "natural_key": "idsupplier",
                    "columns": [{"name": "idsupplier", "type": "integer"}, {"name": "name"}],
                },
            ],
        }
        config_path = tmp_path / "entities.json"
        config_path.write_text(json.dumps(config_data))

        manifests = load_entity_manifests(str(config_path))

        assert manifests["suppliers"].endpoint == "suppliers"
        assert manifests["suppliers"].table.get_column("name").type == "string"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_entity_manifests(str(tmp_path / "nope.json"))

    def test_missing_entities_key(self, tmp_path):
        config_path = tmp_path / "entities.json"
        config_path.write_text(json.dumps({"tables": []}))

        with pytest.raises(ValueError, match="missing 'entities'"):
            load_entity_manifests(str(config_path))

    def test_natural_key_must_be_declared(self, tmp_path):
        config_data = {
            "entities": [
                {
                    "name": "suppliers",
                    "table": "suppliers",
                    "natural_key": "idsupplier",
                    "columns": [{"name": "name"}],
                },
            ],
        }
        config_path = tmp_path / "entities.json"
        config_path.write_text(json.dumps(config_data))

        with pytest.raises(ValueError, match="not a declared column"):
            load_entity_manifests(str(config_path))

    def test_child_requires_parent_key(self, tmp_path):
        config_data = {
            "entities": [
                {
                    "name": "receipts",
                    "table": "receipts",
                    "natural_key": "idreceipt",
                    "columns": [{"name": "idreceipt", "type": "integer"}],
                    "children": [
                        {
                            "source": "products",
                            "table": "receipt_products",
                            "natural_key": "idreceipt_product",
                            "columns": [{"name": "idreceipt_product", "type": "integer"}],
                        },
                    ],
                },
            ],
        }
        config_path = tmp_path / "entities.json"
        config_path.write_text(json.dumps(config_data))

        with pytest.raises(ValueError, match="natural_key and parent_key"):
            load_entity_manifests(str(config_path))

    def test_unknown_column_type(self, tmp_path):
        config_data = {
            "entities": [
                {
                    "name": "suppliers",
                    "table": "suppliers",
                    "natural_key": "idsupplier",
                    "columns": [{"name": "idsupplier", "type": "uuid"}],
                },
            ],
        }
        config_path = tmp_path / "entities.json"
        config_path.write_text(json.dumps(config_data))

        with pytest.raises(ValueError, match="Unsupported column type"):
            load_entity_manifests(str(config_path))
