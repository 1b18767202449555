"""Tests for inventory_config.loader: YAML parsing, defaults, env overrides."""

from uuid import UUID

import pytest
import yaml

from inventory_config import InventorySettings, SweepSettings, load_settings
from inventory_config.loader import parse_settings


def write_yaml(tmp_path, data) -> str:
    path = tmp_path / "inventory.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


class TestDefaults:
    def test_no_file_gives_defaults(self):
        settings = load_settings(environ={})
        assert settings == InventorySettings()
        assert settings.database_url == "sqlite:///inventory.db"
        assert settings.allow_negative_stock is False
        assert settings.max_transaction_retries == 3
        assert settings.sweep == SweepSettings()
        assert settings.sweep.cron == "0 */6 * * *"
        assert settings.sweep.batch_size == 500

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_settings(path, environ={}) == InventorySettings()


class TestFile:
    def test_values_from_file(self, tmp_path):
        org = "6f1c1d52-52a6-4c8e-9a57-0c6f2b0e3a11"
        path = write_yaml(tmp_path, {
            "database_url": "postgresql://inv:pw@localhost/inventory",
            "pool_size": 5,
            "default_currency": "eur",
            "allow_negative_stock": True,
            "log_level": "debug",
            "sweep": {"cron": "*/15 * * * *", "batch_size": 100, "organization_id": org},
        })
        settings = load_settings(path, environ={})
        assert settings.database_url == "postgresql://inv:pw@localhost/inventory"
        assert settings.pool_size == 5
        assert settings.default_currency == "EUR"
        assert settings.allow_negative_stock is True
        assert settings.log_level == "DEBUG"
        assert settings.sweep.cron == "*/15 * * * *"
        assert settings.sweep.batch_size == 100
        assert settings.sweep.organization_id == UUID(org)

    def test_path_from_environment(self, tmp_path):
        path = write_yaml(tmp_path, {"max_transaction_retries": 7})
        settings = load_settings(environ={"INVENTORY_CONFIG": path})
        assert settings.max_transaction_retries == 7

    def test_retries_may_be_disabled(self):
        assert parse_settings({"max_transaction_retries": 0}, environ={}).max_transaction_retries == 0

    def test_database_url_env_overrides_file(self, tmp_path):
        path = write_yaml(tmp_path, {"database_url": "sqlite:///from-file.db"})
        settings = load_settings(path, environ={"DATABASE_URL": "sqlite:///from-env.db"})
        assert settings.database_url == "sqlite:///from-env.db"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "nope.yaml", environ={})


class TestValidation:
    @pytest.mark.parametrize(
        "data",
        [
            {"unknown_key": 1},
            {"sweep": {"interval": 5}},
            {"sweep": "hourly"},
            {"pool_size": 0},
            {"pool_size": "20"},
            {"max_transaction_retries": -1},
            {"allow_negative_stock": "yes"},
            {"default_currency": "XXX1"},
            {"log_level": "LOUD"},
            {"sweep": {"batch_size": 0}},
            {"sweep": {"poll_seconds": -1}},
        ],
    )
    def test_rejected(self, data):
        with pytest.raises(ValueError):
            parse_settings(data, environ={})

    def test_non_mapping_document(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            load_settings(path, environ={})
