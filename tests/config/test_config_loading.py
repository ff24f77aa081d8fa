"""
Configuration loading tests: packaged defaults, file and environment
overrides, checksum stability, and rejection of malformed charts.
"""

from dataclasses import FrozenInstanceError

import pytest
import yaml

from ledger_config import DEFAULT_CONFIG_PATH, get_active_config
from ledger_config.loader import compute_checksum, load_yaml_file, parse_chart, parse_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("LEDGER_CONFIG_PATH", "LEDGER_DATABASE_URL", "LEDGER_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


def _write_config(tmp_path, **overrides):
    data = load_yaml_file(DEFAULT_CONFIG_PATH)
    data.update(overrides)
    path = tmp_path / "ledger.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:
    def test_packaged_defaults_load(self):
        config = get_active_config()

        assert config.config_id == "ledger-default"
        assert config.scheduler.max_catch_up == 12
        assert config.account_code_for_role("bank") == "1000"
        assert config.account_code_for_role("unearned_revenue") == "2300"
        assert config.account_code_for_category("travel") == "5200"
        assert config.account_code_for_category("yacht") is None

    def test_every_binding_points_into_chart(self):
        config = get_active_config()
        codes = {a.code for a in config.chart_of_accounts}

        assert {b.account_code for b in config.role_bindings} <= codes
        assert set(config.expense_categories.values()) <= codes

    def test_category_accounts_are_expenses(self):
        config = get_active_config()
        types = {a.code: a.account_type for a in config.chart_of_accounts}

        assert {types[code] for code in config.expense_categories.values()} == {"expense"}

    def test_config_is_frozen(self):
        config = get_active_config()

        with pytest.raises(FrozenInstanceError):
            config.config_id = "changed"

    def test_load_logged(self, captured_logs):
        config = get_active_config()

        loaded = [r for r in captured_logs() if r["message"] == "config_loaded"]
        assert loaded and loaded[-1]["checksum"] == config.checksum


class TestOverrides:
    def test_explicit_path(self, tmp_path):
        path = _write_config(tmp_path, config_id="firm-a")

        assert get_active_config(path).config_id == "firm-a"

    def test_env_path(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LEDGER_CONFIG_PATH", str(_write_config(tmp_path, config_id="firm-b")))

        assert get_active_config().config_id == "firm-b"

    def test_env_database_url_and_level(self, monkeypatch):
        monkeypatch.setenv("LEDGER_DATABASE_URL", "sqlite:///other.db")
        monkeypatch.setenv("LEDGER_LOG_LEVEL", "debug")

        config = get_active_config()

        assert config.database.url == "sqlite:///other.db"
        assert config.logging.level == "DEBUG"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")


class TestParsing:
    def test_checksum_is_order_independent(self):
        assert compute_checksum({"a": 1, "b": [1, 2]}) == compute_checksum({"b": [1, 2], "a": 1})
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})

    def test_unknown_account_type_rejected(self):
        with pytest.raises(ValueError, match="revenue"):
            parse_chart([{"code": "4000", "name": "Fees", "account_type": "revenue"}])

    def test_numeric_codes_become_strings(self):
        config = parse_config({
            "config_id": "numeric",
            "database": {"url": "sqlite://"},
            "chart_of_accounts": [{"code": 1000, "name": "Bank", "account_type": "asset"}],
            "role_bindings": {"bank": 1000},
            "expense_categories": {"rent": 5500},
        })

        assert config.chart_of_accounts[0].code == "1000"
        assert config.account_code_for_role("bank") == "1000"
        assert config.account_code_for_category("rent") == "5500"

    def test_missing_database_url(self):
        with pytest.raises(KeyError):
            parse_config({"config_id": "broken", "database": {}})
