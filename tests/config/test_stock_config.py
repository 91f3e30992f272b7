"""
Tests for stock_config: YAML loading, validation and the config trace.
"""

from pathlib import Path

import pytest
import yaml

from stock_config import (
    CONFIG_ENV_VAR,
    LedgerSettings,
    StockSettings,
    get_active_config,
)
from stock_config.loader import compute_checksum, load_yaml_file, parse_settings


def _write(tmp_path: Path, data, name="stock.yaml") -> Path:
    path = tmp_path / name
    path.write_text(data if isinstance(data, str) else yaml.safe_dump(data))
    return path


@pytest.fixture(autouse=True)
def _no_env_override(monkeypatch):
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)


class TestDefaults:

    def test_dataclass_defaults(self):
        settings = StockSettings()
        assert settings.sequence.batch_capacity == 9999
        assert settings.sequence.unit_capacity == 99999
        assert settings.sequence.short_serial_capacity == 99999
        assert settings.identifiers.batch_check_digit is True
        assert settings.identifiers.short_serial_check_digit is True
        assert settings.ledger == LedgerSettings(negative_stock_policy="warn", unit_of_measure="g")
        assert settings.reconciliation.interval_seconds == 300.0
        assert settings.reconciliation.lookback_hours == 24

    def test_default_yaml_matches_dataclasses(self):
        settings = get_active_config()
        defaults = StockSettings()

        assert settings.config_id == "default"
        assert settings.sequence == defaults.sequence
        assert settings.identifiers == defaults.identifiers
        assert settings.ledger == defaults.ledger
        assert settings.reconciliation == defaults.reconciliation
        assert len(settings.checksum) == 64

    def test_settings_are_frozen(self):
        with pytest.raises(AttributeError):
            StockSettings().ledger.negative_stock_policy = "block"


class TestResolution:

    def test_explicit_path(self, tmp_path):
        path = _write(tmp_path, {"config_id": "till-site-3", "ledger": {"negative_stock_policy": "block"}})
        settings = get_active_config(path)
        assert settings.config_id == "till-site-3"
        assert settings.ledger.negative_stock_policy == "block"
        assert settings.sequence.batch_capacity == 9999

    def test_environment_variable(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"config_id": "from-env"})
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert get_active_config().config_id == "from-env"

    def test_explicit_path_beats_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_ENV_VAR, str(_write(tmp_path, {"config_id": "env"}, "env.yaml")))
        explicit = _write(tmp_path, {"config_id": "explicit"}, "explicit.yaml")
        assert get_active_config(explicit).config_id == "explicit"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_empty_file_uses_defaults(self, tmp_path):
        settings = get_active_config(_write(tmp_path, ""))
        assert settings.config_id == "default"
        assert settings.ledger.negative_stock_policy == "warn"

    def test_trace_logged(self, tmp_path, captured_logs):
        path = _write(tmp_path, {"config_id": "traced", "version": 4})
        settings = get_active_config(path)

        (log,) = [r for r in captured_logs() if r["message"] == "stock_config_trace"]
        assert log["trace_type"] == "STOCK_CONFIG_TRACE"
        assert log["config_id"] == "traced"
        assert log["config_version"] == 4
        assert log["checksum"] == settings.checksum
        assert log["config_path"] == str(path)
        assert log["negative_stock_policy"] == "warn"


class TestValidation:

    @pytest.mark.parametrize(
        "data",
        [
            {"colour": "green"},
            {"ledger": {"policy": "block"}},
            {"sequence": {"batch_capacity": 10000}},
            {"sequence": {"unit_capacity": 0}},
            {"sequence": {"short_serial_capacity": 100000}},
            {"identifiers": {"max_bulk_serials": 0}},
            {"ledger": {"negative_stock_policy": "allow"}},
            {"reconciliation": {"interval_seconds": 0}},
        ],
    )
    def test_rejected(self, data):
        with pytest.raises(ValueError):
            parse_settings(data)

    def test_top_level_must_be_mapping(self, tmp_path):
        with pytest.raises(ValueError):
            load_yaml_file(_write(tmp_path, "- a\n- b\n"))

    def test_log_level_uppercased(self):
        assert parse_settings({"log_level": "debug"}).log_level == "DEBUG"

    def test_reduced_capacity_accepted(self):
        assert parse_settings({"sequence": {"batch_capacity": 50}}).sequence.batch_capacity == 50


class TestChecksum:

    def test_key_order_irrelevant(self):
        a = {"config_id": "x", "ledger": {"negative_stock_policy": "block", "unit_of_measure": "g"}}
        b = {"ledger": {"unit_of_measure": "g", "negative_stock_policy": "block"}, "config_id": "x"}
        assert compute_checksum(a) == compute_checksum(b)

    def test_value_change_changes_checksum(self):
        assert compute_checksum({"version": 1}) != compute_checksum({"version": 2})

    def test_settings_carry_checksum(self):
        data = {"config_id": "x"}
        assert parse_settings(data).checksum == compute_checksum(data)
