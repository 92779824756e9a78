"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for meter configs.
"""

import os
import tempfile
from decimal import Decimal
from unittest.mock import patch

import pytest
import yaml

from usage_meter.config.loader import (
    BudgetDefaults,
    MeterConfig,
    load_meter_config,
)
from usage_meter.storage.db import DB_PATH_ENV_VAR, DEFAULT_DB_PATH


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data: dict, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_data = {
            "database": "meter.db",
            "budgets": {"default_warning_threshold_percent": 75},
            "pricing": {
                "openai": {"input_per_1m": 2.5, "output_per_1m": 10},
                "anthropic": {"input_per_1m": "3.00", "output_per_1m": "15.00"}
            }
        }

        config = load_meter_config(self._write_config(config_data))

        assert config.database == "meter.db"
        assert config.budgets.default_warning_threshold_percent == 75
        assert config.pricing.get_pricing("openai").input_per_1m == Decimal("2.5")
        assert config.pricing.get_pricing("anthropic").output_per_1m == Decimal("15.00")

    def test_no_path_gives_defaults(self):
        config = load_meter_config(None)
        assert config == MeterConfig()
        assert config.budgets.default_warning_threshold_percent == 80
        assert config.pricing.prices == {}

    def test_optional_sections_default(self):
        """Test that a config with only a database path loads."""
        config = load_meter_config(self._write_config({"database": "x.db"}))
        assert config.budgets == BudgetDefaults()
        assert config.pricing.prices == {}

    def test_missing_file_raises_error(self):
        """Test that missing config file raises error."""
        with pytest.raises(FileNotFoundError, match="Meter config file not found"):
            load_meter_config("nonexistent.yaml")

    def test_empty_config_raises_error(self):
        """Test that empty config file raises error."""
        config_path = self._write_config({})

        with pytest.raises(ValueError, match="Configuration file is empty"):
            load_meter_config(config_path)

    def test_invalid_yaml_raises_error(self):
        """Test that invalid YAML raises error."""
        config_path = os.path.join(self.temp_dir, "invalid.yaml")
        with open(config_path, 'w') as f:
            f.write("invalid: yaml: content: [")

        with pytest.raises(yaml.YAMLError):
            load_meter_config(config_path)

    def test_non_mapping_config_raises_error(self):
        config_path = os.path.join(self.temp_dir, "list.yaml")
        with open(config_path, 'w') as f:
            f.write("- a\n- b\n")

        with pytest.raises(ValueError, match="must be a dictionary"):
            load_meter_config(config_path)

    def test_unknown_top_level_key_raises_error(self):
        config_path = self._write_config({"database": "x.db", "alerts": {}})
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_meter_config(config_path)

    def test_unknown_budget_key_raises_error(self):
        config_path = self._write_config({"budgets": {"monthly": 10}})
        with pytest.raises(ValueError, match="Unknown budget keys"):
            load_meter_config(config_path)

    @pytest.mark.parametrize("threshold", [0, 101, -5])
    def test_threshold_out_of_range_raises_error(self, threshold):
        config_path = self._write_config({"budgets": {"default_warning_threshold_percent": threshold}})
        with pytest.raises(ValueError, match="between 1 and 100"):
            load_meter_config(config_path)

    def test_non_integer_threshold_raises_error(self):
        config_path = self._write_config({"budgets": {"default_warning_threshold_percent": 80.5}})
        with pytest.raises(ValueError, match="must be an integer"):
            load_meter_config(config_path)

    def test_missing_price_raises_error(self):
        config_path = self._write_config({"pricing": {"openai": {"input_per_1m": 1}}})
        with pytest.raises(ValueError, match="Missing required 'output_per_1m' in pricing.openai"):
            load_meter_config(config_path)

    def test_negative_price_raises_error(self):
        config_path = self._write_config(
            {"pricing": {"openai": {"input_per_1m": -1, "output_per_1m": 1}}}
        )
        with pytest.raises(ValueError, match="must be >= 0"):
            load_meter_config(config_path)

    def test_non_numeric_price_raises_error(self):
        config_path = self._write_config(
            {"pricing": {"openai": {"input_per_1m": "cheap", "output_per_1m": 1}}}
        )
        with pytest.raises(ValueError, match="must be a number"):
            load_meter_config(config_path)

    def test_unknown_pricing_key_raises_error(self):
        config_path = self._write_config(
            {"pricing": {"openai": {"input_per_1m": 1, "output_per_1m": 1, "currency": "EUR"}}}
        )
        with pytest.raises(ValueError, match="Unknown keys in pricing.openai"):
            load_meter_config(config_path)

    def test_empty_database_raises_error(self):
        config_path = self._write_config({"database": "  "})
        with pytest.raises(ValueError, match="'database' must be a non-empty string"):
            load_meter_config(config_path)


class TestDatabasePath:
    """Test database path precedence."""

    def test_default_path(self):
        with patch.dict(os.environ, {}, clear=True):
            assert MeterConfig().db_path == DEFAULT_DB_PATH

    def test_config_path(self):
        with patch.dict(os.environ, {}, clear=True):
            assert MeterConfig(database="config.db").db_path == "config.db"

    def test_environment_overrides_config(self):
        with patch.dict(os.environ, {DB_PATH_ENV_VAR: "env.db"}):
            assert MeterConfig(database="config.db").db_path == "env.db"
