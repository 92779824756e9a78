"""
Configuration management and loading.

Handles the meter's YAML settings and environment overrides.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Optional

import yaml

from usage_meter.core.pricing import PricingTable, ProviderPricing
from usage_meter.storage.db import DB_PATH_ENV_VAR, DEFAULT_DB_PATH
from usage_meter.storage.models import DEFAULT_WARNING_THRESHOLD_PERCENT


@dataclass(frozen=True)
class BudgetDefaults:
    """Defaults applied to budgets configured without explicit values."""
    default_warning_threshold_percent: int = DEFAULT_WARNING_THRESHOLD_PERCENT

    def __post_init__(self):
        """Validate the threshold is a usable percentage."""
        if not 1 <= self.default_warning_threshold_percent <= 100:
            raise ValueError("default_warning_threshold_percent must be between 1 and 100")


@dataclass(frozen=True)
class MeterConfig:
    """Complete meter configuration."""
    database: Optional[str] = None
    budgets: BudgetDefaults = field(default_factory=BudgetDefaults)
    pricing: PricingTable = field(default_factory=lambda: PricingTable({}))

    @property
    def db_path(self) -> str:
        """Database path; the USAGE_METER_DB environment variable wins."""
        return os.environ.get(DB_PATH_ENV_VAR) or self.database or DEFAULT_DB_PATH


def load_meter_config(path: Optional[str] = None) -> MeterConfig:
    """Load and validate meter configuration from a YAML file.

    Unknown keys are rejected so typos never silently disable a budget
    default or a provider's pricing.

    Args:
        path: Path to YAML configuration file; None gives the defaults

    Returns:
        Validated MeterConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return MeterConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Meter config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}") from e

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'database', 'budgets', 'pricing'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    database = raw_config.get('database')
    if database is not None and (not isinstance(database, str) or not database.strip()):
        raise ValueError("'database' must be a non-empty string")

    budgets = _parse_budget_defaults(raw_config.get('budgets', {}))

    pricing_data = raw_config.get('pricing', {})
    if not isinstance(pricing_data, dict):
        raise ValueError("'pricing' must be a dictionary")

    prices = {}
    for provider, provider_data in pricing_data.items():
        if not isinstance(provider_data, dict):
            raise ValueError(f"Pricing for '{provider}' must be a dictionary")
        prices[str(provider)] = _parse_provider_pricing(provider_data, f"pricing.{provider}")

    return MeterConfig(
        database=database,
        budgets=budgets,
        pricing=PricingTable(prices)
    )


def _parse_budget_defaults(data) -> BudgetDefaults:
    """Parse and validate the budgets section."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("'budgets' must be a dictionary")

    allowed_keys = {'default_warning_threshold_percent'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown budget keys: {unknown_keys}")

    threshold = data.get('default_warning_threshold_percent', DEFAULT_WARNING_THRESHOLD_PERCENT)
    if isinstance(threshold, bool) or not isinstance(threshold, int):
        raise ValueError("'default_warning_threshold_percent' must be an integer")

    return BudgetDefaults(default_warning_threshold_percent=threshold)


def _parse_provider_pricing(data: Dict, path: str) -> ProviderPricing:
    """Parse and validate one provider's pricing.

    Args:
        data: Provider pricing data
        path: Path for error messages

    Returns:
        Validated ProviderPricing

    Raises:
        ValueError: If configuration is invalid
    """
    allowed_keys = {'input_per_1m', 'output_per_1m'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    rates = {}
    for key in ('input_per_1m', 'output_per_1m'):
        if key not in data:
            raise ValueError(f"Missing required '{key}' in {path}")
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValueError(f"'{key}' in {path} must be a number")
        try:
            rate = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"'{key}' in {path} must be a number")
        if not rate.is_finite() or rate < 0:
            raise ValueError(f"'{key}' in {path} must be >= 0")
        rates[key] = rate

    return ProviderPricing(
        input_per_1m=rates['input_per_1m'],
        output_per_1m=rates['output_per_1m']
    )
