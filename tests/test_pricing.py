"""
Unit tests for pricing calculations.

Tests cost accuracy, precision, and error handling.
"""

import pytest
from decimal import Decimal

from usage_meter.core.pricing import (
    PricingTable,
    ProviderPricing,
    TokenUsage,
    estimate_cost,
)

PRICING = PricingTable({
    "openai": ProviderPricing(input_per_1m=Decimal("2.50"), output_per_1m=Decimal("10.00")),
    "anthropic": ProviderPricing(input_per_1m=Decimal("3.00"), output_per_1m=Decimal("15.00")),
})


class TestTokenUsage:
    """Test TokenUsage dataclass."""

    def test_total_tokens_calculation(self):
        """Verify total_tokens is computed correctly."""
        usage = TokenUsage(prompt_tokens=100, completion_tokens=50)
        assert usage.total_tokens == 150

    def test_zero_tokens(self):
        """Verify zero token handling."""
        usage = TokenUsage(prompt_tokens=0, completion_tokens=0)
        assert usage.total_tokens == 0

    def test_negative_tokens_rejected(self):
        with pytest.raises(ValueError, match="cannot be negative"):
            TokenUsage(prompt_tokens=-1, completion_tokens=0)


class TestPricingTable:
    """Test pricing table functionality."""

    def test_get_supported_provider(self):
        """Verify pricing retrieval for configured providers."""
        pricing = PRICING.get_pricing("openai")
        assert pricing.input_per_1m == Decimal("2.50")
        assert pricing.output_per_1m == Decimal("10.00")

    def test_unsupported_provider_raises_error(self):
        """Verify error for unknown providers."""
        with pytest.raises(ValueError, match="Unsupported provider: unknown"):
            PRICING.get_pricing("unknown")

    def test_negative_price_rejected(self):
        with pytest.raises(ValueError, match="cannot be negative"):
            ProviderPricing(input_per_1m=Decimal("-1"), output_per_1m=Decimal("1"))


class TestCostEstimation:
    """Test cost estimation accuracy."""

    def test_exact_cost(self):
        """Verify exact cost for one million tokens each way."""
        usage = TokenUsage(prompt_tokens=1_000_000, completion_tokens=1_000_000)
        # 1M * $2.50/1M + 1M * $10.00/1M
        assert estimate_cost(PRICING, "openai", usage) == Decimal("12.50")

    def test_small_usage_keeps_full_precision(self):
        """Costs below a cent are not rounded away."""
        usage = TokenUsage(prompt_tokens=1000, completion_tokens=500)
        # 1000 * 3/1M + 500 * 15/1M = 0.003 + 0.0075
        assert estimate_cost(PRICING, "anthropic", usage) == Decimal("0.0105")

    def test_zero_tokens_zero_cost(self):
        usage = TokenUsage(prompt_tokens=0, completion_tokens=0)
        assert estimate_cost(PRICING, "openai", usage) == Decimal("0")

    def test_unsupported_provider(self):
        with pytest.raises(ValueError, match="Unsupported provider"):
            estimate_cost(PRICING, "mistral", TokenUsage(1, 1))
