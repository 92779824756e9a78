"""
Pricing calculations.

Estimates the cost of provider usage from per-million-token rates.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict

_ONE_MILLION = Decimal("1000000")


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported by a provider for one or more calls."""
    prompt_tokens: int
    completion_tokens: int

    def __post_init__(self):
        if self.prompt_tokens < 0 or self.completion_tokens < 0:
            raise ValueError("token counts cannot be negative")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class ProviderPricing:
    """Per-token pricing for a provider."""
    input_per_1m: Decimal  # Cost per 1M prompt tokens
    output_per_1m: Decimal  # Cost per 1M completion tokens

    def __post_init__(self):
        if self.input_per_1m < 0 or self.output_per_1m < 0:
            raise ValueError("prices cannot be negative")


@dataclass(frozen=True)
class PricingTable:
    """Pricing for the providers a deployment meters."""
    prices: Dict[str, ProviderPricing]

    def get_pricing(self, provider: str) -> ProviderPricing:
        """Get pricing for a specific provider.

        Args:
            provider: Provider identifier

        Returns:
            ProviderPricing for the provider

        Raises:
            ValueError: If provider has no pricing
        """
        if provider not in self.prices:
            raise ValueError(f"Unsupported provider: {provider}")
        return self.prices[provider]


def estimate_cost(table: PricingTable, provider: str, usage: TokenUsage) -> Decimal:
    """Estimate the cost of token usage at full precision.

    No rounding is applied; reports round at serialization time.

    Args:
        table: Pricing table to use
        provider: Provider identifier
        usage: Token usage data

    Returns:
        Estimated cost

    Raises:
        ValueError: If provider has no pricing
    """
    pricing = table.get_pricing(provider)

    prompt_cost = Decimal(usage.prompt_tokens) / _ONE_MILLION * pricing.input_per_1m
    completion_cost = Decimal(usage.completion_tokens) / _ONE_MILLION * pricing.output_per_1m

    return prompt_cost + completion_cost
