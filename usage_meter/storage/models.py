"""
Data models for storage layer.

Defines the usage counter rows and tenant provider configuration.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

DEFAULT_WARNING_THRESHOLD_PERCENT = 80


@dataclass(frozen=True)
class UsageEvent:
    """Consumption recorded for one tenant, provider and UTC calendar day.

    The event store treats these as per-day counters: writing a second event
    for the same (tenant_id, provider_id, date) key adds to the stored row.
    """
    tenant_id: int
    provider_id: str
    date: date
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    request_count: int
    estimated_cost: Decimal

    def __post_init__(self):
        """Validate counters and the total_tokens invariant."""
        if not self.provider_id:
            raise ValueError("provider_id is required and cannot be empty")
        for name in ("prompt_tokens", "completion_tokens", "total_tokens", "request_count"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")
        if self.total_tokens != self.prompt_tokens + self.completion_tokens:
            raise ValueError(
                f"total_tokens ({self.total_tokens}) must equal prompt_tokens + "
                f"completion_tokens ({self.prompt_tokens + self.completion_tokens})"
            )
        if not isinstance(self.estimated_cost, Decimal):
            object.__setattr__(self, "estimated_cost", Decimal(str(self.estimated_cost)))
        if not self.estimated_cost.is_finite():
            raise ValueError("estimated_cost must be a finite number")
        if self.estimated_cost < 0:
            raise ValueError("estimated_cost cannot be negative")


@dataclass(frozen=True)
class ProviderBudget:
    """Monthly budget a tenant configured for one provider.

    A budget_limit of None means unlimited.
    """
    tenant_id: int
    provider_id: str
    budget_limit: Optional[Decimal] = None
    warning_threshold_percent: int = DEFAULT_WARNING_THRESHOLD_PERCENT
    display_name: Optional[str] = None

    def __post_init__(self):
        """Validate limit and threshold ranges."""
        if not self.provider_id:
            raise ValueError("provider_id is required and cannot be empty")
        if self.budget_limit is not None:
            if not isinstance(self.budget_limit, Decimal):
                object.__setattr__(self, "budget_limit", Decimal(str(self.budget_limit)))
            if not self.budget_limit.is_finite():
                raise ValueError("budget_limit must be a finite number")
            if self.budget_limit < 0:
                raise ValueError("budget_limit cannot be negative")
        if not 1 <= self.warning_threshold_percent <= 100:
            raise ValueError("warning_threshold_percent must be between 1 and 100")

    @property
    def name(self) -> str:
        """Name shown to report consumers."""
        return self.display_name or self.provider_id
