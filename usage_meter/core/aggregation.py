"""
Usage aggregation.

Rolls per-day usage counters up into per-provider totals and per-day
breakdowns. Every function does one store read and one in-memory pass,
so cost grows with the number of rows in the period, not with the number
of providers. Values stay at full Decimal precision.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List

from usage_meter.storage.models import UsageEvent
from usage_meter.storage.repository import UsageRepository
from .period import PeriodBounds

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageTotals:
    """Summed usage counters."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    request_count: int = 0
    estimated_cost: Decimal = Decimal("0")

    @classmethod
    def from_event(cls, event: UsageEvent) -> "UsageTotals":
        return cls(
            prompt_tokens=event.prompt_tokens,
            completion_tokens=event.completion_tokens,
            total_tokens=event.total_tokens,
            request_count=event.request_count,
            estimated_cost=event.estimated_cost
        )

    def add(self, other: "UsageTotals") -> "UsageTotals":
        return UsageTotals(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            request_count=self.request_count + other.request_count,
            estimated_cost=self.estimated_cost + other.estimated_cost
        )


@dataclass(frozen=True)
class ProviderTotals:
    """Usage of one provider over a period."""
    provider_id: str
    provider_name: str
    totals: UsageTotals


@dataclass(frozen=True)
class DailyUsage:
    """Usage of one provider on one day."""
    date: date
    provider_id: str
    provider_name: str
    totals: UsageTotals


def aggregate_by_provider(
    repository: UsageRepository,
    tenant_id: int,
    bounds: PeriodBounds
) -> List[ProviderTotals]:
    """Sum a tenant's usage per provider within the bounds.

    Providers without rows in the period are omitted rather than
    reported as zero.

    Args:
        repository: Usage store to read
        tenant_id: Tenant to aggregate
        bounds: Inclusive day bounds (unbounded for all-time)

    Returns:
        Per-provider totals ordered by provider_id ascending

    Raises:
        TenantNotFoundError: If the tenant has no usage partition
        StorageUnavailableError: If the store cannot be read
    """
    rows = repository.fetch_usage_rows(tenant_id, bounds.start, bounds.end)

    names: Dict[str, str] = {}
    totals: Dict[str, UsageTotals] = {}
    for row in rows:
        provider_id = row.event.provider_id
        names[provider_id] = row.provider_name
        current = totals.get(provider_id, UsageTotals())
        totals[provider_id] = current.add(UsageTotals.from_event(row.event))

    result = [
        ProviderTotals(provider_id, names[provider_id], totals[provider_id])
        for provider_id in sorted(totals)
    ]
    logger.debug(
        "Aggregated %d rows into %d providers for tenant %s",
        len(rows), len(result), tenant_id
    )
    return result


def daily_breakdown(
    repository: UsageRepository,
    tenant_id: int,
    bounds: PeriodBounds
) -> List[DailyUsage]:
    """List a tenant's usage per day and provider within the bounds.

    Args:
        repository: Usage store to read
        tenant_id: Tenant to read
        bounds: Inclusive day bounds (unbounded for all-time)

    Returns:
        Rows ordered by date descending, then provider_id ascending

    Raises:
        TenantNotFoundError: If the tenant has no usage partition
        StorageUnavailableError: If the store cannot be read
    """
    rows = repository.fetch_usage_rows(tenant_id, bounds.start, bounds.end)
    daily = [
        DailyUsage(
            date=row.event.date,
            provider_id=row.event.provider_id,
            provider_name=row.provider_name,
            totals=UsageTotals.from_event(row.event)
        )
        for row in rows
    ]
    daily.sort(key=lambda d: d.provider_id)
    daily.sort(key=lambda d: d.date, reverse=True)
    return daily


def sum_totals(totals: Iterable[UsageTotals]) -> UsageTotals:
    """Sum usage totals; an empty input gives all zeros."""
    result = UsageTotals()
    for item in totals:
        result = result.add(item)
    return result
