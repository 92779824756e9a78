"""
Usage statistics.

Summarizes a tenant's usage over fixed calendar windows: the current UTC
month, the previous month and all time, with per-day averages for the
current month. All windows are folded from one unbounded read of the
tenant's counters.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Union

from usage_meter.storage.repository import UsageRepository
from .aggregation import ProviderTotals, UsageTotals
from .errors import TenantNotFoundError
from .period import PeriodBounds, current_month_bounds, last_month_bounds, utc_today
from .report import round_currency

logger = logging.getLogger(__name__)

_HUNDRED = Decimal("100")


def _round_to(value: Decimal, exponent: str) -> float:
    return float(value.quantize(Decimal(exponent), rounding=ROUND_HALF_UP))


def _round_whole(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class WindowStatistics:
    """Usage summed over one window of days."""
    bounds: PeriodBounds
    totals: UsageTotals = field(default_factory=UsageTotals)
    days_active: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tokens": self.totals.total_tokens,
            "promptTokens": self.totals.prompt_tokens,
            "completionTokens": self.totals.completion_tokens,
            "requests": self.totals.request_count,
            "cost": round_currency(self.totals.estimated_cost),
        }


@dataclass(frozen=True)
class DayTotals:
    """Usage of all providers on one day."""
    date: date
    totals: UsageTotals


@dataclass(frozen=True)
class UsageStatistics:
    """Multi-window usage summary for one tenant."""
    tenant_id: int
    generated_at: Union[datetime, date]
    current_month: WindowStatistics
    last_month: WindowStatistics
    all_time: WindowStatistics
    first_date: Optional[date] = None
    last_date: Optional[date] = None
    by_provider: List[ProviderTotals] = field(default_factory=list)
    daily: List[DayTotals] = field(default_factory=list)

    @property
    def average_daily_cost(self) -> Decimal:
        return self.current_month.totals.estimated_cost / self._month_days

    @property
    def average_daily_tokens(self) -> Decimal:
        return Decimal(self.current_month.totals.total_tokens) / self._month_days

    @property
    def average_daily_requests(self) -> Decimal:
        return Decimal(self.current_month.totals.request_count) / self._month_days

    @property
    def cost_per_request(self) -> Decimal:
        requests = self.current_month.totals.request_count
        if not requests:
            return Decimal("0")
        return self.current_month.totals.estimated_cost / requests

    @property
    def tokens_per_request(self) -> Decimal:
        requests = self.current_month.totals.request_count
        if not requests:
            return Decimal("0")
        return Decimal(self.current_month.totals.total_tokens) / requests

    @property
    def _month_days(self) -> int:
        # Averages over a month without usage divide by one day
        return self.current_month.days_active or 1

    def cost_percent(self, totals: UsageTotals) -> int:
        """Share of the current month's cost, as a whole percentage."""
        month_cost = self.current_month.totals.estimated_cost
        if month_cost <= 0:
            return 0
        return _round_whole(totals.estimated_cost / month_cost * _HUNDRED)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-shaped form; rounding happens here and nowhere else."""
        month = self.current_month
        previous = self.last_month
        return {
            "businessId": self.tenant_id,
            "generatedAt": self.generated_at.isoformat(),
            "currentMonth": {
                "period": f"{month.bounds.start} to {month.bounds.end}",
                "daysActive": month.days_active,
                **month.to_dict(),
            },
            "lastMonth": {
                "period": f"{previous.bounds.start} to {previous.bounds.end}",
                **previous.to_dict(),
            },
            "allTime": {
                "firstDate": self.first_date.isoformat() if self.first_date else None,
                "lastDate": self.last_date.isoformat() if self.last_date else None,
                "daysActive": self.all_time.days_active,
                **self.all_time.to_dict(),
            },
            "averages": {
                "dailyCost": round_currency(self.average_daily_cost),
                "dailyTokens": _round_whole(self.average_daily_tokens),
                "dailyRequests": _round_to(self.average_daily_requests, "0.1"),
                "costPerRequest": _round_to(self.cost_per_request, "0.0001"),
                "tokensPerRequest": _round_whole(self.tokens_per_request),
            },
            "byPlatform": [
                {
                    "platformId": p.provider_id,
                    "platformName": p.provider_name,
                    "promptTokens": p.totals.prompt_tokens,
                    "completionTokens": p.totals.completion_tokens,
                    "totalTokens": p.totals.total_tokens,
                    "requests": p.totals.request_count,
                    "cost": round_currency(p.totals.estimated_cost),
                    "costPercent": self.cost_percent(p.totals),
                }
                for p in self.by_provider
            ],
            "daily": [
                {
                    "date": d.date.isoformat(),
                    "tokens": d.totals.total_tokens,
                    "promptTokens": d.totals.prompt_tokens,
                    "completionTokens": d.totals.completion_tokens,
                    "requests": d.totals.request_count,
                    "cost": round_currency(d.totals.estimated_cost),
                }
                for d in self.daily
            ],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def usage_statistics(
    repository: UsageRepository,
    tenant_id: int,
    now: Union[datetime, date],
    strict_tenant: bool = False
) -> UsageStatistics:
    """Summarize a tenant's usage for this month, last month and all time.

    The current month runs from the first of the UTC month through today,
    last month covers the whole previous calendar month. Per-provider and
    per-day breakdowns cover the current month only. The current month's
    days_active counts days with recorded usage; all-time days_active is
    the inclusive span from the first recorded day through today.

    Args:
        repository: Usage store to read
        tenant_id: Tenant to summarize
        now: Current instant, supplied by the caller
        strict_tenant: Raise TenantNotFoundError instead of returning empty
            statistics for tenants without a usage partition

    Returns:
        UsageStatistics at full precision

    Raises:
        TenantNotFoundError: If strict_tenant is set and the tenant is unknown
        StorageUnavailableError: If usage cannot be read
    """
    today = utc_today(now)
    month_bounds = current_month_bounds(now)
    previous_bounds = last_month_bounds(now)

    try:
        rows = repository.fetch_usage_rows(tenant_id)
    except TenantNotFoundError:
        if strict_tenant:
            raise
        logger.info("Tenant %s has no usage partition; returning empty statistics", tenant_id)
        rows = []

    all_totals = UsageTotals()
    previous_totals = UsageTotals()
    month_totals = UsageTotals()
    month_days: Dict[date, UsageTotals] = {}
    names: Dict[str, str] = {}
    providers: Dict[str, UsageTotals] = {}

    for row in rows:
        event = row.event
        usage = UsageTotals.from_event(event)
        all_totals = all_totals.add(usage)
        if previous_bounds.contains(event.date):
            previous_totals = previous_totals.add(usage)
        if month_bounds.contains(event.date):
            month_totals = month_totals.add(usage)
            month_days[event.date] = month_days.get(event.date, UsageTotals()).add(usage)
            names[event.provider_id] = row.provider_name
            providers[event.provider_id] = providers.get(event.provider_id, UsageTotals()).add(usage)

    days = [row.event.date for row in rows]
    first_date = min(days) if days else None
    last_date = max(days) if days else None
    all_days_active = max(1, (today - first_date).days + 1) if first_date else 0

    by_provider = [
        ProviderTotals(provider_id, names[provider_id], providers[provider_id])
        for provider_id in sorted(providers)
    ]
    by_provider.sort(key=lambda p: p.totals.estimated_cost, reverse=True)

    daily = [DayTotals(day, month_days[day]) for day in sorted(month_days, reverse=True)]

    logger.debug(
        "Summarized %d rows for tenant %s (%d active days this month)",
        len(rows), tenant_id, len(month_days)
    )
    return UsageStatistics(
        tenant_id=tenant_id,
        generated_at=now,
        current_month=WindowStatistics(month_bounds, month_totals, len(month_days)),
        last_month=WindowStatistics(previous_bounds, previous_totals),
        all_time=WindowStatistics(PeriodBounds(), all_totals, all_days_active),
        first_date=first_date,
        last_date=last_date,
        by_provider=by_provider,
        daily=daily
    )
