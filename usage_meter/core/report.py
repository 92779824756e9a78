"""
Usage report assembly.

Composes period resolution, aggregation and budget evaluation into a
single report. Values are kept at full precision on the report object;
rounding happens only when it is serialized.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Union

from usage_meter.storage.repository import UsageRepository
from .aggregation import (
    DailyUsage,
    ProviderTotals,
    UsageTotals,
    aggregate_by_provider,
    daily_breakdown,
    sum_totals,
)
from .budget import BudgetWarning, evaluate_budgets
from .errors import TenantNotFoundError
from .period import PeriodBounds, PeriodSelector, resolve_period

logger = logging.getLogger(__name__)

_CENTS = Decimal("0.01")
_TENTHS = Decimal("0.1")


def round_currency(amount: Decimal) -> float:
    """Round a monetary amount to 2 decimal places, half up."""
    return float(amount.quantize(_CENTS, rounding=ROUND_HALF_UP))


def round_percent(percent: Decimal) -> float:
    """Round a percentage to 1 decimal place, half up."""
    return float(percent.quantize(_TENTHS, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class UsageReport:
    """Usage of one tenant over a period, with current budget warnings."""
    tenant_id: int
    period: str
    bounds: PeriodBounds
    aggregate: UsageTotals
    by_provider: List[ProviderTotals] = field(default_factory=list)
    daily: List[DailyUsage] = field(default_factory=list)
    budget_warnings: List[BudgetWarning] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-shaped form with the field names consumers rely on."""
        return {
            "businessId": self.tenant_id,
            "period": self.period,
            "aggregate": {
                "totalTokens": self.aggregate.total_tokens,
                "totalRequests": self.aggregate.request_count,
                "estimatedCostUsd": round_currency(self.aggregate.estimated_cost),
            },
            "byPlatform": [
                {
                    "platformId": p.provider_id,
                    "platformName": p.provider_name,
                    **_totals_dict(p.totals),
                }
                for p in self.by_provider
            ],
            "daily": [
                {
                    "date": d.date.isoformat(),
                    "platformId": d.provider_id,
                    "platformName": d.provider_name,
                    **_totals_dict(d.totals),
                }
                for d in self.daily
            ],
            "budgetWarnings": [
                {
                    "platformId": w.provider_id,
                    "platformName": w.provider_name,
                    "budgetLimit": round_currency(w.budget_limit),
                    "warningThreshold": w.warning_threshold_percent,
                    "currentMonthCost": round_currency(w.current_month_cost),
                    "usagePercent": round_percent(w.usage_percent),
                    "isWarning": w.is_warning,
                    "isExceeded": w.is_exceeded,
                }
                for w in self.budget_warnings
            ],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def _totals_dict(totals: UsageTotals) -> Dict[str, Any]:
    return {
        "promptTokens": totals.prompt_tokens,
        "completionTokens": totals.completion_tokens,
        "totalTokens": totals.total_tokens,
        "requestCount": totals.request_count,
        "estimatedCostUsd": round_currency(totals.estimated_cost),
    }


def build_report(
    repository: UsageRepository,
    tenant_id: int,
    selector: PeriodSelector,
    now: Union[datetime, date],
    strict_tenant: bool = False
) -> UsageReport:
    """Build a usage report for a tenant.

    The period is resolved once and the same bounds feed both the
    per-provider totals and the daily breakdown. Budgets are always
    evaluated for the current UTC month, whatever period was requested.

    Failure policy:
    - Aggregation errors propagate; a report is never built on partial totals.
    - Budget evaluation errors are logged and give an empty warning list.
    - An unknown tenant gives an empty report unless strict_tenant is set.

    Args:
        repository: Usage store to read
        tenant_id: Tenant to report on (already authorized by the caller)
        selector: Requested period
        now: Current instant, supplied by the caller
        strict_tenant: Raise TenantNotFoundError instead of returning an
            empty report for tenants without a usage partition

    Returns:
        UsageReport at full precision

    Raises:
        InvalidRangeError: If an explicit period starts after it ends
        TenantNotFoundError: If strict_tenant is set and the tenant is unknown
        StorageUnavailableError: If usage cannot be read
    """
    bounds = resolve_period(selector, now)

    try:
        by_provider = aggregate_by_provider(repository, tenant_id, bounds)
        daily = daily_breakdown(repository, tenant_id, bounds)
    except TenantNotFoundError:
        if strict_tenant:
            raise
        logger.info("Tenant %s has no usage partition; returning an empty report", tenant_id)
        by_provider, daily = [], []

    try:
        warnings = evaluate_budgets(repository, tenant_id, now)
    except Exception:
        logger.warning(
            "Budget evaluation failed for tenant %s; reporting without warnings",
            tenant_id,
            exc_info=True
        )
        warnings = []

    return UsageReport(
        tenant_id=tenant_id,
        period=selector.name,
        bounds=bounds,
        aggregate=sum_totals(p.totals for p in by_provider),
        by_provider=by_provider,
        daily=daily,
        budget_warnings=warnings
    )
