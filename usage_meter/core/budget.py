"""
Budget evaluation.

Compares each provider's current-month cost with the tenant's configured
monthly budget and reports the providers at or above their warning
threshold, most urgent first.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import List, Union

from usage_meter.storage.models import ProviderBudget
from usage_meter.storage.repository import UsageRepository
from .aggregation import aggregate_by_provider
from .errors import TenantNotFoundError
from .period import current_month_bounds

logger = logging.getLogger(__name__)

_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class BudgetWarning:
    """A provider whose current-month cost reached its warning threshold."""
    provider_id: str
    provider_name: str
    budget_limit: Decimal
    warning_threshold_percent: int
    current_month_cost: Decimal
    usage_percent: Decimal
    is_warning: bool
    is_exceeded: bool


def compute_usage_percent(cost: Decimal, budget_limit: Decimal) -> Decimal:
    """Percentage of the budget consumed.

    A zero budget has no usable ceiling and always yields 0.
    """
    if budget_limit <= 0:
        return Decimal("0")
    return cost / budget_limit * _HUNDRED


def check_budget(budget: ProviderBudget, current_month_cost: Decimal) -> BudgetWarning:
    """Evaluate one limited budget against the cost spent so far this month.

    Raises:
        ValueError: If the budget has no limit
    """
    if budget.budget_limit is None:
        raise ValueError(f"Provider {budget.provider_id} has no budget limit")

    usage_percent = compute_usage_percent(current_month_cost, budget.budget_limit)
    return BudgetWarning(
        provider_id=budget.provider_id,
        provider_name=budget.name,
        budget_limit=budget.budget_limit,
        warning_threshold_percent=budget.warning_threshold_percent,
        current_month_cost=current_month_cost,
        usage_percent=usage_percent,
        is_warning=usage_percent >= budget.warning_threshold_percent,
        is_exceeded=usage_percent >= _HUNDRED
    )


def evaluate_budgets(
    repository: UsageRepository,
    tenant_id: int,
    now: Union[datetime, date]
) -> List[BudgetWarning]:
    """Evaluate all of a tenant's limited budgets for the current UTC month.

    Unlimited budgets are never evaluated. Budgets below their warning
    threshold are left out of the result.

    Args:
        repository: Store holding usage and budget configuration
        tenant_id: Tenant to evaluate
        now: Current instant, supplied by the caller

    Returns:
        Triggered warnings ordered by usage_percent descending,
        ties broken by provider_id ascending

    Raises:
        StorageUnavailableError: If the store cannot be read
    """
    budgets = repository.get_provider_budgets(tenant_id, limited_only=True)
    if not budgets:
        return []

    try:
        month_totals = aggregate_by_provider(repository, tenant_id, current_month_bounds(now))
    except TenantNotFoundError:
        logger.debug("Tenant %s has no usage partition; month cost is zero", tenant_id)
        month_totals = []

    month_cost = {p.provider_id: p.totals.estimated_cost for p in month_totals}

    warnings = []
    for budget in budgets:
        result = check_budget(budget, month_cost.get(budget.provider_id, Decimal("0")))
        if result.is_warning or result.is_exceeded:
            warnings.append(result)

    warnings.sort(key=lambda w: w.provider_id)
    warnings.sort(key=lambda w: w.usage_percent, reverse=True)

    if warnings:
        logger.info(
            "Tenant %s has %d budget warning(s), %d exceeded",
            tenant_id, len(warnings), sum(1 for w in warnings if w.is_exceeded)
        )
    return warnings
