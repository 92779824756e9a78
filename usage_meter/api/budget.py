"""
Platform budget endpoint.

Validates and stores a tenant's monthly budget for one provider.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Tuple

from usage_meter.storage.models import DEFAULT_WARNING_THRESHOLD_PERCENT, ProviderBudget
from usage_meter.storage.repository import UsageRepository
from .platform_usage import HTTP_BAD_REQUEST, HTTP_OK, HTTP_SERVER_ERROR, parse_tenant_id

logger = logging.getLogger(__name__)


def parse_budget_limit(value: Any) -> Optional[Decimal]:
    """Parse a budget limit; None or an empty string removes the limit.

    Raises:
        ValueError: If the value is not a finite number >= 0
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("Invalid budget limit")
    try:
        limit = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError("Invalid budget limit") from e
    if not limit.is_finite() or limit < 0:
        raise ValueError("Invalid budget limit")
    return limit


def parse_warning_threshold(value: Any, default: int) -> int:
    """Parse a warning threshold percentage; missing values take the default.

    Raises:
        ValueError: If the value is not an integer between 1 and 100
    """
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValueError("Warning threshold must be between 1 and 100")
    try:
        threshold = int(str(value).strip())
    except ValueError as e:
        raise ValueError("Warning threshold must be between 1 and 100") from e
    if not 1 <= threshold <= 100:
        raise ValueError("Warning threshold must be between 1 and 100")
    return threshold


def update_platform_budget(
    body: Mapping[str, Any],
    repository: UsageRepository,
    default_threshold: int = DEFAULT_WARNING_THRESHOLD_PERCENT
) -> Tuple[int, Dict[str, Any]]:
    """Handle a budget update request.

    Args:
        body: Request body (businessId, platformId, budgetLimit,
            warningThreshold, optional platformName)
        repository: Store holding the budget configuration
        default_threshold: Threshold used when none is given

    Returns:
        (status, body) pair
    """
    if body.get("businessId") in (None, ""):
        return HTTP_BAD_REQUEST, {"error": "businessId is required"}
    try:
        tenant_id = parse_tenant_id(body["businessId"])
    except ValueError:
        return HTTP_BAD_REQUEST, {"error": "Invalid businessId"}

    platform_id = body.get("platformId")
    if platform_id is None or str(platform_id).strip() == "":
        return HTTP_BAD_REQUEST, {"error": "platformId is required"}

    try:
        budget_limit = parse_budget_limit(body.get("budgetLimit"))
        threshold = parse_warning_threshold(body.get("warningThreshold"), default_threshold)
    except ValueError as e:
        return HTTP_BAD_REQUEST, {"error": str(e)}

    budget = ProviderBudget(
        tenant_id=tenant_id,
        provider_id=str(platform_id).strip(),
        budget_limit=budget_limit,
        warning_threshold_percent=threshold,
        display_name=body.get("platformName") or None
    )

    try:
        repository.set_provider_budget(budget)
    except Exception:
        logger.exception("Error updating budget for tenant %s provider %s", tenant_id, platform_id)
        return HTTP_SERVER_ERROR, {"error": "Failed to update budget"}

    return HTTP_OK, {"success": True, "message": "Budget updated successfully"}
