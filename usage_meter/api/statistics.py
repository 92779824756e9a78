"""
Usage statistics endpoint.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, Mapping, Tuple, Union

from usage_meter.core.statistics import usage_statistics
from usage_meter.storage.repository import UsageRepository
from .platform_usage import HTTP_BAD_REQUEST, HTTP_OK, HTTP_SERVER_ERROR, parse_tenant_id

logger = logging.getLogger(__name__)


def get_usage_statistics(
    query: Mapping[str, Any],
    repository: UsageRepository,
    now: Union[datetime, date]
) -> Tuple[int, Dict[str, Any]]:
    """Handle a usage statistics request.

    Args:
        query: Request parameters (businessId)
        repository: Usage store to read
        now: Request time

    Returns:
        (status, body) where body is the statistics or an error object
    """
    business_id = query.get("businessId")
    if business_id is None or str(business_id).strip() == "":
        return HTTP_BAD_REQUEST, {"error": "businessId is required"}

    try:
        tenant_id = parse_tenant_id(business_id)
    except ValueError:
        return HTTP_BAD_REQUEST, {"error": "Invalid businessId"}

    try:
        body = usage_statistics(repository, tenant_id, now).to_dict()
    except Exception:
        logger.exception("Error fetching usage statistics for tenant %s", tenant_id)
        return HTTP_SERVER_ERROR, {"error": "Failed to fetch usage statistics"}

    return HTTP_OK, body
