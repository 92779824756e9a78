"""
Platform usage endpoint.

Validates query parameters, builds the usage report and maps failures to
HTTP status codes.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, Mapping, Tuple, Union

from usage_meter.core.period import parse_period
from usage_meter.core.report import build_report
from usage_meter.storage.repository import UsageRepository

logger = logging.getLogger(__name__)

HTTP_OK = 200
HTTP_BAD_REQUEST = 400
HTTP_SERVER_ERROR = 500


def parse_tenant_id(value: Any) -> int:
    """Parse an integer-like tenant identifier.

    Raises:
        ValueError: If the value is not a positive integer
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid tenant id: {value!r}")
    if isinstance(value, int):
        tenant_id = value
    else:
        tenant_id = int(str(value).strip())
    if tenant_id <= 0:
        raise ValueError(f"Invalid tenant id: {value!r}")
    return tenant_id


def get_platform_usage(
    query: Mapping[str, Any],
    repository: UsageRepository,
    now: Union[datetime, date]
) -> Tuple[int, Dict[str, Any]]:
    """Handle a usage report request.

    Args:
        query: Request parameters (businessId, optional period)
        repository: Usage store to read
        now: Request time

    Returns:
        (status, body) where body is the report or an error object
    """
    business_id = query.get("businessId")
    if business_id is None or str(business_id).strip() == "":
        return HTTP_BAD_REQUEST, {"error": "businessId is required"}

    try:
        tenant_id = parse_tenant_id(business_id)
    except ValueError:
        return HTTP_BAD_REQUEST, {"error": "Invalid businessId"}

    try:
        selector = parse_period(query.get("period") or None)
    except ValueError as e:
        return HTTP_BAD_REQUEST, {"error": str(e)}

    try:
        body = build_report(repository, tenant_id, selector, now).to_dict()
    except Exception:
        logger.exception("Error fetching platform usage for tenant %s", tenant_id)
        return HTTP_SERVER_ERROR, {"error": "Failed to fetch platform usage"}

    return HTTP_OK, body
