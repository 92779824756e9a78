"""
Framework-neutral request handlers.

Each handler takes already-authorized request data and returns an
(HTTP status, JSON-shaped body) pair for the hosting web layer.
"""

from .budget import update_platform_budget
from .platform_usage import get_platform_usage
from .statistics import get_usage_statistics

__all__ = ["get_platform_usage", "get_usage_statistics", "update_platform_budget"]
