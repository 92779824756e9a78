"""
Usage Meter.

Per-tenant usage metering and budget alerting for external AI providers.
"""

__version__ = "0.1.0"
