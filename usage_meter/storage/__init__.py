"""
Storage layer for the usage meter.

Per-day usage counters and tenant provider configuration in SQLite.
"""
