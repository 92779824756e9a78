"""
Error taxonomy for the metering core.
"""


class MeteringError(Exception):
    """Base class for all metering failures."""


class InvalidRangeError(MeteringError, ValueError):
    """Raised when an explicit period starts after it ends."""

    def __init__(self, start, end):
        super().__init__(f"Invalid period: start {start} is after end {end}")
        self.start = start
        self.end = end


class TenantNotFoundError(MeteringError, LookupError):
    """Raised when a tenant has no usage partition at all."""

    def __init__(self, tenant_id: int):
        super().__init__(f"Unknown tenant: {tenant_id}")
        self.tenant_id = tenant_id


class StorageUnavailableError(MeteringError):
    """Raised when the usage store cannot be read or written."""
