"""
Error taxonomy for the sync engine

Remote failures are split by what the processor should do about them:
rate limits are paced, transient errors spend retry budget, permanent
errors fail the queue item right away.
"""
from typing import Optional


class CatalogSyncError(Exception):
    """Base class for all sync engine errors"""


class NotFoundError(CatalogSyncError):
    """A referenced record does not exist"""


class ValidationError(CatalogSyncError):
    """Inventory item is missing fields required for a remote sync"""

    def __init__(self, missing_fields):
        self.missing_fields = list(missing_fields)
        super().__init__(f"Missing required fields: {', '.join(self.missing_fields)}")


class RemoteCatalogError(CatalogSyncError):
    """Base class for failures reported by the remote catalog"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RateLimitError(RemoteCatalogError):
    """Remote catalog asked us to slow down (HTTP 429 / THROTTLED)"""

    def __init__(self, message: str = "RATE_LIMIT", status_code: Optional[int] = None,
                 retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message, status_code)


class TransientRemoteError(RemoteCatalogError):
    """Network failure, 5xx or an unrecognized error; safe to retry"""


class PermanentRemoteError(RemoteCatalogError):
    """Request rejected by the remote catalog; retrying will not help"""


class ConflictResolutionError(CatalogSyncError):
    """A conflict resolution could not be applied"""

    def __init__(self, message: str, code: str):
        self.code = code
        super().__init__(message)
