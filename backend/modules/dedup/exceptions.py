"""
Dedup module exceptions.

Cache failures never decide whether money moves: the caller logs them
and carries on without the cache.
"""

from typing import Optional

from shared.exceptions import CreditMeterError


class DedupCacheError(CreditMeterError):
    """Raised when the cache store cannot be read or written."""

    retryable = True

    def __init__(self, operation: str, reason: Optional[str] = None):
        super().__init__(
            f"Dedup cache {operation} failed" + (f": {reason}" if reason else ""),
            code="DEDUP_CACHE_ERROR",
            details={"operation": operation, "reason": reason},
        )
