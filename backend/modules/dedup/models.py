"""
Dedup cache data models.

A cache entry remembers the result of an operation for one account and
fingerprint until ``expires_at``. Expiry is always decided by comparing
timestamps at lookup time.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class CacheNamespace(str, Enum):
    """Independent caches with different lifetimes and meanings."""

    NO_RECHARGE = "no_recharge"  # Authoritative: suppresses re-billing
    THROTTLE = "throttle"        # Advisory: drives the user-facing cooldown


class CacheEntry(BaseModel):
    """A cached operation result."""

    account_id: str = Field(..., description="Account ID")
    fingerprint: str = Field(..., description="Operation fingerprint")
    namespace: CacheNamespace = Field(..., description="Cache namespace")
    result: Any = Field(None, description="Opaque result payload")
    result_count: int = Field(default=0, ge=0, description="Number of results")
    created_at: datetime = Field(..., description="When the entry was stored")
    expires_at: datetime = Field(..., description="Entry is absent after this time")
    access_count: int = Field(default=0, ge=0, description="Cache hits served")
    last_accessed_at: Optional[datetime] = Field(None, description="Most recent hit")

    model_config = {"frozen": True}

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def seconds_remaining(self, now: datetime) -> int:
        return max(0, int((self.expires_at - now).total_seconds()))


class CacheStats(BaseModel):
    """Cache usage for one account."""

    account_id: str = Field(..., description="Account ID")
    namespace: CacheNamespace = Field(..., description="Cache namespace")
    entries: int = Field(default=0, description="Live entries")
    total_hits: int = Field(default=0, description="Hits served from live entries")
    last_hit_at: Optional[datetime] = Field(None, description="Most recent hit")
