"""
Dedup module interface.

The metering module holds one IDedupCache per namespace.
"""

from typing import Any, Optional, Protocol, runtime_checkable

from .models import CacheEntry, CacheNamespace, CacheStats


@runtime_checkable
class IDedupCache(Protocol):
    """
    Maps (account, fingerprint) to a previously computed result.

    Lookups and stores are not linearizable with ledger operations.
    """

    @property
    def namespace(self) -> CacheNamespace:
        ...

    async def lookup(self, account_id: str, fingerprint: str) -> Optional[CacheEntry]:
        """
        Find a live entry.

        A hit increments the entry's access_count.

        Returns:
            The entry, or None if missing or expired

        Raises:
            DedupCacheError: If the store cannot be read
        """
        ...

    async def store(
        self,
        account_id: str,
        fingerprint: str,
        result: Any,
        ttl_seconds: int,
        result_count: int = 0,
    ) -> CacheEntry:
        """
        Store a result, replacing any entry for the same key.

        Raises:
            DedupCacheError: If the store cannot be written
        """
        ...

    async def purge_expired(self) -> int:
        """Delete expired entries; returns how many were removed."""
        ...

    async def get_stats(self, account_id: str) -> CacheStats:
        """Live entry count and hit totals for an account."""
        ...
