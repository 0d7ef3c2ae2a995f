"""
In-memory dedup cache.

For testing and single-process deployments. Use SupabaseDedupCache for
production.
"""

import logging
from datetime import timedelta
from typing import Any, Optional

from shared.clock import Clock, utc_now

from .models import CacheEntry, CacheNamespace, CacheStats

logger = logging.getLogger(__name__)


class DedupCache:
    """
    Dedup cache held in process memory.

    Expired entries stay in the dict until ``purge_expired`` runs, but
    ``lookup`` treats them as absent.
    """

    def __init__(self, namespace: CacheNamespace, clock: Clock = utc_now):
        self._namespace = namespace
        self._clock = clock
        self._entries: dict[tuple[str, str], CacheEntry] = {}

    @property
    def namespace(self) -> CacheNamespace:
        return self._namespace

    async def lookup(self, account_id: str, fingerprint: str) -> Optional[CacheEntry]:
        key = (account_id, fingerprint)
        entry = self._entries.get(key)
        now = self._clock()
        if entry is None or entry.is_expired(now):
            logger.debug(f"{self._namespace.value} cache miss for {account_id}/{fingerprint[:12]}")
            return None

        entry = entry.model_copy(update={
            "access_count": entry.access_count + 1,
            "last_accessed_at": now,
        })
        self._entries[key] = entry
        logger.debug(f"{self._namespace.value} cache hit for {account_id}/{fingerprint[:12]}")
        return entry

    async def store(
        self,
        account_id: str,
        fingerprint: str,
        result: Any,
        ttl_seconds: int,
        result_count: int = 0,
    ) -> CacheEntry:
        now = self._clock()
        entry = CacheEntry(
            account_id=account_id,
            fingerprint=fingerprint,
            namespace=self._namespace,
            result=result,
            result_count=result_count,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        self._entries[(account_id, fingerprint)] = entry
        return entry

    async def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info(f"Purged {len(expired)} expired {self._namespace.value} cache entries")
        return len(expired)

    async def get_stats(self, account_id: str) -> CacheStats:
        now = self._clock()
        live = [
            entry
            for (owner, _), entry in self._entries.items()
            if owner == account_id and not entry.is_expired(now)
        ]
        hits = [entry.last_accessed_at for entry in live if entry.last_accessed_at]
        return CacheStats(
            account_id=account_id,
            namespace=self._namespace,
            entries=len(live),
            total_hits=sum(entry.access_count for entry in live),
            last_hit_at=max(hits) if hits else None,
        )
