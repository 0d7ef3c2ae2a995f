"""
Supabase-backed dedup cache.

Both namespaces share the dedup_cache table, keyed by
(namespace, account_id, fingerprint).
"""

import logging
from datetime import timedelta
from typing import Any, Optional

import httpx
from fastapi.encoders import jsonable_encoder
from postgrest.exceptions import APIError
from supabase import Client

from shared.clock import Clock, utc_now
from shared.repository import PAGE_SIZE, BaseRepository

from .models import CacheEntry, CacheNamespace, CacheStats
from .exceptions import DedupCacheError

logger = logging.getLogger(__name__)


class SupabaseDedupCache(BaseRepository[CacheEntry]):
    """Dedup cache stored in the dedup_cache table."""

    table = "dedup_cache"

    def __init__(
        self,
        db: Client,
        namespace: CacheNamespace,
        clock: Clock = utc_now,
        page_size: int = PAGE_SIZE,
    ):
        super().__init__(db, page_size=page_size)
        self._namespace = namespace
        self._clock = clock

    @property
    def namespace(self) -> CacheNamespace:
        return self._namespace

    async def lookup(self, account_id: str, fingerprint: str) -> Optional[CacheEntry]:
        now = self._clock()
        try:
            result = (
                self._db.table(self.table)
                .select("*")
                .eq("namespace", self._namespace.value)
                .eq("account_id", account_id)
                .eq("fingerprint", fingerprint)
                .gte("expires_at", now.isoformat())
                .execute()
            )
            if not result.data:
                logger.debug(f"{self._namespace.value} cache miss for {account_id}/{fingerprint[:12]}")
                return None

            row = result.data[0]
            access_count = (row.get("access_count") or 0) + 1
            self._db.table(self.table).update({
                "access_count": access_count,
                "last_accessed_at": now.isoformat(),
            }).eq("id", row["id"]).execute()
        except (APIError, httpx.HTTPError) as e:
            raise DedupCacheError("lookup", str(e)) from e

        row = {**row, "access_count": access_count, "last_accessed_at": now.isoformat()}
        logger.debug(f"{self._namespace.value} cache hit for {account_id}/{fingerprint[:12]}")
        return self._map_to_entry(row)

    async def store(
        self,
        account_id: str,
        fingerprint: str,
        result: Any,
        ttl_seconds: int,
        result_count: int = 0,
    ) -> CacheEntry:
        try:
            payload = jsonable_encoder(result)
        except (TypeError, ValueError) as e:
            raise DedupCacheError("store", f"result is not JSON-encodable: {e}") from e

        now = self._clock()
        data = {
            "namespace": self._namespace.value,
            "account_id": account_id,
            "fingerprint": fingerprint,
            "result": payload,
            "result_count": result_count,
            "created_at": now.isoformat(),
            "expires_at": (now + timedelta(seconds=ttl_seconds)).isoformat(),
            "access_count": 0,
            "last_accessed_at": None,
        }
        try:
            response = (
                self._db.table(self.table)
                .upsert(data, on_conflict="namespace,account_id,fingerprint")
                .execute()
            )
        except (APIError, httpx.HTTPError) as e:
            raise DedupCacheError("store", str(e)) from e
        return self._map_to_entry(response.data[0] if response.data else data)

    async def purge_expired(self) -> int:
        try:
            result = (
                self._db.table(self.table)
                .delete()
                .eq("namespace", self._namespace.value)
                .lt("expires_at", self._clock().isoformat())
                .execute()
            )
        except (APIError, httpx.HTTPError) as e:
            raise DedupCacheError("purge", str(e)) from e
        purged = len(result.data or [])
        if purged:
            logger.info(f"Purged {purged} expired {self._namespace.value} cache entries")
        return purged

    async def get_stats(self, account_id: str) -> CacheStats:
        now = self._clock().isoformat()
        try:
            rows = self._fetch_all(
                lambda: self._db.table(self.table)
                .select("access_count, last_accessed_at")
                .eq("namespace", self._namespace.value)
                .eq("account_id", account_id)
                .gte("expires_at", now)
                .order("fingerprint")
            )
        except (APIError, httpx.HTTPError) as e:
            raise DedupCacheError("stats", str(e)) from e

        hits = [
            self._parse_timestamp(row["last_accessed_at"])
            for row in rows
            if row.get("last_accessed_at")
        ]
        return CacheStats(
            account_id=account_id,
            namespace=self._namespace,
            entries=len(rows),
            total_hits=sum(row.get("access_count") or 0 for row in rows),
            last_hit_at=max(hits) if hits else None,
        )

    def _map_to_entry(self, row: dict[str, Any]) -> CacheEntry:
        """Map a dedup_cache row to a CacheEntry model."""
        return CacheEntry(
            account_id=row["account_id"],
            fingerprint=row["fingerprint"],
            namespace=CacheNamespace(row["namespace"]),
            result=row.get("result"),
            result_count=row.get("result_count") or 0,
            created_at=self._parse_timestamp(row["created_at"]),
            expires_at=self._parse_timestamp(row["expires_at"]),
            access_count=row.get("access_count") or 0,
            last_accessed_at=self._parse_optional_timestamp(row.get("last_accessed_at")),
        )
