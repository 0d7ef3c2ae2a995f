"""
Scheduled purge of expired dedup entries.

Lookups already ignore expired rows, so the reaper only bounds storage.
The API process runs it on an interval; run_reconciliation.py --purge-cache
runs one pass from cron.
"""

import logging
from typing import Iterable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .exceptions import DedupCacheError
from .interfaces import IDedupCache

logger = logging.getLogger(__name__)

JOB_ID = "purge_expired_dedup_entries"


async def purge_caches(caches: Iterable[IDedupCache]) -> dict[str, int]:
    """
    Purge every cache once.

    A namespace that fails is logged and skipped; the others still run.

    Returns:
        Entries removed per namespace value (failed namespaces omitted)
    """
    purged: dict[str, int] = {}
    for cache in caches:
        try:
            purged[cache.namespace.value] = await cache.purge_expired()
        except DedupCacheError as e:
            logger.error(f"Purge of {cache.namespace.value} cache failed: {e}")
    logger.info(f"Dedup purge pass removed {sum(purged.values())} entries: {purged}")
    return purged


class CacheReaper:
    """
    Runs ``purge_caches`` every ``interval_seconds`` on the running event loop.

    Example:
        reaper = CacheReaper([no_recharge, throttle], interval_seconds=3600)
        reaper.start()
        ...
        reaper.shutdown()
    """

    def __init__(self, caches: Iterable[IDedupCache], interval_seconds: int):
        self._caches = list(caches)
        self._interval = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def run_once(self) -> dict[str, int]:
        return await purge_caches(self._caches)

    def start(self) -> None:
        """Schedule the purge job. Must be called with an event loop running."""
        if self.running:
            return
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(seconds=self._interval),
            id=JOB_ID,
            name="Purge expired dedup cache entries",
            replace_existing=True,
            max_instances=1,
        )
        self._scheduler.start()
        logger.info(f"Dedup reaper started, every {self._interval}s")

    def shutdown(self) -> None:
        if self.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Dedup reaper stopped")
        self._scheduler = None
