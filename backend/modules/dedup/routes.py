"""
Dedup cache API endpoints.

Mounted under /api/credits next to the balance endpoints.
"""

from fastapi import APIRouter, Depends

from api.middleware.auth import get_current_user
from api.dependencies import get_dedup_caches
from shared.models import AuthenticatedUser

from .interfaces import IDedupCache
from .models import CacheStats

router = APIRouter()


@router.get("/cache-stats", response_model=list[CacheStats])
async def get_cache_stats(
    user: AuthenticatedUser = Depends(get_current_user),
    caches: list[IDedupCache] = Depends(get_dedup_caches),
) -> list[CacheStats]:
    """Live entries and hit counts for the caller's account, one row per namespace."""
    return [await cache.get_stats(user.account_id) for cache in caches]
