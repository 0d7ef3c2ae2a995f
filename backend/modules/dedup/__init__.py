"""
Dedup module.

Suppresses re-billing of repeated operations. Two independent namespaces:
a long no-recharge cache that decides billing and a short throttle cache
that only drives the cooldown shown to users.

Public API:
- IDedupCache: Interface for cache storage
- DedupCache: In-memory implementation
- SupabaseDedupCache: Postgres implementation
- compute_fingerprint, normalize_term: Request fingerprinting
- CacheReaper, purge_caches: Scheduled removal of expired entries
- Models: CacheEntry, CacheNamespace, CacheStats
- Exceptions: DedupCacheError
"""

from .interfaces import IDedupCache
from .models import CacheEntry, CacheNamespace, CacheStats
from .exceptions import DedupCacheError
from .fingerprint import compute_fingerprint, normalize_term
from .service import DedupCache
from .repository import SupabaseDedupCache
from .reaper import CacheReaper, purge_caches

__all__ = [
    "IDedupCache",
    "CacheEntry",
    "CacheNamespace",
    "CacheStats",
    "DedupCacheError",
    "compute_fingerprint",
    "normalize_term",
    "DedupCache",
    "SupabaseDedupCache",
    "CacheReaper",
    "purge_caches",
]
