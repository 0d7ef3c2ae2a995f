"""
Common base for the Supabase-backed stores.

Concrete repositories (transaction log, dedup cache, payment applier)
hold the service-role client and translate PostgREST rows into the
module's pydantic models themselves.
"""

from datetime import datetime
from typing import Any, Callable, Generic, Optional, TypeVar

from supabase import Client

T = TypeVar("T")

# Supabase's default max_rows; unranged selects are silently cut there
PAGE_SIZE = 1000


class BaseRepository(Generic[T]):
    """
    Holds the Supabase client as ``self._db``.

    ``T`` is the model the repository returns, for type hints only.
    Multi-row writes that must be atomic go through ``self._db.rpc(...)``
    so the locking happens inside one Postgres transaction.
    """

    def __init__(self, db: Client, page_size: int = PAGE_SIZE) -> None:
        self._db = db
        self._page_size = page_size

    def _fetch_all(self, build_query: Callable[[], Any], start: int = 0) -> list[dict[str, Any]]:
        """
        Read every row of an ordered select, one ``.range()`` page at a time.

        ``build_query`` must return a fresh, deterministically ordered
        builder on each call. Paging stops at the first empty page, so a
        server ``max_rows`` below the page size still yields every row.
        """
        rows: list[dict[str, Any]] = []
        offset = start
        while True:
            page = build_query().range(offset, offset + self._page_size - 1).execute().data or []
            if not page:
                return rows
            rows.extend(page)
            offset += len(page)

    @staticmethod
    def _parse_timestamp(value: str) -> datetime:
        """PostgREST timestamptz (possibly 'Z'-suffixed) to an aware datetime."""
        return datetime.fromisoformat(value.replace("Z", "+00:00"))

    @classmethod
    def _parse_optional_timestamp(cls, value: Optional[str]) -> Optional[datetime]:
        return cls._parse_timestamp(value) if value else None
