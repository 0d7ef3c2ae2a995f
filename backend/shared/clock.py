"""
Time source shared by the ledger, caches and meter.

Services take a ``Clock`` callable so tests can move time forward
without sleeping.
"""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def start_of_month(moment: datetime) -> datetime:
    """Midnight on the first day of ``moment``'s month (same tz)."""
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
