"""Clock source for receipt and move timestamps."""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Express a timestamp in UTC. Naive values are taken to be UTC already.

    SQLite keeps only the wall-clock part of a datetime, so every stored
    timestamp must share one offset for FIFO ordering to hold.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
