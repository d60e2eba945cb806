"""
Clocks used by the store to stamp created_at / updated_at.

The store never reads system time directly; it asks an injected clock.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional


Clock = Callable[[], datetime]

_TICK = timedelta(microseconds=1)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class MonotonicClock:
    """
    UTC wall clock that never goes backwards and never repeats.

    Two readings taken within the same microsecond (or across a system
    clock adjustment) are pushed forward by one microsecond, so records
    created in sequence always have strictly increasing timestamps.
    """

    def __init__(self, source: Optional[Clock] = None):
        self._source = source or (lambda: datetime.now(timezone.utc))
        self._last: Optional[datetime] = None
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            current = ensure_utc(self._source())
            if self._last is not None and current <= self._last:
                current = self._last + _TICK
            self._last = current
            return current
