"""
Server clock for `*_at` fields.

Timestamps are always assigned here, never taken from callers. Within one
process successive readings are strictly increasing even if the wall clock
steps backwards.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

_ONE_TICK = timedelta(microseconds=1)


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return ensure_utc(value).isoformat() if value is not None else None


def from_iso(value: Optional[str]) -> Optional[datetime]:
    return ensure_utc(datetime.fromisoformat(value)) if value else None


class ServerClock:
    """
    Monotonic UTC clock.

    Parameters
    ----------
    source:
        Wall-clock source; tests inject a fixed or stepping function.
    """

    def __init__(self, source: Callable[[], datetime] = utc_now) -> None:
        self._source = source
        self._last: Optional[datetime] = None
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            current = ensure_utc(self._source())
            if self._last is not None and current <= self._last:
                current = self._last + _ONE_TICK
            self._last = current
            return current


default_clock = ServerClock()
