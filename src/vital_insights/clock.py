"""Clock abstraction so age, window and expiry logic can be frozen in tests."""

from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Anything that can tell the current time."""

    def now(self) -> datetime:
        """Return the current, timezone-aware UTC time."""
        ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """A clock pinned to a fixed instant; ``advance`` moves it forward."""

    def __init__(self, instant: Optional[datetime] = None) -> None:
        self._instant = ensure_utc(instant or datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._instant

    def advance(self, **kwargs) -> datetime:
        """Move the clock forward by a ``timedelta(**kwargs)``."""
        self._instant = self._instant + timedelta(**kwargs)
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = ensure_utc(instant)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
