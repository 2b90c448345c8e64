"""Clock abstraction used for deadlines, expiry windows and local dates.

All timestamps in the engine are naive datetimes expressed in the platform's
local time (``settings.platform_timezone``). Slot dates and start times are
local too, so a booking deadline can be compared directly with ``now()``.
"""

from datetime import date, datetime, timedelta
from typing import Protocol
from zoneinfo import ZoneInfo

from .config import settings


class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        ...

    def today(self) -> date:
        ...


class SystemClock:
    """Wall clock in the platform timezone."""

    def __init__(self, timezone: str | None = None):
        self.tz = ZoneInfo(timezone or settings.platform_timezone)

    def now(self) -> datetime:
        return datetime.now(self.tz).replace(tzinfo=None)

    def today(self) -> date:
        return self.now().date()


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, current: datetime):
        self.current = current

    def now(self) -> datetime:
        return self.current

    def today(self) -> date:
        return self.current.date()

    def advance(self, **kwargs: float) -> datetime:
        """Move the clock forward by ``timedelta(**kwargs)``."""
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def set(self, current: datetime) -> None:
        self.current = current


system_clock = SystemClock()
