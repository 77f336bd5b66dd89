"""
Clock abstraction so time-dependent logic can be driven deterministically.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of the current instant."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current instant as a timezone-aware datetime."""
        pass


class RealClock(Clock):
    """Reads system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FakeClock(Clock):
    """Returns an injected instant until told otherwise."""

    def __init__(self, instant: datetime):
        self.instant = instant

    def now(self) -> datetime:
        return self.instant

    def advance(self, seconds: float):
        self.instant = self.instant + timedelta(seconds=seconds)
