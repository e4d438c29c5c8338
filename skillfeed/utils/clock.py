"""
Clock abstraction so the scheduler and health tracker can be driven by
tests without sleeping.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone


class Clock(ABC):
    """Source of the current UTC time."""

    @abstractmethod
    def now(self) -> datetime:
        """Current timezone-aware UTC time."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)
