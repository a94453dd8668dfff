"""
Injectable time source for the stock ledger.

Services that stamp or window by time (void trail, repair markers, the
suspicious-activity and investigation windows) take a Clock rather than
reading the system time, so posting and reconciliation runs can be
pinned to an instant.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

EPOCH = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Returns timezone-aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime: ...

    def days_ago(self, days: int) -> datetime:
        """Start of a look-back window of ``days`` ending now."""
        return self.now() - timedelta(days=days)


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock frozen at ``start`` (EPOCH by default) until moved explicitly.

    ``advance(days=2)`` accepts the same keywords as ``timedelta``.
    """

    def __init__(self, start: datetime | None = None):
        self._current = (start or EPOCH).astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current

    def advance(self, **delta: float) -> datetime:
        self._current += timedelta(**delta)
        return self._current

    def set_time(self, when: datetime) -> None:
        if when.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware datetime")
        self._current = when.astimezone(timezone.utc)
