from datetime import datetime, timedelta, timezone
from typing import Protocol


def to_naive_utc(dt: datetime | None) -> datetime | None:
    """Convert an aware datetime to naive UTC (remove tzinfo). If already naive, assume UTC and return as-is.
    Returns None if input is None.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock. Timestamps are naive UTC to match what the DB stores."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock:
    """A clock that only moves when told to."""

    def __init__(self, current: datetime):
        self.current = to_naive_utc(current)

    def now(self) -> datetime:
        return self.current

    def set(self, current: datetime):
        self.current = to_naive_utc(current)

    def advance(self, **delta):
        self.current = self.current + timedelta(**delta)
        return self.current
