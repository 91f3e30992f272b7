"""
Clock -- injectable time source.

Responsibility:
    Identifier dates, ``recorded_at`` ledger stamps and drift timestamps all
    come from a Clock passed in at construction time.  Nothing in the kernel
    calls ``datetime.now()`` or ``date.today()`` directly.

Architecture position:
    Kernel > Domain -- pure, except SystemClock which is the one place the
    kernel reads wall-clock time.

Audit relevance:
    ``recorded_at`` is the replay ordering key for the movement ledger, so
    deterministic clocks make as-of queries reproducible in tests.
"""

from abc import ABC, abstractmethod
from datetime import UTC, date, datetime, timedelta


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        - ``now()`` returns a timezone-aware UTC ``datetime``.
        - ``today()`` is the UTC calendar date of ``now()``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current UTC time."""
        ...

    def today(self) -> date:
        """Calendar date used for daily sequence partitions."""
        return self.now().date()


class SystemClock(Clock):
    """Production clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    ``now()`` returns the same value on repeated calls until ``advance()``,
    ``tick()`` or ``set_time()`` is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(2025, 1, 15, 9, 0, 0, tzinfo=UTC)
        if self._fixed_time.tzinfo is None:
            self._fixed_time = self._fixed_time.replace(tzinfo=UTC)
        self._advance = timedelta(0)

    def now(self) -> datetime:
        return (self._fixed_time + self._advance).astimezone(UTC)

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        if time.tzinfo is None:
            time = time.replace(tzinfo=UTC)
        self._fixed_time = time
        self._advance = timedelta(0)

    def advance(self, seconds: float = 1) -> None:
        """Move the clock forward by ``seconds``."""
        self._advance += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        self.advance(1)
        return self.now()
