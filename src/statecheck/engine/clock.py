# src/statecheck/engine/clock.py
"""Clock abstraction and deadlines for testable waiting.

Every wait in a verification run (job running, source finished, snapshot
materialized) draws on one Deadline established at the start of the run.
The Deadline reads time through a Clock so tests can drive it with
MockClock instead of sleeping.

SystemClock is the default; coordinator and harness tests pass MockClock.
"""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Abstract clock for timeout-based operations."""

    def monotonic(self) -> float:
        """Seconds on a monotonic scale.

        Must never go backwards. Corresponds to time.monotonic().
        """
        ...


class SystemClock:
    """Production clock using time.monotonic()."""

    def monotonic(self) -> float:
        return time.monotonic()


class MockClock:
    """Clock that only moves when told to.

    Example:
        clock = MockClock(start=0.0)
        deadline = Deadline.from_now(1.0, clock=clock)

        clock.advance(0.5)
        assert deadline.time_left() == 0.5

        clock.advance(0.6)
        assert not deadline.has_time_left()
    """

    def __init__(self, start: float = 0.0) -> None:
        self._current = start

    def monotonic(self) -> float:
        return self._current

    def advance(self, seconds: float) -> None:
        """Move time forward, as an injected sleep would.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        self._current += seconds


class Deadline:
    """A fixed point in monotonic time shared by a sequence of waits.

    Waits never get their own budget; each one asks the deadline how much
    time is left, so the cumulative latency of the sequence is bounded.
    """

    def __init__(self, expires_at: float, clock: Clock) -> None:
        self._expires_at = expires_at
        self._clock = clock

    @classmethod
    def from_now(cls, seconds: float, clock: Clock | None = None) -> Deadline:
        """Create a deadline `seconds` from the clock's current time."""
        if seconds <= 0:
            raise ValueError(f"Deadline duration must be positive, got {seconds}")
        clock = clock if clock is not None else DEFAULT_CLOCK
        return cls(clock.monotonic() + seconds, clock)

    @property
    def clock(self) -> Clock:
        return self._clock

    def time_left(self) -> float:
        """Seconds remaining, never negative."""
        return max(0.0, self._expires_at - self._clock.monotonic())

    def has_time_left(self) -> bool:
        return self._clock.monotonic() < self._expires_at

    def is_overdue(self) -> bool:
        return not self.has_time_left()


# Used when no clock is injected
DEFAULT_CLOCK: Clock = SystemClock()
