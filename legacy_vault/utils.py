"""Identifiers, clocks and duration helpers.

All timestamps handled by the vault are integer nanoseconds since the
Unix epoch, and all durations are integer nanoseconds.
"""
import time
import uuid
from typing import Protocol

NANOS_PER_SECOND = 1_000_000_000
NANOS_PER_DAY = 86_400 * NANOS_PER_SECOND


def new_id() -> str:
    """Return a fresh opaque identifier."""
    return uuid.uuid4().hex


def seconds(value: int) -> int:
    return int(value) * NANOS_PER_SECOND


def days(value: int) -> int:
    return int(value) * NANOS_PER_DAY


class Clock(Protocol):
    """Source of the current time in nanoseconds."""

    def now(self) -> int:
        ...


class SystemClock:
    """Wall-clock time that never goes backwards within this process.

    A wall clock may be stepped back by NTP; the last reading is kept
    so that successive ``now()`` calls are non-decreasing.
    """

    def __init__(self) -> None:
        self._last = 0

    def now(self) -> int:
        current = time.time_ns()
        if current < self._last:
            return self._last
        self._last = current
        return current


class ManualClock:
    """Clock driven by the caller, for replaying time or testing."""

    def __init__(self, start: int = 0) -> None:
        self._now = int(start)

    def now(self) -> int:
        return self._now

    def advance(self, delta: int) -> int:
        """Move the clock forward by ``delta`` nanoseconds."""
        if delta < 0:
            raise ValueError("ManualClock cannot move backwards")
        self._now += int(delta)
        return self._now

    def set(self, value: int) -> None:
        if value < self._now:
            raise ValueError("ManualClock cannot move backwards")
        self._now = int(value)
