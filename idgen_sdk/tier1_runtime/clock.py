"""
idgen_sdk.tier1_runtime.clock
──────────────────────────────
Mockable time source. The time-based generator reads wall-clock time and
waits for the next time unit only through a Clock, so tests can drive time
(including backwards jumps) without patching the time module.
"""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable

_NS_PER_SECOND = 1_000_000_000


# ── Clock implementation ───────────────────────────────────────────────────

class Clock:
    """Mockable clock. Override the time and sleep functions to control time in tests."""

    def __init__(
        self,
        time_ns_fn: Callable[[], int] | None = None,
        sleep_fn: Callable[[float], None] | None = None,
    ) -> None:
        self._time_ns_fn = time_ns_fn or time.time_ns
        self._sleep_fn = sleep_fn or time.sleep

    def time_ns(self) -> int:
        """Return nanoseconds since the Unix epoch."""
        return self._time_ns_fn()

    def now(self) -> datetime:
        """Return the current UTC datetime."""
        return datetime.fromtimestamp(self.time_ns() / _NS_PER_SECOND, tz=timezone.utc)

    def timestamp(self) -> float:
        """Return the current Unix timestamp (float seconds)."""
        return self.time_ns() / _NS_PER_SECOND

    def timestamp_ms(self) -> int:
        """Return the current Unix timestamp in milliseconds."""
        return self.time_ns() // 1_000_000

    def sleep(self, seconds: float) -> None:
        """Block for *seconds*."""
        self._sleep_fn(seconds)

    def freeze(self, dt: datetime) -> "Clock":
        """Return a new Clock frozen at the given datetime."""
        frozen = _datetime_to_ns(dt)
        return Clock(time_ns_fn=lambda: frozen, sleep_fn=self._sleep_fn)

    def advance(self, seconds: float) -> "Clock":
        """Return a new Clock running *seconds* ahead of this one."""
        offset = int(seconds * _NS_PER_SECOND)
        return Clock(time_ns_fn=lambda: self.time_ns() + offset, sleep_fn=self._sleep_fn)


def _datetime_to_ns(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    delta = dt - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta.days * 86_400 + delta.seconds) * _NS_PER_SECOND + delta.microseconds * 1000


# ── Module-level singleton ─────────────────────────────────────────────────

_clock = Clock()


def get_clock() -> Clock:
    """Return the global clock instance."""
    return _clock


def set_clock(clock: Clock) -> None:
    """Replace the global clock (use in tests)."""
    global _clock
    _clock = clock


def now() -> datetime:
    """Return the current UTC datetime."""
    return _clock.now()


def timestamp_ms() -> int:
    """Return the current Unix timestamp in milliseconds."""
    return _clock.timestamp_ms()


__all__ = ["Clock", "get_clock", "set_clock", "now", "timestamp_ms"]
