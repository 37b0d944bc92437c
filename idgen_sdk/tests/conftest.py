"""
idgen_sdk test configuration.

All tests run against in-memory stores and controllable clocks by default;
no external services required.
"""
from __future__ import annotations

import os
from datetime import timedelta

import pytest

# ── Force local backends for all tests ────────────────────────────────────
# These must be set before any idgen_sdk modules are imported.

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("IDGEN_COUNTER_BACKEND", "memory")
os.environ.setdefault("IDGEN_ERROR_BACKEND", "none")
os.environ.setdefault("IDGEN_LOG_LEVEL", "WARNING")

from idgen_sdk.tier0_core.errors import StoreUnavailableError  # noqa: E402
from idgen_sdk.tier1_runtime.clock import Clock  # noqa: E402
from idgen_sdk.tier1_runtime.snowflake import BitLayout  # noqa: E402

RUN_SLOW = os.getenv("IDGEN_RUN_SLOW") == "1"

slow = pytest.mark.skipif(not RUN_SLOW, reason="set IDGEN_RUN_SLOW=1 for full-size runs")


# ── Test doubles ──────────────────────────────────────────────────────────

class FakeClock(Clock):
    """Clock that only moves when told to; sleep() advances it."""

    def __init__(self, ns: int) -> None:
        super().__init__(time_ns_fn=lambda: self.ns, sleep_fn=self._advance)
        self.ns = ns
        self.sleeps: list[float] = []

    def _advance(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.ns += max(1, round(seconds * 1_000_000_000))


class FlakyStore:
    """Counter store that raises on the listed (1-based) increment calls."""

    def __init__(self, fail_on: set[int] | None = None, start: int = 0) -> None:
        self.value = start
        self.calls = 0
        self.fail_on = fail_on or set()

    def incr(self) -> int:
        self.calls += 1
        if self.calls in self.fail_on:
            raise StoreUnavailableError(
                user_message="Counter store unavailable.",
                detail=f"injected failure on call {self.calls}",
            )
        self.value += 1
        return self.value


class FixedStore:
    """Counter store that returns preset values in order."""

    def __init__(self, *values: int) -> None:
        self._values = list(values)

    def incr(self) -> int:
        return self._values.pop(0)


# ── Fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture
def layout() -> BitLayout:
    return BitLayout()


@pytest.fixture
def fake_clock(layout: BitLayout) -> FakeClock:
    """Clock parked at the start of a time unit one year after the epoch."""
    unit = layout.time_unit_ns
    start = layout.epoch_ns + (_ONE_YEAR_NS // unit) * unit
    return FakeClock(start)


_ONE_YEAR_NS = int(timedelta(days=365).total_seconds()) * 1_000_000_000


@pytest.fixture(autouse=True)
def reset_module_singletons():
    """Drop process-wide generators, config and health checks between tests."""
    import idgen_sdk.tier0_core.ids as _ids
    import idgen_sdk.tier2_reliability.health as _health
    from idgen_sdk.tier0_core.config import _reset_config

    _reset_config()
    yield

    _ids._reset_ids()
    _health._reset_health_checker()
    _reset_config()
