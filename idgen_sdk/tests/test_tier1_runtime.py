"""Tests for tier1_runtime modules."""
from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from idgen_sdk.tier0_core.errors import (
    ClockRegressionError,
    SpaceExhaustedError,
    StoreUnavailableError,
    ValidationError,
)
from idgen_sdk.tier1_runtime import nodeid
from idgen_sdk.tier1_runtime import snowflake as snowflake_module
from idgen_sdk.tier1_runtime.clock import Clock, now, set_clock
from idgen_sdk.tier1_runtime.nodeid import private_ipv4_node_id, resolve_node_id
from idgen_sdk.tier1_runtime.retry import retry_policy
from idgen_sdk.tier1_runtime.snowflake import BitLayout, TimeBasedIDGenerator
from idgen_sdk.tier1_runtime.validate import validate_input

from conftest import FakeClock, slow

# Wide sequence field so throughput tests are CPU bound, not tick bound.
FAST_LAYOUT = {"time_unit_bits": 37, "node_bits": 8, "sequence_bits": 17}


def _collect(gen: TimeBasedIDGenerator, workers: int, per_worker: int) -> list[int]:
    results: list[list[int]] = [[] for _ in range(workers)]

    def work(slot: list[int]) -> None:
        append = slot.append
        for _ in range(per_worker):
            append(gen.next())

    threads = [threading.Thread(target=work, args=(slot,)) for slot in results]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return [id_ for slot in results for id_ in slot]


# ── clock ──────────────────────────────────────────────────────────────────

class TestClock:
    def test_now_returns_utc_datetime(self):
        dt = now()
        assert dt.tzinfo is not None

    def test_frozen_clock(self):
        fixed = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        clock = Clock().freeze(fixed)
        assert clock.now() == fixed
        assert clock.timestamp_ms() == int(fixed.timestamp() * 1000)

    def test_frozen_clock_set_global(self):
        fixed = datetime(2025, 6, 15, 0, 0, 0, tzinfo=timezone.utc)
        set_clock(Clock().freeze(fixed))
        try:
            assert now() == fixed
        finally:
            set_clock(Clock())

    def test_advance(self):
        fixed = datetime(2025, 1, 1, tzinfo=timezone.utc)
        clock = Clock().freeze(fixed).advance(1.5)
        assert clock.now() == fixed + timedelta(seconds=1.5)

    def test_time_ns_is_wall_clock(self):
        assert abs(Clock().time_ns() - time.time_ns()) < 1_000_000_000


# ── validate ───────────────────────────────────────────────────────────────

class TestValidate:
    def test_dict_becomes_model(self):
        layout = validate_input(BitLayout, {"sequence_bits": 12})
        assert layout.sequence_bits == 12

    def test_instance_passes_through(self):
        layout = BitLayout()
        assert validate_input(BitLayout, layout) is layout

    def test_invalid_input_raises_sdk_error(self):
        with pytest.raises(ValidationError) as info:
            validate_input(BitLayout, {"sequence_bits": "many"})
        assert "sequence_bits" in info.value.fields


# ── retry ──────────────────────────────────────────────────────────────────

class TestRetry:
    def test_retries_listed_error_then_succeeds(self):
        calls = []

        @retry_policy(max_attempts=3, min_wait=0, max_wait=0, jitter=0, on=[ClockRegressionError])
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ClockRegressionError()
            return 42

        assert flaky() == 42
        assert len(calls) == 3

    def test_fatal_errors_never_retried(self):
        calls = []

        @retry_policy(max_attempts=5, min_wait=0, max_wait=0, jitter=0)
        def exhausted():
            calls.append(1)
            raise SpaceExhaustedError()

        with pytest.raises(SpaceExhaustedError):
            exhausted()
        assert len(calls) == 1

    def test_unlisted_error_not_retried(self):
        calls = []

        @retry_policy(max_attempts=5, min_wait=0, max_wait=0, jitter=0, on=[StoreUnavailableError])
        def regress():
            calls.append(1)
            raise ClockRegressionError()

        with pytest.raises(ClockRegressionError):
            regress()
        assert len(calls) == 1

    def test_gives_up_with_last_error(self):
        @retry_policy(max_attempts=2, min_wait=0, max_wait=0, jitter=0)
        def down():
            raise StoreUnavailableError()

        with pytest.raises(StoreUnavailableError):
            down()

    @pytest.mark.asyncio
    async def test_async_callable(self):
        calls = []

        @retry_policy(max_attempts=2, min_wait=0, max_wait=0, jitter=0)
        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise StoreUnavailableError()
            return "ok"

        assert await flaky() == "ok"
        assert len(calls) == 2


# ── layout ─────────────────────────────────────────────────────────────────

class TestBitLayout:
    def test_defaults(self):
        layout = BitLayout()
        assert layout.max_sequence == 1023
        assert layout.max_node_id == 32767
        assert layout.max_time_units == (1 << 37) - 1
        assert layout.time_unit_ns == 10_000_000
        assert layout.epoch_ns == 1577836800 * 1_000_000_000

    def test_end_of_life(self):
        layout = BitLayout()
        assert layout.end_of_life == layout.epoch + timedelta(milliseconds=10) * ((1 << 37) - 1)
        assert layout.end_of_life.year == 2063

    def test_widths_must_fit_63_bits(self):
        with pytest.raises(ValidationError):
            validate_input(BitLayout, {"time_unit_bits": 41, "node_bits": 12, "sequence_bits": 11})

    def test_exactly_63_bits_allowed(self):
        layout = validate_input(BitLayout, {"time_unit_bits": 41, "node_bits": 10, "sequence_bits": 12})
        assert layout.compose(layout.max_time_units, layout.max_node_id, layout.max_sequence) == (1 << 63) - 1

    def test_time_unit_must_be_sub_second(self):
        with pytest.raises(ValidationError):
            validate_input(BitLayout, {"time_unit": timedelta(seconds=2)})
        with pytest.raises(ValidationError):
            validate_input(BitLayout, {"time_unit": timedelta(0)})

    def test_naive_epoch_treated_as_utc(self):
        layout = BitLayout(epoch=datetime(2024, 1, 1))
        assert layout.epoch == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_compose_decompose(self):
        layout = BitLayout()
        id_ = layout.compose(123456, 42, 7)
        parts = layout.decompose(id_)
        assert (parts.time_unit, parts.node_id, parts.sequence) == (123456, 42, 7)
        assert parts.timestamp == layout.epoch + timedelta(milliseconds=10) * 123456


# ── time-based generator ───────────────────────────────────────────────────

class TestTimeBasedIDGenerator:
    def test_node_id_must_fit(self):
        with pytest.raises(ValidationError):
            TimeBasedIDGenerator(node_id=1 << 15)
        with pytest.raises(ValidationError):
            TimeBasedIDGenerator(node_id=-1)

    def test_layout_from_dict(self):
        gen = TimeBasedIDGenerator(node_id=5, layout={"node_bits": 4, "sequence_bits": 4})
        assert gen.layout.node_bits == 4

    def test_id_fields(self, fake_clock):
        gen = TimeBasedIDGenerator(node_id=1234, clock=fake_clock)
        parts = gen.layout.decompose(gen.next())
        expected_unit = (fake_clock.ns - gen.layout.epoch_ns) // gen.layout.time_unit_ns
        assert (parts.time_unit, parts.node_id, parts.sequence) == (expected_unit, 1234, 0)

    def test_sequence_increments_within_unit_and_resets(self, fake_clock, layout):
        gen = TimeBasedIDGenerator(node_id=1, clock=fake_clock)
        first = [gen.layout.decompose(gen.next()).sequence for _ in range(3)]
        fake_clock.ns += layout.time_unit_ns
        after = gen.layout.decompose(gen.next())
        assert first == [0, 1, 2]
        assert after.sequence == 0

    def test_ids_are_positive_63_bit(self, fake_clock):
        gen = TimeBasedIDGenerator(node_id=(1 << 15) - 1, clock=fake_clock)
        id_ = gen.next()
        assert 0 < id_ < (1 << 63)

    def test_unique_and_increasing_real_clock(self):
        gen = TimeBasedIDGenerator(node_id=1234)
        ids = [gen.next() for _ in range(50_000)]
        assert len(set(ids)) == len(ids)
        assert ids == sorted(ids)

    def test_concurrent_callers_unique(self):
        gen = TimeBasedIDGenerator(node_id=7, layout=FAST_LAYOUT)
        ids = _collect(gen, workers=20, per_worker=5_000)
        assert len(set(ids)) == 100_000

    def test_distinct_nodes_never_collide(self):
        a = TimeBasedIDGenerator(node_id=1, layout=FAST_LAYOUT)
        b = TimeBasedIDGenerator(node_id=2, layout=FAST_LAYOUT)
        ids_a: list[int] = []
        ids_b: list[int] = []
        ta = threading.Thread(target=lambda: ids_a.extend(a.next() for _ in range(30_000)))
        tb = threading.Thread(target=lambda: ids_b.extend(b.next() for _ in range(30_000)))
        for t in (ta, tb):
            t.start()
        for t in (ta, tb):
            t.join()
        assert not set(ids_a) & set(ids_b)

    def test_distinct_nodes_same_instant(self, fake_clock):
        a = TimeBasedIDGenerator(node_id=1, clock=fake_clock)
        b = TimeBasedIDGenerator(node_id=2, clock=fake_clock)
        assert {a.next() for _ in range(100)}.isdisjoint({b.next() for _ in range(100)})

    def test_sequence_overflow_waits_for_next_unit(self, fake_clock):
        gen = TimeBasedIDGenerator(
            node_id=3, layout={"node_bits": 4, "sequence_bits": 2}, clock=fake_clock
        )
        layout = gen.layout
        ids = [gen.next() for _ in range(4)]
        assert fake_clock.sleeps == []

        rolled = gen.next()
        assert fake_clock.sleeps, "generator should have waited for the next unit"
        assert sum(fake_clock.sleeps) <= layout.time_unit.total_seconds()

        before, after = layout.decompose(ids[-1]), layout.decompose(rolled)
        assert before.sequence == layout.max_sequence
        assert after.time_unit == before.time_unit + 1
        assert after.sequence == 0
        assert rolled > ids[-1]

    def test_sequence_overflow_real_clock(self):
        layout = {"node_bits": 4, "sequence_bits": 2, "time_unit": timedelta(milliseconds=5)}
        gen = TimeBasedIDGenerator(node_id=3, layout=layout)
        start = time.monotonic()
        ids = [gen.next() for _ in range(40)]
        elapsed = time.monotonic() - start
        assert len(set(ids)) == 40
        assert ids == sorted(ids)
        # 4 IDs per 5 ms unit: the calls span at least 10 units
        assert elapsed >= 0.035

    def test_clock_regression_raises_and_recovers(self, fake_clock, layout):
        gen = TimeBasedIDGenerator(node_id=1, clock=fake_clock)
        first = gen.next()
        fake_clock.ns -= 2 * layout.time_unit_ns
        with pytest.raises(ClockRegressionError) as info:
            gen.next()
        assert info.value.metadata["current_time_unit"] == info.value.metadata["last_time_unit"] - 2

        fake_clock.ns += 3 * layout.time_unit_ns
        assert gen.next() > first

    def test_sub_unit_regression_tolerated(self, fake_clock, layout):
        fake_clock.ns += layout.time_unit_ns // 2
        gen = TimeBasedIDGenerator(node_id=1, clock=fake_clock)
        first = gen.next()
        fake_clock.ns -= layout.time_unit_ns // 4
        assert gen.next() == first + 1

    def test_regression_does_not_consume_sequence(self, fake_clock, layout):
        gen = TimeBasedIDGenerator(node_id=1, clock=fake_clock)
        first = gen.next()
        fake_clock.ns -= layout.time_unit_ns
        with pytest.raises(ClockRegressionError):
            gen.next()
        fake_clock.ns += layout.time_unit_ns
        assert gen.next() == first + 1

    def test_space_exhausted(self):
        small = {"time_unit_bits": 4, "node_bits": 4, "sequence_bits": 4}
        gen_layout = validate_input(BitLayout, small)
        clock = FakeClock(gen_layout.epoch_ns + (gen_layout.max_time_units + 1) * gen_layout.time_unit_ns)
        gen = TimeBasedIDGenerator(node_id=1, layout=gen_layout, clock=clock)
        with pytest.raises(SpaceExhaustedError):
            gen.next()
        with pytest.raises(SpaceExhaustedError):
            gen.next()

    def test_last_representable_unit_still_issues(self):
        gen_layout = validate_input(BitLayout, {"time_unit_bits": 4, "node_bits": 4, "sequence_bits": 4})
        clock = FakeClock(gen_layout.epoch_ns + gen_layout.max_time_units * gen_layout.time_unit_ns)
        gen = TimeBasedIDGenerator(node_id=1, layout=gen_layout, clock=clock)
        assert gen.layout.decompose(gen.next()).time_unit == gen_layout.max_time_units

    def test_time_before_epoch_is_exhausted(self, layout):
        clock = FakeClock(layout.epoch_ns - layout.time_unit_ns)
        gen = TimeBasedIDGenerator(node_id=1, clock=clock)
        with pytest.raises(SpaceExhaustedError):
            gen.next()

    def test_must_next_aborts_on_failure(self, fake_clock, layout, monkeypatch):
        aborted = []

        def fake_abort(exc):
            aborted.append(exc)
            raise SystemExit(70)

        monkeypatch.setattr(snowflake_module, "abort", fake_abort)
        gen = TimeBasedIDGenerator(node_id=1, clock=fake_clock)
        assert gen.must_next() > 0
        fake_clock.ns -= 5 * layout.time_unit_ns
        with pytest.raises(SystemExit):
            gen.must_next()
        assert isinstance(aborted[0], ClockRegressionError)

    def test_must_next_aborts_on_clock_failure(self, monkeypatch):
        aborted = []

        def fake_abort(exc):
            aborted.append(exc)
            raise SystemExit(70)

        def broken_time_ns():
            raise OSError("clock source unavailable")

        monkeypatch.setattr(snowflake_module, "abort", fake_abort)
        gen = TimeBasedIDGenerator(node_id=1, clock=Clock(time_ns_fn=broken_time_ns))
        with pytest.raises(SystemExit):
            gen.must_next()
        assert isinstance(aborted[0], OSError)

    def test_scenario_a_single_thread_scaled(self):
        gen = TimeBasedIDGenerator(node_id=1234, layout=FAST_LAYOUT)
        ids = [gen.next() for _ in range(200_000)]
        assert len(set(ids)) == 200_000

    def test_scenario_b_concurrent_scaled(self):
        gen = TimeBasedIDGenerator(node_id=1234, layout=FAST_LAYOUT)
        ids = _collect(gen, workers=100, per_worker=1_500)
        assert len(set(ids)) == 150_000

    @slow
    def test_scenario_a_single_thread_full(self):
        gen = TimeBasedIDGenerator(node_id=1234)
        seen = set()
        for _ in range(2_000_000):
            seen.add(gen.next())
        assert len(seen) == 2_000_000

    @slow
    def test_scenario_b_concurrent_full(self):
        gen = TimeBasedIDGenerator(node_id=1234, layout=FAST_LAYOUT)
        ids = _collect(gen, workers=100, per_worker=150_000)
        assert len(set(ids)) == 15_000_000


# ── node id ────────────────────────────────────────────────────────────────

class TestNodeId:
    def test_explicit_node_id_validated(self, layout):
        assert resolve_node_id(0, layout) == 0
        assert resolve_node_id(layout.max_node_id, layout) == layout.max_node_id
        with pytest.raises(ValidationError):
            resolve_node_id(layout.max_node_id + 1, layout)
        with pytest.raises(ValidationError):
            resolve_node_id(-1, layout)

    def test_private_address_low_bits(self, monkeypatch):
        monkeypatch.setattr(nodeid, "_host_ipv4_addresses", lambda: ["127.0.1.1", "10.1.2.3"])
        assert private_ipv4_node_id() == (2 << 8) + 3

    def test_public_addresses_ignored(self, monkeypatch):
        monkeypatch.setattr(nodeid, "_host_ipv4_addresses", lambda: ["8.8.8.8", "172.32.0.1"])
        assert private_ipv4_node_id() == 0

    def test_derived_id_masked_to_node_field(self, monkeypatch):
        monkeypatch.setattr(nodeid, "_host_ipv4_addresses", lambda: ["192.168.255.254"])
        narrow = validate_input(BitLayout, {"node_bits": 8})
        assert resolve_node_id(None, narrow) == 0xFE
