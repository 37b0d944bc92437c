"""
idgen_sdk.tier2_reliability.segment
────────────────────────────────────
Store-backed sequential IDs. The allocator leases a block of ``step`` IDs at
a time: counter value ``c`` from the store owns ``(c * step, (c + 1) * step]``.
IDs are served from memory until the block runs out, then the next counter
value is fetched.

On restart the unused tail of the previous lease is forfeited, never reused;
the store counter alone guarantees that no two leases overlap. A counter that
does not move forward (a store reset, a restored snapshot) is fatal, like an
overflow: its range may already have been served.

The lock is held across the store call on the reload path. One call in
``step`` pays the store round trip; the others queue behind it instead of
racing to fetch, and discard, extra leases.
"""
from __future__ import annotations

import threading
import time

from idgen_sdk.tier0_core import metrics
from idgen_sdk.tier0_core.errors import RangeOverflowError, abort
from idgen_sdk.tier0_core.logging import get_logger
from idgen_sdk.tier2_reliability.counter_store import CounterStore

log = get_logger(__name__)

DEFAULT_SEGMENT_STEP = 2000
INT64_MAX = (1 << 63) - 1


class SegmentLeaseAllocator:
    """Thread-safe allocator of consecutive IDs from leased segments."""

    def __init__(self, store: CounterStore, step: int = DEFAULT_SEGMENT_STEP) -> None:
        if step <= 0:
            step = DEFAULT_SEGMENT_STEP
        self._store = store
        self._step = step
        self._lock = threading.Lock()
        self._counter: int | None = None
        self._last_id = 0
        self._failure: RangeOverflowError | None = None
        self._issued = metrics.ids_issued(generator="segment")

    @property
    def step(self) -> int:
        return self._step

    @property
    def counter(self) -> int | None:
        """Counter value of the current lease, None before the first fetch."""
        return self._counter

    @property
    def last_id(self) -> int:
        return self._last_id

    def init(self) -> None:
        """
        Fetch the first lease. Store errors propagate unchanged.

        Raises:
            RangeOverflowError: the leased block does not fit in 64 bits.
        """
        with self._lock:
            self._reload()

    def _reload(self) -> None:
        if self._failure is not None:
            raise self._failure.with_traceback(None)

        start = time.monotonic()
        counter = self._store.incr()
        metrics.lease_fetch_seconds().observe(time.monotonic() - start)

        first = counter * self._step
        range_end = (counter + 1) * self._step
        if counter < 0 or range_end > INT64_MAX:
            metrics.generation_errors(kind="range_overflow").inc()
            log.error("idgen.lease.overflow", counter=counter, step=self._step)
            self._failure = RangeOverflowError(
                user_message="ID range exhausted.",
                detail=f"lease {counter} maps to ({first}, {range_end}], outside the int64 range",
                counter=counter,
                step=self._step,
            )
            raise self._failure
        if self._counter is not None and counter <= self._counter:
            metrics.generation_errors(kind="counter_regression").inc()
            log.error("idgen.lease.counter_regressed", counter=counter, previous=self._counter)
            self._failure = RangeOverflowError(
                user_message="ID range exhausted.",
                detail=f"store returned counter {counter} after {self._counter}; its range was already leased",
                counter=counter,
                previous_counter=self._counter,
                step=self._step,
            )
            raise self._failure

        self._counter = counter
        self._last_id = first
        metrics.lease_reloads().inc()
        metrics.lease_counter().set(counter)
        log.info("idgen.lease.reloaded", counter=counter, step=self._step, first_id=first + 1)

    def next(self) -> int:
        """
        Return the previous ID plus one, fetching a new lease when the current one is spent.

        Raises:
            RangeOverflowError: the next lease does not fit in 64 bits, or the
                store returned a counter not above the current one.
            Any error raised by the store's incr(), unchanged.
        """
        with self._lock:
            if self._counter is None or self._last_id >= (self._counter + 1) * self._step:
                self._reload()
            self._last_id += 1
            id_ = self._last_id
        self._issued.inc()
        return id_

    def must_next(self) -> int:
        """Like next(), but any failure terminates the process."""
        try:
            return self.next()
        except Exception as exc:
            abort(exc)
            raise


__all__ = ["DEFAULT_SEGMENT_STEP", "SegmentLeaseAllocator"]
