"""
idgen_sdk.tier1_runtime.snowflake
──────────────────────────────────
Coordination-free 64-bit IDs. Each ID packs, most significant first:

    [ sign (0) | time units since epoch | node id | sequence ]

With the default layout (37 / 15 / 10 bits, 10 ms units, 2020-01-01 epoch)
a node issues up to 1024 IDs per 10 ms for roughly 43 years, and up to
32768 nodes can run side by side as long as their node ids differ.

Usage:
    gen = TimeBasedIDGenerator(node_id=42)
    order_id = gen.next()
    parts = gen.layout.decompose(order_id)
"""
from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from idgen_sdk.tier0_core import metrics
from idgen_sdk.tier0_core.config import DEFAULT_EPOCH, IdGenConfig
from idgen_sdk.tier0_core.errors import (
    ClockRegressionError,
    SpaceExhaustedError,
    ValidationError,
    abort,
)
from idgen_sdk.tier0_core.logging import get_logger
from idgen_sdk.tier1_runtime.clock import Clock, get_clock
from idgen_sdk.tier1_runtime.validate import validate_input

log = get_logger(__name__)

USABLE_BITS = 63
_UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MICROSECOND = timedelta(microseconds=1)


def _to_ns(delta: timedelta) -> int:
    return (delta // _ONE_MICROSECOND) * 1000


# ── Layout ─────────────────────────────────────────────────────────────────

class IDParts(NamedTuple):
    time_unit: int
    node_id: int
    sequence: int
    timestamp: datetime


class BitLayout(BaseModel):
    """
    Field widths, epoch and tick length of a time-based ID.
    Validated on construction: widths fit in 63 bits and the tick is sub-second.
    """

    model_config = ConfigDict(frozen=True)

    time_unit_bits: int = Field(default=37, ge=1)
    node_bits: int = Field(default=15, ge=0)
    sequence_bits: int = Field(default=10, ge=1)
    epoch: datetime = DEFAULT_EPOCH
    time_unit: timedelta = timedelta(milliseconds=10)

    @field_validator("epoch")
    @classmethod
    def epoch_is_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_validator("time_unit")
    @classmethod
    def time_unit_is_sub_second(cls, v: timedelta) -> timedelta:
        if v < _ONE_MICROSECOND or v > timedelta(seconds=1):
            raise ValueError(f"time_unit must be between 1µs and 1s, got {v}")
        return v

    @model_validator(mode="after")
    def widths_fit(self) -> "BitLayout":
        total = self.time_unit_bits + self.node_bits + self.sequence_bits
        if total > USABLE_BITS:
            raise ValueError(
                f"time_unit_bits + node_bits + sequence_bits must be <= {USABLE_BITS}, got {total}"
            )
        return self

    @classmethod
    def from_config(cls, config: IdGenConfig) -> "BitLayout":
        return validate_input(cls, {
            "time_unit_bits": config.time_unit_bits,
            "node_bits": config.node_bits,
            "sequence_bits": config.sequence_bits,
            "epoch": config.epoch,
            "time_unit": timedelta(milliseconds=config.time_unit_ms),
        })

    @property
    def max_time_units(self) -> int:
        return (1 << self.time_unit_bits) - 1

    @property
    def max_node_id(self) -> int:
        return (1 << self.node_bits) - 1

    @property
    def max_sequence(self) -> int:
        return (1 << self.sequence_bits) - 1

    @property
    def node_shift(self) -> int:
        return self.sequence_bits

    @property
    def time_shift(self) -> int:
        return self.node_bits + self.sequence_bits

    @property
    def epoch_ns(self) -> int:
        return _to_ns(self.epoch - _UNIX_EPOCH)

    @property
    def time_unit_ns(self) -> int:
        return _to_ns(self.time_unit)

    @property
    def end_of_life(self) -> datetime:
        """Last instant representable in the time field."""
        return self.epoch + self.time_unit * self.max_time_units

    def compose(self, time_unit: int, node_id: int, sequence: int) -> int:
        return (time_unit << self.time_shift) | (node_id << self.node_shift) | sequence

    def decompose(self, id_: int) -> IDParts:
        time_unit = id_ >> self.time_shift
        return IDParts(
            time_unit=time_unit,
            node_id=(id_ >> self.node_shift) & self.max_node_id,
            sequence=id_ & self.max_sequence,
            timestamp=self.epoch + self.time_unit * time_unit,
        )


# ── Generator ──────────────────────────────────────────────────────────────

class TimeBasedIDGenerator:
    """
    Thread-safe time-based ID generator for one node.

    IDs from one instance are unique and non-decreasing while the clock does
    not move back by a whole time unit. When a unit's sequence space runs
    out, next() blocks until the clock reaches the following unit.
    """

    def __init__(
        self,
        node_id: int,
        layout: BitLayout | dict[str, Any] | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._layout = validate_input(BitLayout, layout) if layout is not None else BitLayout()
        if not 0 <= node_id <= self._layout.max_node_id:
            raise ValidationError(
                user_message="Node id does not fit the layout.",
                fields={"node_id": f"must be within [0, {self._layout.max_node_id}], got {node_id}"},
            )
        self._node_id = node_id
        self._clock = clock or get_clock()
        self._lock = threading.Lock()

        self._epoch_ns = self._layout.epoch_ns
        self._unit_ns = self._layout.time_unit_ns
        self._max_units = self._layout.max_time_units
        self._max_sequence = self._layout.max_sequence
        self._time_shift = self._layout.time_shift
        self._node_part = node_id << self._layout.node_shift

        self._last_time_unit = -1
        self._sequence = 0
        self._issued = metrics.ids_issued(generator="snowflake")

    @property
    def node_id(self) -> int:
        return self._node_id

    @property
    def layout(self) -> BitLayout:
        return self._layout

    def _current_time_unit(self) -> int:
        now = (self._clock.time_ns() - self._epoch_ns) // self._unit_ns
        if now < 0 or now > self._max_units:
            metrics.generation_errors(kind="space_exhausted").inc()
            log.error(
                "idgen.snowflake.space_exhausted",
                node_id=self._node_id,
                time_unit=now,
                end_of_life=self._layout.end_of_life.isoformat(),
            )
            raise SpaceExhaustedError(
                user_message="ID time space exhausted.",
                detail=f"time unit {now} outside [0, {self._max_units}] for epoch {self._layout.epoch.isoformat()}",
                node_id=self._node_id,
                time_unit=now,
            )
        return now

    def _regressed(self, now: int) -> ClockRegressionError:
        metrics.generation_errors(kind="clock_regression").inc()
        log.warning(
            "idgen.snowflake.clock_regression",
            node_id=self._node_id,
            last_time_unit=self._last_time_unit,
            current_time_unit=now,
        )
        return ClockRegressionError(
            user_message="Clock moved backwards.",
            detail=f"clock moved back from time unit {self._last_time_unit} to {now}",
            last_time_unit=self._last_time_unit,
            current_time_unit=now,
        )

    def _wait_next_time_unit(self, last: int) -> int:
        """Block until the clock passes *last*. Bounded by one time unit."""
        metrics.sequence_waits().inc()
        log.debug("idgen.snowflake.sequence_exhausted", node_id=self._node_id, time_unit=last)
        boundary_ns = self._epoch_ns + (last + 1) * self._unit_ns
        while True:
            remaining_ns = boundary_ns - self._clock.time_ns()
            if remaining_ns > 0:
                self._clock.sleep(remaining_ns / 1_000_000_000)
            now = self._current_time_unit()
            if now > last:
                return now
            if now < last:
                raise self._regressed(now)

    def next(self) -> int:
        """
        Issue the next ID.

        Raises:
            ClockRegressionError: the clock is behind the last issued time unit.
            SpaceExhaustedError:  the current time does not fit the time field.
        """
        with self._lock:
            now = self._current_time_unit()
            if now > self._last_time_unit:
                self._last_time_unit = now
                self._sequence = 0
            elif now == self._last_time_unit:
                sequence = self._sequence + 1
                if sequence > self._max_sequence:
                    self._last_time_unit = self._wait_next_time_unit(now)
                    sequence = 0
                self._sequence = sequence
            else:
                raise self._regressed(now)

            id_ = (self._last_time_unit << self._time_shift) | self._node_part | self._sequence
        self._issued.inc()
        return id_

    def must_next(self) -> int:
        """Like next(), but any failure terminates the process."""
        try:
            return self.next()
        except Exception as exc:
            abort(exc)
            raise


__all__ = ["BitLayout", "IDParts", "TimeBasedIDGenerator", "USABLE_BITS"]
