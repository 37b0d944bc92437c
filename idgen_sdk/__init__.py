"""
idgen_sdk
─────────
Stable top-level exports. Import from here, not from sub-modules directly.
Every name exported here is part of the public API and subject to semver.
"""
from idgen_sdk.tier0_core.logging import get_logger
from idgen_sdk.tier0_core.errors import (
    IdGenError,
    ValidationError,
    ConfigurationError,
    ClockRegressionError,
    SpaceExhaustedError,
    StoreUnavailableError,
    RangeOverflowError,
)
from idgen_sdk.tier0_core.config import get_config, IdGenConfig
from idgen_sdk.tier0_core.metrics import start_metrics_server
from idgen_sdk.tier0_core.ids import close_ids, init_ids, next_id, next_uuid, new_guid, new_id

from idgen_sdk.tier1_runtime.clock import Clock, get_clock, set_clock
from idgen_sdk.tier1_runtime.retry import retry_policy
from idgen_sdk.tier1_runtime.snowflake import BitLayout, IDParts, TimeBasedIDGenerator
from idgen_sdk.tier1_runtime.nodeid import resolve_node_id

from idgen_sdk.tier2_reliability.counter_store import (
    CounterStore,
    MemoryCounterStore,
    RedisCounterStore,
    SQLCounterStore,
    get_counter_store,
)
from idgen_sdk.tier2_reliability.segment import DEFAULT_SEGMENT_STEP, SegmentLeaseAllocator
from idgen_sdk.tier2_reliability.health import HealthChecker, get_health_checker

__version__ = "0.1.0"
__all__ = [
    # logging
    "get_logger",
    # errors
    "IdGenError", "ValidationError", "ConfigurationError",
    "ClockRegressionError", "SpaceExhaustedError",
    "StoreUnavailableError", "RangeOverflowError",
    # config
    "get_config", "IdGenConfig",
    # metrics
    "start_metrics_server",
    # ids facade
    "init_ids", "close_ids", "next_id", "next_uuid", "new_guid", "new_id",
    # clock
    "Clock", "get_clock", "set_clock",
    # retry
    "retry_policy",
    # time-based generator
    "BitLayout", "IDParts", "TimeBasedIDGenerator", "resolve_node_id",
    # segment allocator
    "CounterStore", "MemoryCounterStore", "RedisCounterStore", "SQLCounterStore",
    "get_counter_store", "DEFAULT_SEGMENT_STEP", "SegmentLeaseAllocator",
    # health
    "HealthChecker", "get_health_checker",
]
