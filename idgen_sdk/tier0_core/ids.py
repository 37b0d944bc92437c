"""
idgen_sdk.tier0_core.ids
─────────────────────────
Process-wide ID helpers. Call init_ids() once at startup, then:

    next_id()    compact sequential IDs leased from the counter store
                 (entity ids, e.g. accounts or orders)
    next_uuid()  clock-based IDs, larger values, no store round trips
                 (event and log ids)
    new_guid()   random UUID v4 strings

The two integer kinds are independent ID spaces and are not ordered
relative to each other.
"""
from __future__ import annotations

import uuid
from typing import Literal

from idgen_sdk.tier0_core.config import IdGenConfig, get_config
from idgen_sdk.tier0_core.errors import ConfigurationError, StoreUnavailableError
from idgen_sdk.tier0_core.logging import get_logger
from idgen_sdk.tier1_runtime.nodeid import resolve_node_id
from idgen_sdk.tier1_runtime.retry import retry_policy
from idgen_sdk.tier1_runtime.snowflake import BitLayout, TimeBasedIDGenerator
from idgen_sdk.tier2_reliability.counter_store import CounterStore, get_counter_store
from idgen_sdk.tier2_reliability.health import get_health_checker
from idgen_sdk.tier2_reliability.segment import SegmentLeaseAllocator

log = get_logger(__name__)

_allocator: SegmentLeaseAllocator | None = None
_generator: TimeBasedIDGenerator | None = None
_owned_store: CounterStore | None = None


def init_ids(
    node_id: int | None = None,
    store: CounterStore | None = None,
    config: IdGenConfig | None = None,
) -> None:
    """
    Build the process-wide allocator and generator and fetch the first lease.
    The lease fetch is retried on StoreUnavailableError up to
    IDGEN_COUNTER_INIT_ATTEMPTS times; any other error propagates.
    """
    global _allocator, _generator, _owned_store
    config = config or get_config()

    layout = BitLayout.from_config(config)
    node = resolve_node_id(node_id if node_id is not None else config.node_id, layout)
    generator = TimeBasedIDGenerator(node, layout)

    owned = store is None
    store = store or get_counter_store(config)

    allocator = SegmentLeaseAllocator(store, config.segment_step)
    fetch_first_lease = retry_policy(
        max_attempts=config.counter_init_attempts,
        on=[StoreUnavailableError],
    )(allocator.init)
    try:
        fetch_first_lease()
    except Exception:
        if owned:
            _close_store(store)
        raise

    close_ids()
    ping = getattr(store, "ping", None)
    if callable(ping):
        get_health_checker().register("counter_store", ping, critical=True)

    _allocator, _generator = allocator, generator
    _owned_store = store if owned else None
    log.info(
        "idgen.initialized",
        node_id=node,
        step=allocator.step,
        counter=allocator.counter,
        end_of_life=layout.end_of_life.isoformat(),
    )


def _require(component: object | None) -> None:
    if component is None:
        raise ConfigurationError(user_message="ID generators are not initialized; call init_ids() first.")


def next_id() -> int:
    """Next store-backed sequential ID. Terminates the process on failure."""
    _require(_allocator)
    return _allocator.must_next()


def next_uuid() -> int:
    """Next clock-based ID. Terminates the process on failure."""
    _require(_generator)
    return _generator.must_next()


def new_guid() -> str:
    """Generate a random UUID v4 string."""
    return str(uuid.uuid4())


def new_id(kind: Literal["segment", "snowflake", "guid"] = "snowflake") -> int | str:
    """Generate a new ID of the given kind."""
    if kind == "segment":
        return next_id()
    elif kind == "snowflake":
        return next_uuid()
    elif kind == "guid":
        return new_guid()
    raise ValueError(f"Unknown ID kind: {kind!r}. Use 'segment', 'snowflake', or 'guid'.")


def _close_store(store: CounterStore) -> None:
    close = getattr(store, "close", None)
    if callable(close):
        close()


def close_ids() -> None:
    """
    Drop the process-wide generators and close the counter store init_ids()
    built. A store passed to init_ids() stays open; its owner closes it.
    """
    global _allocator, _generator, _owned_store
    store, _owned_store = _owned_store, None
    _allocator = None
    _generator = None
    get_health_checker().unregister("counter_store")
    if store is not None:
        _close_store(store)
        log.info("idgen.closed")


def _reset_ids() -> None:
    """For tests: drop the process-wide generators."""
    close_ids()


__all__ = ["init_ids", "close_ids", "next_id", "next_uuid", "new_guid", "new_id"]
