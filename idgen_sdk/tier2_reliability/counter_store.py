"""
idgen_sdk.tier2_reliability.counter_store
──────────────────────────────────────────
Durable counters backing the segment allocator. A store exposes one atomic
operation, incr(), returning the counter's new value. Every process that
shares a store (same Redis key, same SQL row) receives distinct values, so
the leases derived from them never overlap.

Minimal stack: in-process (dev) | Redis INCR | SQL row (SQLAlchemy 2.x)
Select via:    IDGEN_COUNTER_BACKEND=memory|redis|sql
"""
from __future__ import annotations

import math
import threading
from typing import Any, Protocol, runtime_checkable

from idgen_sdk.tier0_core.config import IdGenConfig, get_config
from idgen_sdk.tier0_core.errors import ConfigurationError, StoreUnavailableError
from idgen_sdk.tier0_core.logging import get_logger

log = get_logger(__name__)


# ── Contract ──────────────────────────────────────────────────────────────────

@runtime_checkable
class CounterStore(Protocol):
    """Stores may also provide ping() (readiness) and close() (release connections)."""

    def incr(self) -> int: ...  # atomically increments and returns the new value


# ── In-process store ──────────────────────────────────────────────────────────

class MemoryCounterStore:
    """Thread-safe in-process counter. Not durable: use for tests and single-process runs."""

    def __init__(self, start: int = 0) -> None:
        self._value = start
        self._lock = threading.Lock()

    def incr(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        return self._value

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass


# ── Redis store ───────────────────────────────────────────────────────────────

class RedisCounterStore:
    """
    INCR on a single Redis key. Durable as far as the server persists it; a
    server that loses the key restarts the count, which the allocator rejects.
    """

    def __init__(
        self,
        url: str | None = None,
        key: str = "idgen:counter",
        client: Any | None = None,
        timeout: float | None = None,
    ) -> None:
        if client is None:
            import redis
            timeout = timeout if timeout is not None else get_config().counter_timeout
            client = redis.Redis.from_url(
                url or get_config().redis_url,
                socket_timeout=timeout,
                socket_connect_timeout=timeout,
            )
        self._redis = client
        self._key = key

    def incr(self) -> int:
        import redis

        try:
            return int(self._redis.incr(self._key))
        except redis.RedisError as exc:
            raise StoreUnavailableError(
                user_message="Counter store unavailable.",
                detail=f"redis INCR {self._key!r} failed: {exc}",
                backend="redis",
                key=self._key,
            ) from exc

    def ping(self) -> bool:
        return bool(self._redis.ping())

    def close(self) -> None:
        self._redis.close()

    def __enter__(self) -> RedisCounterStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


# ── SQL store ─────────────────────────────────────────────────────────────────

def _engine_options(url: str, timeout: float) -> dict[str, Any]:
    """create_engine() keyword arguments bounding connect and statement time."""
    from sqlalchemy.engine import make_url

    backend = make_url(url).get_backend_name()
    seconds = max(1, math.ceil(timeout))
    if backend == "sqlite":
        # SingletonThreadPool (in-memory databases) rejects pool_timeout
        return {"connect_args": {"timeout": timeout}}
    options: dict[str, Any] = {"pool_timeout": timeout}
    if backend == "postgresql":
        options["connect_args"] = {
            "connect_timeout": seconds,
            "options": f"-c statement_timeout={int(timeout * 1000)}",
        }
    elif backend in ("mysql", "mariadb"):
        options["connect_args"] = {
            "connect_timeout": seconds,
            "read_timeout": seconds,
            "write_timeout": seconds,
        }
    return options


class SQLCounterStore:
    """
    One row per counter in ``idgen_counters``. The increment and read-back run
    in a single transaction; the UPDATE row lock serializes concurrent writers.
    """

    def __init__(
        self,
        url: str | None = None,
        name: str = "idgen:counter",
        engine: Any | None = None,
        timeout: float | None = None,
    ) -> None:
        from sqlalchemy import BigInteger, Column, MetaData, String, Table, create_engine

        if engine is None:
            url = url or get_config().database_url
            timeout = timeout if timeout is not None else get_config().counter_timeout
            engine = create_engine(url, **_engine_options(url, timeout))
        self._engine = engine
        self._name = name
        self._metadata = MetaData()
        self._table = Table(
            "idgen_counters",
            self._metadata,
            Column("name", String(128), primary_key=True),
            Column("value", BigInteger, nullable=False),
        )
        self._metadata.create_all(self._engine)

    def _increment(self, conn: Any) -> int | None:
        from sqlalchemy import select, update

        t = self._table
        result = conn.execute(
            update(t).where(t.c.name == self._name).values(value=t.c.value + 1)
        )
        if result.rowcount == 0:
            return None
        return conn.execute(select(t.c.value).where(t.c.name == self._name)).scalar_one()

    def incr(self) -> int:
        from sqlalchemy import insert
        from sqlalchemy.exc import IntegrityError, SQLAlchemyError

        try:
            with self._engine.begin() as conn:
                value = self._increment(conn)
                if value is not None:
                    return value
                conn.execute(insert(self._table).values(name=self._name, value=1))
                return 1
        except IntegrityError:
            # another process created the row first
            pass
        except SQLAlchemyError as exc:
            raise self._unavailable(exc) from exc

        try:
            with self._engine.begin() as conn:
                value = self._increment(conn)
        except SQLAlchemyError as exc:
            raise self._unavailable(exc) from exc
        if value is None:
            raise StoreUnavailableError(
                user_message="Counter store unavailable.",
                detail=f"counter row {self._name!r} vanished during increment",
                backend="sql",
                key=self._name,
            )
        return value

    def _unavailable(self, exc: Exception) -> StoreUnavailableError:
        return StoreUnavailableError(
            user_message="Counter store unavailable.",
            detail=f"sql increment of {self._name!r} failed: {exc}",
            backend="sql",
            key=self._name,
        )

    def ping(self) -> bool:
        from sqlalchemy import text

        with self._engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self._engine.dispose()

    def __enter__(self) -> SQLCounterStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


# ── Provider registry ─────────────────────────────────────────────────────────

def get_counter_store(config: IdGenConfig | None = None) -> CounterStore:
    """Build the counter store selected by IDGEN_COUNTER_BACKEND."""
    config = config or get_config()
    backend = config.counter_backend
    if backend == "memory":
        store: CounterStore = MemoryCounterStore()
    elif backend == "redis":
        store = RedisCounterStore(
            config.redis_url, key=config.counter_key, timeout=config.counter_timeout
        )
    elif backend == "sql":
        store = SQLCounterStore(
            config.database_url, name=config.counter_key, timeout=config.counter_timeout
        )
    else:
        raise ConfigurationError(
            user_message=f"Unknown IDGEN_COUNTER_BACKEND: {backend!r}. Supported: memory, redis, sql"
        )
    log.info("idgen.counter_store.selected", backend=backend, key=config.counter_key)
    return store


__all__ = [
    "CounterStore", "MemoryCounterStore", "RedisCounterStore", "SQLCounterStore",
    "get_counter_store",
]
