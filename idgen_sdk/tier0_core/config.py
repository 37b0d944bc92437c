"""
idgen_sdk.tier0_core.config
────────────────────────────
Typed configuration with env layering. Reads from .env → environment
variables. All fields are typed via Pydantic; invalid values fail at startup,
not at the first generated ID.

Minimal stack: pydantic-settings + python-dotenv
"""
from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_EPOCH = datetime(2020, 1, 1, tzinfo=timezone.utc)

COUNTER_BACKENDS = frozenset({"memory", "redis", "sql"})


class IdGenConfig(BaseSettings):
    """
    Typed idgen configuration. Fields can be set by name in code or through
    the aliased environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Application ───────────────────────────────────────────────────────────
    app_name: str = Field(default="idgen", alias="APP_NAME")
    environment: str = Field(default="development", alias="APP_ENV")

    # ── Time-based generator ──────────────────────────────────────────────────
    node_id: int | None = Field(default=None, alias="IDGEN_NODE_ID")
    epoch: datetime = Field(default=DEFAULT_EPOCH, alias="IDGEN_EPOCH")
    time_unit_ms: int = Field(default=10, gt=0, le=1000, alias="IDGEN_TIME_UNIT_MS")
    time_unit_bits: int = Field(default=37, alias="IDGEN_TIME_UNIT_BITS")
    node_bits: int = Field(default=15, alias="IDGEN_NODE_BITS")
    sequence_bits: int = Field(default=10, alias="IDGEN_SEQUENCE_BITS")

    # ── Segment allocator ─────────────────────────────────────────────────────
    segment_step: int = Field(default=2000, alias="IDGEN_SEGMENT_STEP")
    counter_backend: str = Field(default="memory", alias="IDGEN_COUNTER_BACKEND")
    counter_key: str = Field(default="idgen:counter", alias="IDGEN_COUNTER_KEY")
    counter_init_attempts: int = Field(default=3, ge=1, alias="IDGEN_COUNTER_INIT_ATTEMPTS")
    counter_timeout: float = Field(default=2.0, gt=0, alias="IDGEN_COUNTER_TIMEOUT")
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    database_url: str = Field(default="sqlite:///./idgen.db", alias="DATABASE_URL")

    # ── Logging / errors / metrics ────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="IDGEN_LOG_LEVEL")
    log_format: str = Field(default="json", alias="IDGEN_LOG_FORMAT")
    error_backend: str = Field(default="none", alias="IDGEN_ERROR_BACKEND")
    metrics_port: int = Field(default=8001, alias="IDGEN_METRICS_PORT")

    @field_validator("environment")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if v.lower() not in allowed:
            raise ValueError(f"environment must be one of {allowed}, got {v!r}")
        return v.lower()

    @field_validator("counter_backend")
    @classmethod
    def validate_counter_backend(cls, v: str) -> str:
        if v.lower() not in COUNTER_BACKENDS:
            raise ValueError(
                f"counter_backend must be one of {sorted(COUNTER_BACKENDS)}, got {v!r}"
            )
        return v.lower()

    @field_validator("epoch")
    @classmethod
    def epoch_is_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


@lru_cache(maxsize=1)
def get_config() -> IdGenConfig:
    """
    Return the singleton idgen config. Cached after first call.
    Call _reset_config() in tests to pick up new env vars.
    """
    return IdGenConfig()


def _reset_config() -> None:
    """For tests: clear the config cache."""
    get_config.cache_clear()


__all__ = ["IdGenConfig", "get_config", "DEFAULT_EPOCH"]
