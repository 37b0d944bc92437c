"""
idgen_sdk.tier0_core.errors
────────────────────────────
Error taxonomy for ID generation. Every error has a stable code, a user-safe
message and internal detail. Constructing an IdGenError reports it to the
configured error backend.

Minimal stack: Sentry OSS
Select via:    IDGEN_ERROR_BACKEND=sentry|none
"""
from __future__ import annotations

import logging
import os
from typing import Any

from idgen_sdk.tier0_core.config import get_config


# ── Base error ────────────────────────────────────────────────────────────────

class IdGenError(Exception):
    """
    Base class for all idgen errors. Every error has:
    - code: stable machine-readable string (snake_case)
    - user_message: safe to surface to end users
    - detail: internal context, never shown to users
    - status_code: HTTP status code when surfaced through an API
    """

    status_code: int = 500
    code: str = "internal_error"
    retryable: bool = False

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "An unexpected error occurred.",
        detail: str | None = None,
        **metadata: Any,
    ) -> None:
        self.code = code or self.__class__.code
        self.user_message = user_message
        self.detail = detail or user_message
        self.metadata = metadata
        super().__init__(self.detail)
        _capture(self)

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.user_message,
            }
        }


# ── Setup errors ──────────────────────────────────────────────────────────────

class ValidationError(IdGenError):
    """Invalid layout, node id or other constructor input."""
    status_code = 422
    code = "validation_error"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "Validation failed.",
        fields: dict | None = None,
        **metadata: Any,
    ) -> None:
        self.fields = fields or {}
        super().__init__(code, user_message, **metadata)

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.fields:
            d["error"]["fields"] = self.fields
        return d


class ConfigurationError(IdGenError):
    """Misconfiguration detected at startup."""
    status_code = 500
    code = "configuration_error"


class UpstreamError(IdGenError):
    """Upstream service failure."""
    status_code = 502
    code = "upstream_error"


# ── Generation errors ─────────────────────────────────────────────────────────

class IdGenerationError(IdGenError):
    """A generator could not issue an ID."""
    status_code = 500
    code = "id_generation_error"


class ClockRegressionError(IdGenerationError):
    """
    The system clock moved backwards past the current time unit.
    Non-fatal: the caller may retry once the clock has caught up.
    """
    status_code = 503
    code = "clock_regression"
    retryable = True


class SpaceExhaustedError(IdGenerationError):
    """
    The time-unit field can no longer represent the current time.
    Fatal for the generator: assign a fresh epoch or retire the node.
    """
    code = "space_exhausted"


class RangeOverflowError(IdGenerationError):
    """The next lease boundary does not fit the signed 64-bit range."""
    code = "range_overflow"


class StoreUnavailableError(UpstreamError):
    """The counter store increment failed or timed out."""
    status_code = 503
    code = "store_unavailable"
    retryable = True


# ── Error capture backend ─────────────────────────────────────────────────────

def _capture(error: IdGenError) -> None:
    """Send error to configured backend. Called automatically by IdGenError.__init__."""
    backend = get_config().error_backend.lower()
    if backend == "sentry":
        _capture_sentry(error)


def _capture_sentry(error: IdGenError) -> None:
    try:
        import sentry_sdk
    except ImportError:
        return
    if error.status_code >= 500:
        sentry_sdk.capture_exception(error)
    else:
        sentry_sdk.capture_message(
            str(error),
            level="warning",
            extras={"code": error.code, **error.metadata},
        )


def configure_sentry(dsn: str, **kwargs: Any) -> None:
    """Initialize Sentry. Call once at application startup."""
    import sentry_sdk
    sentry_sdk.init(dsn=dsn, **kwargs)
    os.environ["IDGEN_ERROR_BACKEND"] = "sentry"
    get_config.cache_clear()


# ── Unrecoverable abort ───────────────────────────────────────────────────────

EXIT_SOFTWARE = 70


def abort(error: BaseException) -> None:
    """
    Terminate the process after logging *error* at critical level.
    Only the must_next() variants reach this; everything else raises.
    """
    from idgen_sdk.tier0_core.logging import get_logger

    get_logger(__name__).critical(
        "idgen.abort",
        error=str(error),
        code=getattr(error, "code", type(error).__name__),
    )
    logging.shutdown()
    os._exit(EXIT_SOFTWARE)


__all__ = [
    "IdGenError", "ValidationError", "ConfigurationError", "UpstreamError",
    "IdGenerationError", "ClockRegressionError", "SpaceExhaustedError",
    "RangeOverflowError", "StoreUnavailableError", "configure_sentry", "abort",
]
