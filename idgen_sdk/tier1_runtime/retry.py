"""
idgen_sdk.tier1_runtime.retry
──────────────────────────────
Opt-in retry/backoff policy with jitter for callers of the generators.
Backed by Tenacity. The generators themselves never retry: a clock
regression or an unreachable counter store surfaces to the caller, who may
wrap the call with this policy.

Usage:
    @retry_policy(on=[ClockRegressionError])
    def next_order_id():
        return generator.next()

    @retry_policy(max_attempts=5, on=[StoreUnavailableError])
    async def warm_up():
        ...
"""
from __future__ import annotations

import functools
import inspect
from collections.abc import Callable
from typing import Any, Type

from tenacity import (
    AsyncRetrying,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from idgen_sdk.tier0_core.errors import (
    ConfigurationError,
    RangeOverflowError,
    SpaceExhaustedError,
    ValidationError,
)

# Errors that are NEVER retried regardless of policy
_NON_RETRYABLE: tuple[Type[BaseException], ...] = (
    SpaceExhaustedError,
    RangeOverflowError,
    ConfigurationError,
    ValidationError,
)


def _is_retryable(exc: BaseException) -> bool:
    """Return True if the exception should be retried."""
    return not isinstance(exc, _NON_RETRYABLE)


def retry_policy(
    max_attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 10.0,
    jitter: float = 1.0,
    on: list[Type[Exception]] | None = None,
) -> Callable:
    """
    Decorator applying exponential backoff with jitter to a sync or async callable.

    Args:
        max_attempts: Total number of attempts (including first).
        min_wait:     Minimum wait seconds between retries.
        max_wait:     Maximum wait seconds between retries.
        jitter:       Maximum random seconds added to each wait.
        on:           Exception types to retry on. If None, retries on
                      everything except the fatal idgen errors.
    """
    retry_types = tuple(on) if on else None

    def _should_retry(exc: BaseException) -> bool:
        if not _is_retryable(exc):
            return False
        return retry_types is None or isinstance(exc, retry_types)

    def _policy() -> dict[str, Any]:
        return {
            "stop": stop_after_attempt(max_attempts),
            "wait": wait_exponential(min=min_wait, max=max_wait) + wait_random(0, jitter),
            "retry": retry_if_exception(_should_retry),
            "reraise": True,
        }

    def decorator(fn: Callable) -> Callable:
        if inspect.iscoroutinefunction(fn):
            @functools.wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                async for attempt in AsyncRetrying(**_policy()):
                    with attempt:
                        return await fn(*args, **kwargs)

            return async_wrapper

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in Retrying(**_policy()):
                with attempt:
                    return fn(*args, **kwargs)

        return wrapper
    return decorator


__all__ = ["retry_policy"]
