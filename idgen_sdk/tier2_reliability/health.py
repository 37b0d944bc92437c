"""
idgen_sdk.tier2_reliability.health
───────────────────────────────────
Liveness/readiness with dependency checks. The segment allocator cannot
issue IDs past its current lease without the counter store, so init_ids()
registers the store as a critical readiness check.

Usage:
    checker = get_health_checker()

    @app.get("/health/ready")
    async def readiness():
        result = await checker.readiness()
        return JSONResponse(result, status_code=200 if result["status"] == "ok" else 503)
"""
from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any


@dataclass
class CheckResult:
    name: str
    status: str           # "ok" | "failed"
    critical: bool
    latency_ms: float
    detail: str | None = None

    def as_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "name": self.name,
            "status": self.status,
            "critical": self.critical,
            "latency_ms": self.latency_ms,
        }
        if self.detail:
            d["detail"] = self.detail
        return d


@dataclass
class _Check:
    name: str
    fn: Callable[[], Coroutine | bool]
    critical: bool
    timeout: float


class HealthChecker:
    def __init__(self) -> None:
        self._checks: dict[str, _Check] = {}

    def register(
        self,
        name: str,
        check_fn: Callable[[], Coroutine | bool],
        critical: bool = True,
        timeout: float = 5.0,
    ) -> None:
        """
        Register (or replace) a health check.

        Args:
            name:       Check name (e.g. "counter_store").
            check_fn:   Async or sync callable. Return True = healthy, raise/False = unhealthy.
            critical:   If True, failure blocks readiness.
            timeout:    Max seconds before the check is considered failed.
        """
        self._checks[name] = _Check(name, check_fn, critical, timeout)

    def unregister(self, name: str) -> None:
        self._checks.pop(name, None)

    def liveness(self) -> dict:
        """Always ok while the process is alive."""
        return {"status": "ok", "timestamp": time.time()}

    async def _run(self, check: _Check) -> CheckResult:
        start = time.monotonic()
        detail = None
        try:
            if inspect.iscoroutinefunction(check.fn):
                ok = await asyncio.wait_for(check.fn(), timeout=check.timeout)
            else:
                ok = await asyncio.wait_for(asyncio.to_thread(check.fn), timeout=check.timeout)
            status = "ok" if ok else "failed"
        except asyncio.TimeoutError:
            status = "failed"
            detail = f"Timed out after {check.timeout}s"
        except Exception as exc:
            status = "failed"
            detail = str(exc)
        return CheckResult(
            name=check.name,
            status=status,
            critical=check.critical,
            latency_ms=round((time.monotonic() - start) * 1000, 2),
            detail=detail,
        )

    async def readiness(self) -> dict:
        """Run all checks. Status is "ok" only if every critical check passes."""
        results = [await self._run(check) for check in self._checks.values()]
        all_critical_ok = all(r.status == "ok" for r in results if r.critical)
        return {
            "status": "ok" if all_critical_ok else "degraded",
            "checks": [r.as_dict() for r in results],
            "timestamp": time.time(),
        }


# ── Singleton registry ────────────────────────────────────────────────────────

_checker: HealthChecker | None = None


def get_health_checker() -> HealthChecker:
    global _checker
    if _checker is None:
        _checker = HealthChecker()
    return _checker


def _reset_health_checker() -> None:
    global _checker
    _checker = None


__all__ = ["CheckResult", "HealthChecker", "get_health_checker"]
