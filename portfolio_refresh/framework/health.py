"""
Dependency probes behind /health and /health/ready.

PostgreSQL is critical: without holdings nothing can be built. The Redis
probe is registered as non-critical because portfolio reads fall back to
building from the store when the cache is down, so a Redis outage only
degrades the service.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import structlog

from .config import VALID_ENVIRONMENTS


class HealthStatus(Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthCheck:
    """A named probe; ``check_func`` may be sync or async and returns truthy when healthy."""
    name: str
    check_func: Callable[[], Any]
    timeout: float = 5.0
    critical: bool = True
    description: Optional[str] = None


@dataclass
class ProbeOutcome:
    check: HealthCheck
    passed: bool
    duration_ms: float
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "status": "healthy" if self.passed else "unhealthy",
            "description": self.check.description,
            "critical": self.check.critical,
            "duration_ms": round(self.duration_ms, 3),
        }
        if self.error:
            data["error"] = self.error
        return data


class HealthChecker:
    """Runs every registered probe concurrently and folds the outcomes into one status."""

    def __init__(self, config):
        self.config = config
        self.logger = structlog.get_logger("health-checker")
        self.checks: List[HealthCheck] = [
            HealthCheck(name="config", check_func=self._config_is_valid,
                        description="Service name and environment are set"),
        ]
        self.last_status: Optional[HealthStatus] = None

    def add_check(self, check: HealthCheck) -> None:
        self.checks.append(check)
        self.logger.debug("Registered health check", name=check.name, critical=check.critical)

    async def check_health(self) -> Dict[str, Any]:
        outcomes = await asyncio.gather(*(self._probe(check) for check in self.checks))

        failed = [o for o in outcomes if not o.passed]
        critical_failures = sum(1 for o in failed if o.check.critical)
        if critical_failures:
            status = HealthStatus.UNHEALTHY
        elif failed:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY
        self.last_status = status

        return {
            "healthy": status is not HealthStatus.UNHEALTHY,
            "status": status.value,
            "checks": {o.check.name: o.to_dict() for o in outcomes},
            "critical_failures": critical_failures,
            "total_checks": len(outcomes),
            "timestamp": time.time(),
        }

    async def check_readiness(self) -> Dict[str, Any]:
        """Ready means no critical probe failed; degraded still takes traffic."""
        health = await self.check_health()
        ready = health["critical_failures"] == 0
        return {
            "ready": ready,
            "status": "ready" if ready else "not_ready",
            "health": health,
            "timestamp": health["timestamp"],
        }

    async def _probe(self, check: HealthCheck) -> ProbeOutcome:
        started = time.perf_counter()
        error = None
        try:
            passed = await asyncio.wait_for(self._invoke(check), timeout=check.timeout)
        except asyncio.TimeoutError:
            self.logger.warning("Health check timed out", name=check.name, timeout=check.timeout)
            passed, error = False, "timeout"
        except Exception as e:
            self.logger.error("Health check raised", name=check.name, error=str(e))
            passed, error = False, str(e)
        return ProbeOutcome(check, passed, (time.perf_counter() - started) * 1000, error)

    @staticmethod
    async def _invoke(check: HealthCheck) -> bool:
        result = check.check_func()
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    def _config_is_valid(self) -> bool:
        return bool(self.config.service_name) and self.config.environment in VALID_ENVIRONMENTS
