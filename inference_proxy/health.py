"""
Upstream liveness probing.

A probe always returns a ``HealthVerdict``; upstream failures are reported in
the verdict and never raised to the caller.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from inference_proxy.errors import UpstreamTimeout, UpstreamUnavailable
from inference_proxy.upstream.client import UpstreamClient
from inference_proxy.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)

logger = logging.getLogger("uvicorn.error")

HEALTH_PATH = "/health"


class HealthStatus(str, Enum):
    HEALTHY = "ok"
    UNHEALTHY = "unhealthy"
    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class HealthVerdict:
    """
    Result of one liveness probe.

    Attributes:
        status: Which of the four outcomes the probe produced
        upstream_status: HTTP status returned by the upstream (unhealthy only)
        error: Human-readable failure description (all failures)
    """

    status: HealthStatus
    upstream_status: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def healthy(cls) -> "HealthVerdict":
        return cls(status=HealthStatus.HEALTHY)

    @classmethod
    def unhealthy(cls, upstream_status: int) -> "HealthVerdict":
        return cls(
            status=HealthStatus.UNHEALTHY,
            upstream_status=upstream_status,
            error=f"Upstream returned status {upstream_status}",
        )

    @classmethod
    def unreachable(cls, error: str) -> "HealthVerdict":
        return cls(status=HealthStatus.UNREACHABLE, error=error)

    @classmethod
    def timeout(cls, seconds: float) -> "HealthVerdict":
        return cls(
            status=HealthStatus.TIMEOUT,
            error=f"Upstream health check timed out after {seconds:g}s",
        )

    @property
    def is_healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY

    @property
    def http_status(self) -> int:
        return 200 if self.is_healthy else 503

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"status": self.status.value}
        if self.upstream_status is not None:
            data["upstream_status"] = self.upstream_status
        if self.error is not None:
            data["error"] = self.error
        return data


class HealthMonitor:
    """Probes the upstream liveness endpoint with a bounded wait."""

    def __init__(self, client: UpstreamClient, timeout: float = 5.0):
        self.client = client
        self.timeout = timeout

    async def _check(self) -> HealthVerdict:
        async with self.client.request("GET", HEALTH_PATH, timeout=self.timeout) as response:
            if response.status_code == 200:
                return HealthVerdict.healthy()
            return HealthVerdict.unhealthy(response.status_code)

    async def probe(self) -> HealthVerdict:
        try:
            verdict = await asyncio.wait_for(self._check(), timeout=self.timeout)
        except (asyncio.TimeoutError, UpstreamTimeout):
            verdict = HealthVerdict.timeout(self.timeout)
        except UpstreamUnavailable as e:
            verdict = HealthVerdict.unreachable(e.message or str(e))
        except Exception as e:
            log_exception_with_details(
                logger, "[Health] Probe failed unexpectedly", e, level=logging.WARNING
            )
            verdict = HealthVerdict.unreachable(format_exception_message(e))

        if not verdict.is_healthy:
            logger.warning(f"[Health] Upstream not healthy: {verdict.to_dict()}")
        return verdict
