# apps/connections/pool.py

"""
Health-scored, rotating pool of outbound connection endpoints.

One pool instance is shared by every run executing in a worker process.
Per-endpoint counters are updated under that endpoint's lock; the pool's
own lock only guards selection and the consecutive-failure counter.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable

from django.utils import timezone

logger = logging.getLogger(__name__)


DEFAULT_ROTATION_THRESHOLD = 3
DEFAULT_MIN_SAMPLE = 10
DEFAULT_SUCCESS_FLOOR = 20.0

DIRECT_HOST = "direct"


@dataclass(eq=False)
class Endpoint:
    """In-memory view of a connection endpoint."""
    host: str
    port: int
    protocol: str = "http"
    username: str = ""
    password: str = ""
    country: str = ""
    id: int | None = None
    is_active: bool = True
    success_rate: float = 100.0
    total_requests: int = 0
    failed_requests: int = 0
    last_used_at: object = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def is_direct(self) -> bool:
        return self.host == DIRECT_HOST

    @property
    def proxy_url(self) -> str | None:
        """URL suitable for httpx's `proxy` argument, None for direct."""
        if self.is_direct:
            return None
        if self.username:
            return f"{self.protocol}://{self.username}:{self.password}@{self.host}:{self.port}"
        return f"{self.protocol}://{self.host}:{self.port}"

    @property
    def label(self) -> str:
        return f"{self.host}:{self.port}"

    def snapshot(self) -> dict:
        with self.lock:
            return {
                "id": self.id,
                "host": self.host,
                "port": self.port,
                "is_active": self.is_active,
                "success_rate": round(self.success_rate, 2),
                "total_requests": self.total_requests,
                "failed_requests": self.failed_requests,
                "last_used_at": self.last_used_at,
            }


def direct_endpoint() -> Endpoint:
    return Endpoint(host=DIRECT_HOST, port=0, country="Local")


class ConnectionPoolManager:
    """
    Selects an endpoint per request and tracks endpoint health.

    - selection sticks to the current endpoint until `rotation_threshold`
      consecutive failures have been reported, then advances round-robin
      over the active endpoints
    - with no active endpoints, selection falls back to a direct connection
    - an endpoint is deactivated once it has more than `min_sample`
      requests and a success rate below `success_floor`; it stays
      inactive until an operator resets it

    The pool never raises to callers.
    """

    def __init__(
        self,
        endpoints: list[Endpoint] | None = None,
        rotation_threshold: int = DEFAULT_ROTATION_THRESHOLD,
        min_sample: int = DEFAULT_MIN_SAMPLE,
        success_floor: float = DEFAULT_SUCCESS_FLOOR,
        on_update: Callable[[Endpoint], None] | None = None,
    ):
        self._endpoints: list[Endpoint] = list(endpoints or [])
        self.rotation_threshold = rotation_threshold
        self.min_sample = min_sample
        self.success_floor = success_floor
        self._on_update = on_update

        self._lock = threading.Lock()
        self._current: Endpoint | None = None
        self._consecutive_failures = 0
        self._direct = direct_endpoint()

        logger.info(f"Connection pool loaded with {len(self._endpoints)} endpoints")

    @property
    def endpoints(self) -> list[Endpoint]:
        return list(self._endpoints)

    def active_endpoints(self) -> list[Endpoint]:
        return [e for e in self._endpoints if e.is_active]

    def add_endpoint(self, endpoint: Endpoint) -> Endpoint:
        with self._lock:
            self._endpoints.append(endpoint)
        logger.info(f"Added endpoint {endpoint.label}")
        return endpoint

    def select_endpoint(self) -> Endpoint:
        """Return the endpoint to use for the next request. Always usable."""
        with self._lock:
            active = self.active_endpoints()

            if not active:
                logger.warning("No active endpoints available, using direct connection")
                self._direct.last_used_at = timezone.now()
                return self._direct

            current = self._current
            if current is None:
                selected = active[0]
            elif not current.is_active:
                # Deactivated since the last selection: its successor takes over
                selected = self._successor(current)
                self._consecutive_failures = 0
                logger.info(f"Endpoint {current.label} is inactive, moving to {selected.label}")
            elif self._consecutive_failures >= self.rotation_threshold:
                selected = self._successor(current)
                self._consecutive_failures = 0
                logger.info(f"Rotating from {current.label} to {selected.label} after repeated failures")
            else:
                selected = current
            self._current = selected

        with selected.lock:
            selected.last_used_at = timezone.now()

        logger.debug(f"Using endpoint {selected.label} ({selected.country or '-'})")
        return selected

    def report_outcome(
        self,
        endpoint: Endpoint,
        success: bool,
        latency_ms: int | None = None,
        error: str = "",
    ) -> None:
        """Fold one request outcome into the endpoint's health."""
        with self._lock:
            if success:
                self._consecutive_failures = 0
            else:
                self._consecutive_failures += 1

        if endpoint.is_direct:
            # The fallback is not health-scored
            return

        deactivated = False
        with endpoint.lock:
            endpoint.total_requests += 1
            if not success:
                endpoint.failed_requests += 1
            n = endpoint.total_requests
            endpoint.success_rate = (
                (endpoint.success_rate * (n - 1)) + (100.0 if success else 0.0)
            ) / n

            if (
                endpoint.is_active
                and endpoint.total_requests > self.min_sample
                and endpoint.success_rate < self.success_floor
            ):
                endpoint.is_active = False
                deactivated = True

        if success:
            logger.debug(f"Endpoint {endpoint.label} success ({latency_ms}ms)")
        else:
            logger.warning(f"Endpoint {endpoint.label} failed: {error}")
        if deactivated:
            logger.warning(
                f"Deactivated endpoint {endpoint.label} "
                f"(success rate {endpoint.success_rate:.1f}% over {endpoint.total_requests} requests)"
            )

        self._persist(endpoint)

    def reset_endpoint(self, endpoint: Endpoint) -> None:
        """Operator reset: clear counters and reactivate."""
        with endpoint.lock:
            endpoint.is_active = True
            endpoint.success_rate = 100.0
            endpoint.total_requests = 0
            endpoint.failed_requests = 0
        with self._lock:
            self._consecutive_failures = 0
        logger.info(f"Endpoint {endpoint.label} reset")
        self._persist(endpoint)

    def reset_all(self) -> None:
        for endpoint in self.endpoints:
            self.reset_endpoint(endpoint)

    def get_endpoint(self, endpoint_id: int) -> Endpoint | None:
        for endpoint in self._endpoints:
            if endpoint.id == endpoint_id:
                return endpoint
        return None

    def get_stats(self) -> dict:
        endpoints = self.endpoints
        active = self.active_endpoints()
        with self._lock:
            if not active:
                current = DIRECT_HOST
            elif self._current is not None and self._current.is_active:
                current = self._current.label
            else:
                current = (self._successor(self._current) if self._current else active[0]).label
        average = (
            sum(e.success_rate for e in endpoints) / len(endpoints)
            if endpoints else 0.0
        )
        return {
            "total_endpoints": len(endpoints),
            "active_endpoints": len(active),
            "average_success_rate": round(average, 2),
            "current_endpoint": current,
        }

    def _successor(self, endpoint: Endpoint) -> Endpoint:
        """Next active endpoint after `endpoint` in pool order, wrapping around."""
        count = len(self._endpoints)
        start = self._endpoints.index(endpoint) if endpoint in self._endpoints else -1
        for offset in range(1, count + 1):
            candidate = self._endpoints[(start + offset) % count]
            if candidate.is_active:
                return candidate
        return self._direct

    def _persist(self, endpoint: Endpoint) -> None:
        if self._on_update is None:
            return
        try:
            self._on_update(endpoint)
        except Exception as e:
            logger.error(f"Failed to persist health for endpoint {endpoint.label}: {e}")
