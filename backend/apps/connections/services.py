# apps/connections/services.py

import logging
import threading

from django.conf import settings

from apps.common.enums import ProxyProtocol

from .models import ConnectionEndpoint
from .pool import ConnectionPoolManager, Endpoint

logger = logging.getLogger(__name__)

_pool_lock = threading.Lock()
_process_pool: ConnectionPoolManager | None = None


def parse_proxy_list(proxy_list: str) -> list[dict]:
    """Parse "host:port[:user:password]" entries separated by commas."""
    entries = []
    for raw in (proxy_list or "").split(","):
        parts = raw.strip().split(":")
        if len(parts) < 2:
            continue
        try:
            port = int(parts[1])
        except ValueError:
            logger.warning(f"Ignoring proxy entry with invalid port: {raw.strip()}")
            continue
        entries.append({
            "host": parts[0],
            "port": port,
            "username": parts[2] if len(parts) > 2 else "",
            "password": parts[3] if len(parts) > 3 else "",
            "protocol": ProxyProtocol.HTTP,
        })
    return entries


def create_endpoint(
    host: str,
    port: int,
    protocol: str = ProxyProtocol.HTTP,
    username: str = "",
    password: str = "",
    country: str = "",
) -> ConnectionEndpoint:
    endpoint, _ = ConnectionEndpoint.objects.get_or_create(
        host=host,
        port=port,
        username=username,
        defaults={"protocol": protocol, "password": password, "country": country},
    )
    return endpoint


def sync_proxy_list() -> int:
    """Make sure every PROXY_LIST entry exists as a ConnectionEndpoint row."""
    entries = parse_proxy_list(getattr(settings, "PROXY_LIST", ""))
    for entry in entries:
        create_endpoint(**entry)
    return len(entries)


def to_endpoint(row: ConnectionEndpoint) -> Endpoint:
    return Endpoint(
        id=row.id,
        host=row.host,
        port=row.port,
        protocol=row.protocol,
        username=row.username,
        password=row.password,
        country=row.country,
        is_active=row.is_active,
        success_rate=row.success_rate,
        total_requests=row.total_requests,
        failed_requests=row.failed_requests,
        last_used_at=row.last_used_at,
    )


def persist_endpoint_health(endpoint: Endpoint) -> None:
    """Write the in-memory health counters back to the endpoint row."""
    if endpoint.id is None:
        return
    snapshot = endpoint.snapshot()
    ConnectionEndpoint.objects.filter(pk=endpoint.id).update(
        is_active=snapshot["is_active"],
        success_rate=snapshot["success_rate"],
        total_requests=snapshot["total_requests"],
        failed_requests=snapshot["failed_requests"],
        last_used_at=snapshot["last_used_at"],
    )


def load_endpoints() -> list[Endpoint]:
    """Stored endpoints (PROXY_LIST entries included) as pool endpoints."""
    sync_proxy_list()
    return [to_endpoint(row) for row in ConnectionEndpoint.objects.order_by("id")]


def build_connection_pool() -> ConnectionPoolManager:
    return ConnectionPoolManager(
        endpoints=load_endpoints(),
        rotation_threshold=settings.CONNECTION_POOL_ROTATION_THRESHOLD,
        min_sample=settings.CONNECTION_POOL_MIN_SAMPLE,
        success_floor=settings.CONNECTION_POOL_SUCCESS_FLOOR,
        on_update=persist_endpoint_health,
    )


def get_connection_pool() -> ConnectionPoolManager:
    """The pool shared by all runs in this worker process."""
    global _process_pool
    with _pool_lock:
        if _process_pool is None:
            _process_pool = build_connection_pool()
        return _process_pool


def reset_endpoint(endpoint_id: int) -> ConnectionEndpoint:
    """Operator reactivation of an endpoint (the only way back to active)."""
    row = ConnectionEndpoint.objects.get(pk=endpoint_id)
    pool = _process_pool
    live = pool.get_endpoint(endpoint_id) if pool else None
    if live is not None:
        pool.reset_endpoint(live)
    else:
        row.is_active = True
        row.success_rate = 100.0
        row.total_requests = 0
        row.failed_requests = 0
        row.save(update_fields=[
            "is_active", "success_rate", "total_requests", "failed_requests", "updated_at",
        ])
    row.refresh_from_db()
    return row


def register_endpoint(row: ConnectionEndpoint) -> None:
    """Make a newly created endpoint available to the live pool."""
    pool = _process_pool
    if pool is not None and pool.get_endpoint(row.id) is None:
        pool.add_endpoint(to_endpoint(row))
