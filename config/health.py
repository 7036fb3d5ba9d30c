"""Liveness/readiness endpoint for the tracking service.

``db`` and ``redis`` (the Celery broker driving the session sweeps) decide
the status; ``realtime`` reports this process's Socket.IO state and never
fails the check, since an idle server legitimately has no connections.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import redis
from django.conf import settings
from django.db import connection
from django.db import transaction
from django.http import JsonResponse

from event_analytics.realtime.socketio import reconciler
from event_analytics.realtime.socketio import registry


def _timed(probe: Callable[[], None]) -> dict[str, Any]:
    started = time.perf_counter()
    try:
        probe()
    except Exception as exc:  # noqa: BLE001 - health must degrade, not crash
        return {"ok": False, "error": str(exc)}
    return {"ok": True, "latency_ms": round((time.perf_counter() - started) * 1000, 2)}


def _ping_db() -> None:
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1;")
        cursor.fetchone()


def _ping_redis() -> None:
    client = redis.Redis.from_url(
        settings.REDIS_URL,
        socket_timeout=0.5,
        socket_connect_timeout=0.5,
    )
    client.ping()


def check_db() -> dict[str, Any]:
    return _timed(_ping_db)


def check_redis() -> dict[str, Any]:
    if not getattr(settings, "REDIS_URL", None):
        return {"ok": False, "error": "REDIS_URL not configured"}
    return _timed(_ping_redis)


def realtime_info() -> dict[str, Any]:
    return {
        "connections": len(registry),
        "reconciler": "running" if reconciler.running else "stopped",
        "inactivity_timeout_s": int(reconciler.timeout.total_seconds()),
    }


@transaction.non_atomic_requests
def health(request):
    components = {"db": check_db(), "redis": check_redis()}
    healthy = [c["ok"] for c in components.values()]

    if all(healthy):
        status, http_status = "ok", 200
    elif any(healthy):
        status, http_status = "degraded", 503
    else:
        status, http_status = "down", 503

    return JsonResponse(
        {"status": status, "components": components, "realtime": realtime_info()},
        status=http_status,
    )
