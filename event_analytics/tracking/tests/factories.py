from __future__ import annotations

from datetime import datetime
from typing import Any

from django.utils import timezone

from event_analytics.tracking.models import SessionLog


def create_session_log(
    event,
    session_id: str = "sess-1",
    *,
    user=None,
    start_time: datetime | None = None,
    last_activity: datetime | None = None,
    **fields: Any,
) -> SessionLog:
    start_time = start_time or timezone.now()
    return SessionLog.objects.create(
        event=event,
        session_id=session_id,
        user=user,
        start_time=start_time,
        last_activity=last_activity or start_time,
        **fields,
    )


def clicks(*points: tuple[float, float], page: str = "/") -> list[dict[str, Any]]:
    stamp = timezone.now().isoformat()
    return [{"x": x, "y": y, "page": page, "timestamp": stamp} for x, y in points]
