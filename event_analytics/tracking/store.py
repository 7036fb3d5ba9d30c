"""Async facade over the SessionLog services for the Socket.IO handlers.

ORM calls run in a worker thread through ``database_sync_to_async``; only
plain values cross back into the event loop.
"""

from __future__ import annotations

from typing import Any

from channels.db import database_sync_to_async
from django.contrib.auth import get_user_model
from rest_framework.exceptions import PermissionDenied

from event_analytics.analytics import aggregator
from event_analytics.events.lookup import get_event
from event_analytics.events.lookup import get_joinable_event
from event_analytics.events.lookup import is_event_host
from event_analytics.realtime.registry import ConnectionEntry
from event_analytics.tracking import services


class SessionLogStore:
    @database_sync_to_async
    def joinable_event_id(self, event_id: Any) -> int:
        """Raise ``EventNotFound``/``EventNotJoinable`` or return the event pk."""
        return get_joinable_event(event_id).pk

    @database_sync_to_async
    def hosted_event_id(self, event_id: Any, user_id: int) -> int:
        """Return the event pk if ``user_id`` may read its analytics."""
        event = get_event(event_id)
        user = get_user_model().objects.filter(pk=user_id, is_active=True).first()
        if not is_event_host(user, event):
            msg = "Only the event host can view its analytics"
            raise PermissionDenied(msg)
        return event.pk

    @database_sync_to_async
    def realtime_snapshot(
        self, event_id: int, live_entries: list[ConnectionEntry]
    ) -> dict[str, Any]:
        return aggregator.realtime_snapshot(event_id, live_entries)

    @database_sync_to_async
    def start_or_resume(
        self,
        event_id: int,
        session_id: str,
        *,
        user_id: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> tuple[int, bool]:
        log, created = services.start_or_resume_session(
            event_id, session_id, user_id=user_id, context=context
        )
        return log.pk, created

    @database_sync_to_async
    def record_movement(self, event_id: int, session_id: str, **sample) -> None:
        services.record_movement(event_id, session_id, **sample)

    @database_sync_to_async
    def record_click(self, event_id: int, session_id: str, **sample) -> None:
        services.record_click(event_id, session_id, **sample)

    @database_sync_to_async
    def record_hover(self, event_id: int, session_id: str, **sample) -> None:
        services.record_hover(event_id, session_id, **sample)

    @database_sync_to_async
    def record_scroll(self, event_id: int, session_id: str, **sample) -> None:
        services.record_scroll(event_id, session_id, **sample)

    @database_sync_to_async
    def record_page_visit(self, event_id: int, session_id: str, **sample) -> None:
        services.record_page_visit(event_id, session_id, **sample)

    @database_sync_to_async
    def end_session(self, event_id: int, session_id: str) -> int | None:
        log = services.end_session(event_id, session_id)
        return log.duration if log is not None else None
