"""Ingestion pipeline for Socket.IO tracking messages.

Each client message kind maps to a payload serializer and a handler
``handler(ctx, connection_id, data)``. ``dispatch`` validates the payload,
runs the handler and turns any failure into an ``error`` message for the
sender, so one bad message never breaks the connection.

Handlers broadcast to peers first and persist second. Persistence failures
are logged and dropped; the next sample for the session retries naturally.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from collections.abc import Awaitable
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from dataclasses import field
from typing import Any

from django.utils import timezone
from rest_framework import serializers
from rest_framework.exceptions import APIException
from rest_framework.exceptions import NotAuthenticated
from rest_framework.exceptions import PermissionDenied
from rest_framework.exceptions import ValidationError

from event_analytics.analytics.api.serializers import RealtimeAnalyticsRequestSerializer
from event_analytics.realtime.registry import ConnectionEntry
from event_analytics.realtime.registry import ConnectionRegistry
from event_analytics.realtime.registry import Identity
from event_analytics.realtime.registry import identity_payload
from event_analytics.realtime.rooms import RoomBroadcaster
from event_analytics.tracking.api.serializers import ClickSerializer
from event_analytics.tracking.api.serializers import CursorSampleSerializer
from event_analytics.tracking.api.serializers import EndSessionSerializer
from event_analytics.tracking.api.serializers import HoverSerializer
from event_analytics.tracking.api.serializers import JoinRoomSerializer
from event_analytics.tracking.api.serializers import LeaveRoomSerializer
from event_analytics.tracking.api.serializers import PageVisitSerializer
from event_analytics.tracking.api.serializers import ScrollSerializer
from event_analytics.tracking.models import SessionLog

logger = logging.getLogger(__name__)


class SessionGuard:
    """Serializes starting and closing the same session row.

    A close decided for one connection must not overtake a resume made for
    another connection sharing the session, so both run under one lock per
    (event, session) pair. Locks are dropped once nobody holds or waits on them.
    """

    def __init__(self):
        self._locks: dict[tuple[int, str], asyncio.Lock] = {}
        self._holders: dict[tuple[int, str], int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, event_id: int, session_id: str) -> AsyncIterator[None]:
        key = (event_id, session_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]


@dataclass
class PipelineContext:
    registry: ConnectionRegistry
    broadcaster: RoomBroadcaster
    # SessionLogStore or a test double with the same coroutine methods
    store: Any
    lookup_event: Callable[[Any], Awaitable[int]]
    should_persist: Callable[[str], bool]
    guard: SessionGuard = field(default_factory=SessionGuard)


Handler = Callable[[PipelineContext, str, dict[str, Any]], Awaitable[Any]]


def _error_message(detail: Any) -> str:
    if isinstance(detail, dict):
        parts = []
        for key, value in detail.items():
            text = _error_message(value)
            parts.append(
                text if key in {"non_field_errors", "detail"} else f"{key}: {text}"
            )
        return "; ".join(parts)
    if isinstance(detail, (list, tuple)):
        return "; ".join(_error_message(item) for item in detail)
    return str(detail)


def _accepted(
    ctx: PipelineContext, connection_id: str, data: dict[str, Any]
) -> ConnectionEntry | None:
    """Return the entry if the message belongs to the connection's current room.

    Messages for another room, or naming a session other than the bound one,
    come from clients mid-transition and are dropped silently.
    """
    entry = ctx.registry.get(connection_id)
    if entry is None or entry.current_room is None:
        return None
    if entry.current_room != data["event_id"]:
        return None
    session_id = data.get("session_id")
    if session_id is not None and session_id != entry.session_id:
        return None
    return entry


async def _persist(
    ctx: PipelineContext,
    method: str,
    event_id: int,
    session_id: str,
    user_id: int | None,
    **sample: Any,
) -> None:
    try:
        await getattr(ctx.store, method)(
            event_id, session_id, user_id=user_id, **sample
        )
    except Exception:
        logger.exception(
            "Failed to persist %s for session %s (event %s)",
            method,
            session_id,
            event_id,
        )


async def _close_session(
    ctx: PipelineContext, event_id: int, session_id: str
) -> int | None:
    try:
        return await ctx.store.end_session(event_id, session_id)
    except Exception:
        logger.exception(
            "Failed to close session %s (event %s)", session_id, event_id
        )
        return None


def _relay_payload(
    entry: ConnectionEntry, data: dict[str, Any], action: str
) -> dict[str, Any]:
    return {
        "sessionId": entry.session_id,
        "identity": identity_payload(entry.identity),
        "x": data["x"],
        "y": data["y"],
        "page": data["page"],
        "element": data.get("element"),
        "action": action,
        "timestamp": timezone.now().isoformat(),
    }


async def _leave_current(
    ctx: PipelineContext, connection_id: str, *, notify_self: bool = True
) -> int | None:
    """Leave the current room and close that room's session.

    The session row is left open when another live connection in the room is
    bound to it, e.g. a tab that reconnected before this one timed out. The
    binding is checked under the session guard, so a resume arriving while
    the close is in flight waits for it and then starts a fresh row.
    """
    entry = ctx.registry.get(connection_id)
    if entry is None or entry.current_room is None:
        return None
    event_id, session_id = entry.current_room, entry.session_id
    await ctx.broadcaster.leave(connection_id, notify_self=notify_self)
    ctx.registry.bind_session(connection_id, None)
    if session_id is not None:
        async with ctx.guard.hold(event_id, session_id):
            if not ctx.registry.has_other_binding(connection_id, session_id, event_id):
                await _close_session(ctx, event_id, session_id)
    logger.info("Connection %s left event %s", connection_id, event_id)
    return event_id


async def handle_join(
    ctx: PipelineContext, connection_id: str, data: dict[str, Any]
) -> dict[str, Any]:
    entry = ctx.registry.register(connection_id)
    event_id = await ctx.lookup_event(data["event_id"])
    session_id = data.get("session_id") or connection_id

    if entry.current_room is not None and (
        entry.current_room != event_id or entry.session_id != session_id
    ):
        await _leave_current(ctx, connection_id)

    ctx.registry.bind_session(connection_id, session_id, entry.session_log_id)
    await ctx.broadcaster.join(connection_id, event_id)
    ctx.registry.touch(connection_id)

    context = {**entry.transport_context, **dict(data.get("context") or {})}
    try:
        async with ctx.guard.hold(event_id, session_id):
            log_id, created = await ctx.store.start_or_resume(
                event_id, session_id, user_id=entry.user_id, context=context
            )
    except Exception:
        logger.exception(
            "Failed to start session %s (event %s)", session_id, event_id
        )
    else:
        if entry.session_id == session_id:
            ctx.registry.bind_session(connection_id, session_id, log_id)
        logger.info(
            "Connection %s %s session %s in event %s",
            connection_id,
            "started" if created else "resumed",
            session_id,
            event_id,
        )

    participants = [
        {
            "sessionId": peer.session_id,
            "identity": identity_payload(peer.identity),
            "connectedAt": peer.connected_at.isoformat(),
        }
        for peer in ctx.registry.list_by_room(event_id)
        if peer.connection_id != connection_id
    ]
    result = {
        "eventId": event_id,
        "sessionId": session_id,
        "count": ctx.broadcaster.room_size(event_id),
        "participants": participants,
    }
    await ctx.broadcaster.send(connection_id, "room-joined", result)
    return result


async def handle_cursor_sample(
    ctx: PipelineContext, connection_id: str, data: dict[str, Any]
) -> None:
    entry = _accepted(ctx, connection_id, data)
    if entry is None:
        return
    event_id, session_id = entry.current_room, entry.session_id
    action = data.get("action") or SessionLog.Action.MOVE
    ctx.registry.touch(connection_id)
    await ctx.broadcaster.broadcast(
        event_id, connection_id, "cursor-relay", _relay_payload(entry, data, action)
    )
    if ctx.should_persist(action):
        await _persist(
            ctx,
            "record_movement",
            event_id,
            session_id,
            entry.user_id,
            x=data["x"],
            y=data["y"],
            page=data["page"],
            element=data.get("element"),
            action=action,
        )


async def handle_click(
    ctx: PipelineContext, connection_id: str, data: dict[str, Any]
) -> None:
    entry = _accepted(ctx, connection_id, data)
    if entry is None:
        return
    event_id, session_id = entry.current_room, entry.session_id
    ctx.registry.touch(connection_id)
    await ctx.broadcaster.broadcast(
        event_id,
        connection_id,
        "cursor-relay",
        _relay_payload(entry, data, SessionLog.Action.CLICK),
    )
    await _persist(
        ctx,
        "record_click",
        event_id,
        session_id,
        entry.user_id,
        x=data["x"],
        y=data["y"],
        page=data["page"],
        element=data.get("element"),
    )


async def handle_hover(
    ctx: PipelineContext, connection_id: str, data: dict[str, Any]
) -> None:
    entry = _accepted(ctx, connection_id, data)
    if entry is None:
        return
    ctx.registry.touch(connection_id)
    await _persist(
        ctx,
        "record_hover",
        entry.current_room,
        entry.session_id,
        entry.user_id,
        x=data["x"],
        y=data["y"],
        page=data["page"],
        duration_ms=data.get("duration_ms", 0),
    )


async def handle_scroll(
    ctx: PipelineContext, connection_id: str, data: dict[str, Any]
) -> None:
    entry = _accepted(ctx, connection_id, data)
    if entry is None:
        return
    ctx.registry.touch(connection_id)
    await _persist(
        ctx,
        "record_scroll",
        entry.current_room,
        entry.session_id,
        entry.user_id,
        page=data["page"],
        depth=data["depth"],
    )


async def handle_page_visit(
    ctx: PipelineContext, connection_id: str, data: dict[str, Any]
) -> None:
    entry = _accepted(ctx, connection_id, data)
    if entry is None:
        return
    ctx.registry.touch(connection_id)
    await _persist(
        ctx,
        "record_page_visit",
        entry.current_room,
        entry.session_id,
        entry.user_id,
        page=data["page"],
        time_spent=data.get("time_spent", 0),
    )


async def handle_end_session(
    ctx: PipelineContext, connection_id: str, data: dict[str, Any]
) -> dict[str, Any]:
    """Close the connection's own session; repeated calls report the same duration."""
    entry = ctx.registry.get(connection_id)
    if entry is None or entry.session_id is None:
        msg = "No session is bound to this connection; join a room first."
        raise ValidationError(msg)
    session_id = data.get("session_id") or entry.session_id
    if session_id != entry.session_id:
        msg = "Cannot end a session bound to another connection."
        raise PermissionDenied(msg)
    ctx.registry.touch(connection_id)
    async with ctx.guard.hold(data["event_id"], session_id):
        duration = await _close_session(ctx, data["event_id"], session_id)
    return {"eventId": data["event_id"], "sessionId": session_id, "duration": duration}


async def handle_leave(
    ctx: PipelineContext, connection_id: str, data: dict[str, Any]
) -> dict[str, Any] | None:
    event_id = await _leave_current(ctx, connection_id)
    if event_id is None:
        return None
    return {"eventId": event_id, "count": ctx.broadcaster.room_size(event_id)}


async def handle_request_analytics(
    ctx: PipelineContext, connection_id: str, data: dict[str, Any]
) -> dict[str, Any]:
    """Send the event's live analytics snapshot back to its host."""
    entry = ctx.registry.get(connection_id)
    if entry is None or entry.user_id is None:
        msg = "Sign in as the event host to view analytics."
        raise NotAuthenticated(msg)
    event_id = await ctx.store.hosted_event_id(data["event_id"], entry.user_id)
    snapshot = await ctx.store.realtime_snapshot(
        event_id, list(ctx.registry.list_by_room(event_id))
    )
    await ctx.broadcaster.send(connection_id, "realtime-analytics", snapshot)
    return snapshot


HANDLERS: dict[str, tuple[type[serializers.Serializer], Handler]] = {
    "join-room": (JoinRoomSerializer, handle_join),
    "cursor-sample": (CursorSampleSerializer, handle_cursor_sample),
    "cursor-click": (ClickSerializer, handle_click),
    "cursor-hover": (HoverSerializer, handle_hover),
    "page-scroll": (ScrollSerializer, handle_scroll),
    "page-visit": (PageVisitSerializer, handle_page_visit),
    "end-session": (EndSessionSerializer, handle_end_session),
    "leave-room": (LeaveRoomSerializer, handle_leave),
    "request-analytics": (RealtimeAnalyticsRequestSerializer, handle_request_analytics),
}

MESSAGE_KINDS = tuple(HANDLERS)


class IngestionPipeline:
    def __init__(self, ctx: PipelineContext):
        self.ctx = ctx

    @property
    def registry(self) -> ConnectionRegistry:
        return self.ctx.registry

    async def _report(self, connection_id: str, message: str) -> None:
        try:
            await self.ctx.broadcaster.send_error(connection_id, message)
        except Exception:
            logger.exception("Could not deliver error to %s", connection_id)

    def on_connect(
        self,
        connection_id: str,
        identity: Identity | None,
        transport_context: dict[str, str] | None = None,
    ) -> ConnectionEntry:
        entry = self.ctx.registry.register(connection_id)
        self.ctx.registry.attach_identity(connection_id, identity)
        entry.transport_context = dict(transport_context or {})
        return entry

    async def dispatch(self, kind: str, connection_id: str, payload: Any) -> Any:
        route = HANDLERS.get(kind)
        if route is None:
            await self._report(connection_id, f"Unknown message type: {kind}")
            return None
        serializer_class, handler = route
        serializer = serializer_class(
            data=payload if payload is not None else {},
            context={"session_optional": True},
        )
        if not serializer.is_valid():
            await self._report(connection_id, _error_message(serializer.errors))
            return None
        try:
            return await handler(self.ctx, connection_id, dict(serializer.validated_data))
        except APIException as exc:
            await self._report(connection_id, _error_message(exc.detail))
        except Exception:
            logger.exception("Error handling %s from %s", kind, connection_id)
            await self._report(connection_id, "Internal server error")
        return None

    async def on_disconnect(self, connection_id: str) -> None:
        """Leave the room, close the session and forget the connection.

        Unknown or already removed connections are ignored.
        """
        if self.ctx.registry.get(connection_id) is None:
            return
        try:
            await _leave_current(self.ctx, connection_id, notify_self=False)
        finally:
            self.ctx.registry.remove(connection_id)
