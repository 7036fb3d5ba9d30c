"""Event-room fan-out on top of the connection registry.

Membership lives in the registry; this module mirrors it into Socket.IO rooms
and emits presence messages. The emitter is anything with the
``socketio.AsyncServer`` ``emit``/``enter_room``/``leave_room`` coroutines.
Membership is changed before the first await of each call, so concurrent
handlers always see a consistent count.
"""

from __future__ import annotations

import logging
from typing import Any

from event_analytics.realtime.registry import ConnectionRegistry
from event_analytics.realtime.registry import identity_payload

logger = logging.getLogger(__name__)


def room_for_event(event_id: int) -> str:
    return f"event_{int(event_id)}"


class RoomBroadcaster:
    def __init__(self, emitter: Any, registry: ConnectionRegistry):
        self.emitter = emitter
        self.registry = registry

    def room_of(self, connection_id: str) -> int | None:
        entry = self.registry.get(connection_id)
        return entry.current_room if entry is not None else None

    def room_size(self, event_id: int) -> int:
        return len(self.registry.list_by_room(event_id))

    async def join(self, connection_id: str, event_id: int) -> int:
        """Move the connection into ``event_id``'s room and return its size.

        A connection in another room leaves it first, so old peers hear
        ``peer-left`` before new peers hear ``peer-joined``.
        """
        entry = self.registry.get(connection_id)
        if entry is None:
            logger.warning("Join for unregistered connection %s", connection_id)
            return 0
        if entry.current_room == event_id:
            return self.room_size(event_id)
        if entry.current_room is not None:
            await self.leave(connection_id)

        self.registry.set_room(connection_id, event_id)
        count = self.room_size(event_id)
        room = room_for_event(event_id)
        await self.emitter.enter_room(connection_id, room)
        await self.emitter.emit(
            "peer-joined",
            {
                "sessionId": entry.session_id,
                "identity": identity_payload(entry.identity),
            },
            room=room,
            skip_sid=connection_id,
        )
        await self.emitter.emit(
            "room-count", {"eventId": event_id, "count": count}, room=room
        )
        return count

    async def leave(self, connection_id: str, *, notify_self: bool = True) -> int | None:
        """Remove the connection from its room; returns the event id it left."""
        entry = self.registry.get(connection_id)
        if entry is None or entry.current_room is None:
            return None
        event_id = entry.current_room
        self.registry.set_room(connection_id, None)
        count = self.room_size(event_id)
        room = room_for_event(event_id)
        await self.emitter.leave_room(connection_id, room)
        if count:
            await self.emitter.emit(
                "peer-left",
                {
                    "sessionId": entry.session_id,
                    "identity": identity_payload(entry.identity),
                },
                room=room,
            )
            await self.emitter.emit(
                "room-count", {"eventId": event_id, "count": count}, room=room
            )
        if notify_self:
            await self.emitter.emit(
                "room-count", {"eventId": event_id, "count": count}, to=connection_id
            )
        return event_id

    async def broadcast(
        self,
        event_id: int,
        exclude_connection_id: str | None,
        kind: str,
        payload: dict[str, Any],
    ) -> None:
        if not self.room_size(event_id):
            return
        await self.emitter.emit(
            kind,
            payload,
            room=room_for_event(event_id),
            skip_sid=exclude_connection_id,
        )

    async def send(self, connection_id: str, kind: str, payload: dict[str, Any]) -> None:
        await self.emitter.emit(kind, payload, to=connection_id)

    async def send_error(self, connection_id: str, message: str) -> None:
        await self.send(connection_id, "error", {"message": message})
