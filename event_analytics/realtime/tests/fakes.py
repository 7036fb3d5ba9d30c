"""In-memory stand-ins for the Socket.IO server and the SessionLog store."""

from __future__ import annotations

from typing import Any

from django.db import DatabaseError
from rest_framework.exceptions import PermissionDenied

from event_analytics.events.exceptions import EventNotFound
from event_analytics.events.exceptions import EventNotJoinable


class FakeEmitter:
    """Records what each connection would receive from an AsyncServer."""

    def __init__(self):
        self.rooms: dict[str, set[str]] = {}
        self.sent: list[tuple[str, str, Any]] = []
        self.disconnected: list[str] = []

    async def enter_room(self, sid, room, namespace=None):
        self.rooms.setdefault(room, set()).add(sid)

    async def leave_room(self, sid, room, namespace=None):
        self.rooms.get(room, set()).discard(sid)

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None, **kwargs):
        target = to if to is not None else room
        recipients = self.rooms[target] if target in self.rooms else {target}
        for sid in sorted(recipients):
            if sid != skip_sid:
                self.sent.append((sid, event, data))

    async def disconnect(self, sid, namespace=None):
        self.disconnected.append(sid)

    def received(self, sid: str, event: str | None = None) -> list[Any]:
        return [
            data
            for to, name, data in self.sent
            if to == sid and (event is None or name == event)
        ]

    def events_for(self, sid: str) -> list[str]:
        return [name for to, name, _ in self.sent if to == sid]

    def clear(self) -> None:
        self.sent.clear()


class FakeStore:
    """SessionLogStore double keeping just enough state for assertions."""

    def __init__(self, joinable=(1,), closed_events=(), hosts=None):
        self.joinable = set(joinable)
        self.closed_events = set(closed_events)
        # event id -> user id of its host
        self.hosts: dict[int, int] = dict(hosts or {})
        self.calls: list[tuple[str, int, str, dict[str, Any]]] = []
        self.active: dict[tuple[int, str], int] = {}
        self.durations: dict[tuple[int, str], int] = {}
        self.failing: set[str] = set()
        self._next_id = 1

    def _record(self, method: str, event_id: int, session_id: str, **kwargs):
        if method in self.failing:
            msg = "store unavailable"
            raise DatabaseError(msg)
        self.calls.append((method, event_id, session_id, kwargs))

    def calls_to(self, method: str) -> list[tuple[int, str, dict[str, Any]]]:
        return [(e, s, kw) for m, e, s, kw in self.calls if m == method]

    async def joinable_event_id(self, event_id):
        eid = int(event_id)
        if eid in self.closed_events:
            raise EventNotJoinable
        if eid not in self.joinable:
            raise EventNotFound
        return eid

    async def hosted_event_id(self, event_id, user_id):
        eid = int(event_id)
        if eid not in self.joinable | self.closed_events:
            raise EventNotFound
        if self.hosts.get(eid) != user_id:
            raise PermissionDenied
        return eid

    async def realtime_snapshot(self, event_id, live_entries):
        return {
            "eventId": event_id,
            "activeSessions": len(live_entries),
            "sessionIds": sorted(e.session_id for e in live_entries),
        }

    async def start_or_resume(self, event_id, session_id, *, user_id=None, context=None):
        self._record(
            "start_or_resume", event_id, session_id, user_id=user_id, context=context
        )
        key = (event_id, session_id)
        if key in self.active:
            return self.active[key], False
        self.active[key] = self._next_id
        self._next_id += 1
        return self.active[key], True

    async def record_movement(self, event_id, session_id, **sample):
        self._record("record_movement", event_id, session_id, **sample)

    async def record_click(self, event_id, session_id, **sample):
        self._record("record_click", event_id, session_id, **sample)

    async def record_hover(self, event_id, session_id, **sample):
        self._record("record_hover", event_id, session_id, **sample)

    async def record_scroll(self, event_id, session_id, **sample):
        self._record("record_scroll", event_id, session_id, **sample)

    async def record_page_visit(self, event_id, session_id, **sample):
        self._record("record_page_visit", event_id, session_id, **sample)

    async def end_session(self, event_id, session_id):
        self._record("end_session", event_id, session_id)
        key = (event_id, session_id)
        if self.active.pop(key, None) is not None:
            self.durations[key] = 42
        return self.durations.get(key)


class GatedStore(FakeStore):
    """FakeStore whose ``end_session`` parks until ``release`` is set.

    ``closing`` and ``release`` are asyncio events created by the test inside
    the running loop.
    """

    closing: Any = None
    release: Any = None

    async def end_session(self, event_id, session_id):
        self.closing.set()
        await self.release.wait()
        return await super().end_session(event_id, session_id)
