"""Process-local view of who is connected, and where.

The registry is the only owner of connection state; the broadcaster,
pipeline and reconciler go through its methods. It is touched only from the
event loop thread and never awaits, so each call is atomic with respect to
other handlers. Nothing here survives a restart: clients reconnect and rejoin.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from typing import Any

from django.utils import timezone


@dataclass(frozen=True)
class Identity:
    """Display identity of an authenticated connection.

    Anonymous connections carry ``None`` instead of an Identity.
    """

    user_id: int
    name: str
    avatar: str = ""

    def as_payload(self) -> dict[str, Any]:
        return {"userId": self.user_id, "name": self.name, "avatar": self.avatar}


def identity_payload(identity: Identity | None) -> dict[str, Any] | None:
    return identity.as_payload() if identity is not None else None


@dataclass
class ConnectionEntry:
    connection_id: str
    connected_at: datetime
    last_activity: datetime
    identity: Identity | None = None
    current_room: int | None = None
    session_id: str | None = None
    session_log_id: int | None = None
    # user agent / IP captured from the transport handshake
    transport_context: dict[str, str] = field(default_factory=dict)

    @property
    def user_id(self) -> int | None:
        return self.identity.user_id if self.identity is not None else None


class ConnectionRegistry:
    def __init__(self, clock: Callable[[], datetime] = timezone.now):
        self._clock = clock
        self._entries: dict[str, ConnectionEntry] = {}
        self._by_room: dict[int, set[str]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._entries

    def register(self, connection_id: str) -> ConnectionEntry:
        entry = self._entries.get(connection_id)
        if entry is None:
            now = self._clock()
            entry = ConnectionEntry(
                connection_id=connection_id, connected_at=now, last_activity=now
            )
            self._entries[connection_id] = entry
        return entry

    def get(self, connection_id: str) -> ConnectionEntry | None:
        return self._entries.get(connection_id)

    def attach_identity(self, connection_id: str, identity: Identity | None) -> None:
        entry = self._entries.get(connection_id)
        if entry is not None:
            entry.identity = identity

    def set_room(self, connection_id: str, event_id: int | None) -> None:
        entry = self._entries.get(connection_id)
        if entry is None:
            return
        if entry.current_room is not None:
            members = self._by_room.get(entry.current_room)
            if members is not None:
                members.discard(connection_id)
                if not members:
                    del self._by_room[entry.current_room]
        entry.current_room = event_id
        if event_id is not None:
            self._by_room.setdefault(event_id, set()).add(connection_id)

    def bind_session(
        self,
        connection_id: str,
        session_id: str | None,
        session_log_id: int | None = None,
    ) -> None:
        entry = self._entries.get(connection_id)
        if entry is not None:
            entry.session_id = session_id
            entry.session_log_id = session_log_id

    def touch(self, connection_id: str) -> None:
        entry = self._entries.get(connection_id)
        if entry is not None:
            entry.last_activity = self._clock()

    def remove(self, connection_id: str) -> ConnectionEntry | None:
        entry = self._entries.get(connection_id)
        if entry is None:
            return None
        self.set_room(connection_id, None)
        return self._entries.pop(connection_id)

    def list_by_room(self, event_id: int) -> list[ConnectionEntry]:
        ids = self._by_room.get(event_id, ())
        return [self._entries[cid] for cid in ids if cid in self._entries]

    def stale(self, cutoff: datetime) -> list[ConnectionEntry]:
        """Entries whose last activity is strictly older than ``cutoff``."""
        return [e for e in self._entries.values() if e.last_activity < cutoff]

    def has_other_binding(
        self, connection_id: str, session_id: str | None, event_id: int | None
    ) -> bool:
        """True if another live connection is bound to the same session in the room."""
        if session_id is None or event_id is None:
            return False
        return any(
            cid != connection_id and self._entries[cid].session_id == session_id
            for cid in self._by_room.get(event_id, ())
            if cid in self._entries
        )
