"""End-to-end runs of the realtime pipeline against the real SessionLog store."""

from datetime import timedelta

import pytest
from asgiref.sync import async_to_sync
from django.utils import timezone

from event_analytics.realtime.pipeline import IngestionPipeline
from event_analytics.realtime.pipeline import PipelineContext
from event_analytics.realtime.reconciler import Reconciler
from event_analytics.realtime.registry import ConnectionRegistry
from event_analytics.realtime.registry import Identity
from event_analytics.realtime.rooms import RoomBroadcaster
from event_analytics.realtime.tests.fakes import FakeEmitter
from event_analytics.tracking.models import SessionLog
from event_analytics.tracking.store import SessionLogStore

pytestmark = pytest.mark.django_db(transaction=True)


class Harness:
    def __init__(self, *, persist_moves=True, clock=timezone.now):
        self.emitter = FakeEmitter()
        self.registry = ConnectionRegistry(clock=clock)
        self.broadcaster = RoomBroadcaster(self.emitter, self.registry)
        store = SessionLogStore()
        self.pipeline = IngestionPipeline(
            PipelineContext(
                registry=self.registry,
                broadcaster=self.broadcaster,
                store=store,
                lookup_event=store.joinable_event_id,
                should_persist=lambda action: action != "move" or persist_moves,
            )
        )

    def connect(self, cid, identity=None):
        self.pipeline.on_connect(cid, identity, {"user_agent": "pytest"})

    def send(self, kind, cid, payload):
        return async_to_sync(self.pipeline.dispatch)(kind, cid, payload)

    def disconnect(self, cid):
        async_to_sync(self.pipeline.on_disconnect)(cid)


@pytest.mark.parametrize("persist_moves", [True, False])
def test_two_attendees_clicking_then_leaving(event, persist_moves):
    h = Harness(persist_moves=persist_moves)
    h.connect("A")
    h.connect("B")

    joined_a = h.send("join-room", "A", {"eventId": event.pk, "sessionId": "sess-a"})
    assert joined_a["count"] == 1
    joined_b = h.send("join-room", "B", {"eventId": event.pk, "sessionId": "sess-b"})
    assert joined_b["count"] == 2
    assert h.broadcaster.room_size(event.pk) == 2
    assert [p["sessionId"] for p in h.emitter.received("A", "peer-joined")] == [
        "sess-b"
    ]

    for x, y in [(10, 10), (20, 20), (30, 30)]:
        h.send("cursor-click", "B", {"eventId": event.pk, "x": x, "y": y, "page": "/"})
    h.send("cursor-sample", "B", {"eventId": event.pk, "x": 5, "y": 5, "page": "/"})

    assert len(h.emitter.received("A", "cursor-relay")) == 4
    log = SessionLog.objects.get(event=event, session_id="sess-b")
    assert log.total_clicks == 3
    assert len(log.heatmap_clicks) == 3
    assert len(log.cursor_data) == (4 if persist_moves else 3)
    assert log.user_agent == "pytest"

    h.disconnect("B")

    assert h.broadcaster.room_size(event.pk) == 1
    assert h.emitter.received("A", "room-count")[-1] == {
        "eventId": event.pk,
        "count": 1,
    }
    log.refresh_from_db()
    assert not log.is_active
    expected = (timezone.now() - log.start_time).total_seconds()
    assert abs(log.duration - expected) <= 1
    assert SessionLog.objects.get(session_id="sess-a").is_active


def test_frozen_connection_is_reconciled(event):
    frozen_at = timezone.now() - timedelta(minutes=10)
    now = [frozen_at]
    h = Harness(clock=lambda: now[0])
    h.connect("A")
    h.connect("B")
    h.send("join-room", "A", {"eventId": event.pk, "sessionId": "sess-a"})
    h.send("join-room", "B", {"eventId": event.pk, "sessionId": "sess-b"})

    # A keeps interacting, B goes silent without disconnecting
    now[0] = timezone.now()
    h.send("page-scroll", "A", {"eventId": event.pk, "page": "/", "scrollDepth": 50})

    reconciler = Reconciler(
        h.pipeline,
        timeout_seconds=60,
        interval_seconds=30,
        disconnect=h.emitter.disconnect,
        clock=lambda: now[0],
    )
    assert async_to_sync(reconciler.sweep)() == 1

    assert h.emitter.disconnected == ["B"]
    assert "B" not in h.registry
    assert h.broadcaster.room_size(event.pk) == 1
    assert h.emitter.received("A", "room-count")[-1]["count"] == 1
    assert not SessionLog.objects.get(session_id="sess-b").is_active
    assert SessionLog.objects.get(session_id="sess-a").is_active


def test_rejoin_after_reconnect_resumes_session(event):
    h = Harness()
    h.connect("tab-1")
    h.send("join-room", "tab-1", {"eventId": event.pk, "sessionId": "browser"})
    h.connect("tab-1-reconnected")
    h.send(
        "join-room", "tab-1-reconnected", {"eventId": event.pk, "sessionId": "browser"}
    )

    h.disconnect("tab-1")
    assert SessionLog.objects.get(session_id="browser").is_active

    h.disconnect("tab-1-reconnected")
    assert SessionLog.objects.filter(session_id="browser").count() == 1
    assert not SessionLog.objects.get(session_id="browser").is_active


def test_host_requests_live_analytics(event, host, user):
    h = Harness()
    h.connect("A")
    h.connect("H", Identity(user_id=host.pk, name="host"))
    h.connect("U", Identity(user_id=user.pk, name="Ada Lovelace"))
    h.send("join-room", "A", {"eventId": event.pk, "sessionId": "sess-a"})
    h.send("cursor-click", "A", {"eventId": event.pk, "x": 4, "y": 4, "page": "/"})

    snapshot = h.send("request-analytics", "H", {"eventId": event.pk})

    assert snapshot["activeSessions"] == 1
    assert snapshot["recentInteractions"] == [{"type": "click", "count": 1}]
    assert [d["sessionId"] for d in snapshot["sessionDetails"]] == ["sess-a"]
    assert h.emitter.received("H", "realtime-analytics") == [snapshot]

    assert h.send("request-analytics", "U", {"eventId": event.pk}) is None
    assert h.emitter.events_for("U") == ["error"]
