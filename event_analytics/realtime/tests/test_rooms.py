from asgiref.sync import async_to_sync

from event_analytics.realtime.rooms import room_for_event


def _connect(registry, *cids):
    for cid in cids:
        registry.register(cid)


class TestRoomBroadcaster:
    def test_room_name(self):
        assert room_for_event(12) == "event_12"

    def test_join_emits_presence_and_counts(self, registry, emitter, broadcaster):
        _connect(registry, "a", "b")
        assert async_to_sync(broadcaster.join)("a", 1) == 1
        assert async_to_sync(broadcaster.join)("b", 1) == 2

        assert broadcaster.room_size(1) == 2
        assert broadcaster.room_of("b") == 1
        # "a" hears about "b"; "b" is skipped for its own peer-joined
        assert len(emitter.received("a", "peer-joined")) == 1
        assert emitter.received("b", "peer-joined") == []
        assert emitter.received("b", "room-count") == [{"eventId": 1, "count": 2}]
        assert emitter.received("a", "room-count")[-1] == {"eventId": 1, "count": 2}

    def test_rejoining_same_room_does_not_double_count(self, registry, broadcaster):
        _connect(registry, "a")
        async_to_sync(broadcaster.join)("a", 1)
        assert async_to_sync(broadcaster.join)("a", 1) == 1

    def test_switching_rooms_leaves_old_room_first(
        self, registry, emitter, broadcaster
    ):
        _connect(registry, "a", "b", "c")
        async_to_sync(broadcaster.join)("a", 1)
        async_to_sync(broadcaster.join)("b", 1)
        async_to_sync(broadcaster.join)("c", 2)
        emitter.clear()

        async_to_sync(broadcaster.join)("a", 2)

        assert broadcaster.room_size(1) == 1
        assert broadcaster.room_size(2) == 2
        names = [(sid, name) for sid, name, _ in emitter.sent]
        assert names.index(("b", "peer-left")) < names.index(("c", "peer-joined"))
        assert emitter.received("b", "room-count") == [{"eventId": 1, "count": 1}]

    def test_leave_notifies_remaining_peers_and_self(
        self, registry, emitter, broadcaster
    ):
        _connect(registry, "a", "b")
        async_to_sync(broadcaster.join)("a", 1)
        async_to_sync(broadcaster.join)("b", 1)
        emitter.clear()

        assert async_to_sync(broadcaster.leave)("a") == 1
        assert emitter.events_for("b") == ["peer-left", "room-count"]
        assert emitter.received("a", "room-count") == [{"eventId": 1, "count": 1}]
        assert async_to_sync(broadcaster.leave)("a") is None

    def test_last_member_leaving_emits_nothing_to_room(
        self, registry, emitter, broadcaster
    ):
        _connect(registry, "a")
        async_to_sync(broadcaster.join)("a", 1)
        emitter.clear()
        async_to_sync(broadcaster.leave)("a", notify_self=False)
        assert emitter.sent == []
        assert broadcaster.room_size(1) == 0

    def test_broadcast_skips_sender(self, registry, emitter, broadcaster):
        _connect(registry, "a", "b")
        async_to_sync(broadcaster.join)("a", 1)
        async_to_sync(broadcaster.join)("b", 1)
        emitter.clear()

        async_to_sync(broadcaster.broadcast)(1, "a", "cursor-relay", {"x": 1})
        assert emitter.received("b", "cursor-relay") == [{"x": 1}]
        assert emitter.received("a") == []

    def test_broadcast_to_empty_room_is_noop(self, emitter, broadcaster):
        async_to_sync(broadcaster.broadcast)(9, None, "cursor-relay", {"x": 1})
        assert emitter.sent == []
