from datetime import UTC
from datetime import datetime
from datetime import timedelta

import pytest

from event_analytics.realtime.pipeline import IngestionPipeline
from event_analytics.realtime.pipeline import PipelineContext
from event_analytics.realtime.registry import ConnectionRegistry
from event_analytics.realtime.rooms import RoomBroadcaster
from event_analytics.realtime.tests.fakes import FakeEmitter
from event_analytics.realtime.tests.fakes import FakeStore


class Clock:
    """Manually advanced clock for registry timestamps."""

    def __init__(self):
        self.now = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def registry(clock) -> ConnectionRegistry:
    return ConnectionRegistry(clock=clock)


@pytest.fixture
def emitter() -> FakeEmitter:
    return FakeEmitter()


@pytest.fixture
def broadcaster(emitter, registry) -> RoomBroadcaster:
    return RoomBroadcaster(emitter, registry)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore(joinable=(1, 2), closed_events=(3,), hosts={1: 99})


@pytest.fixture
def persist_moves():
    """Sampler switch; tests flip ``persist_moves["move"]`` to drop moves."""
    return {"move": True}


@pytest.fixture
def pipeline(registry, broadcaster, store, persist_moves) -> IngestionPipeline:
    return IngestionPipeline(
        PipelineContext(
            registry=registry,
            broadcaster=broadcaster,
            store=store,
            lookup_event=store.joinable_event_id,
            should_persist=lambda action: action != "move" or persist_moves["move"],
        )
    )
