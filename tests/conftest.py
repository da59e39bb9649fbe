"""Shared fixtures for relay and client tests."""

import itertools

import pytest

from calls import CallBroker
from dispatcher import Dispatcher
from registry import ConnectionRegistry
from rooms import RoomRouter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def registry():
    counter = itertools.count(1)
    return ConnectionRegistry(id_factory=lambda: f"conn-{next(counter)}")


@pytest.fixture
def room_router(registry):
    return RoomRouter(registry, max_room_name_length=32)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def call_broker(registry, clock):
    return CallBroker(registry, ring_timeout=30, clock=clock)


@pytest.fixture
def dispatcher(registry, room_router, call_broker):
    return Dispatcher(registry, room_router, call_broker)


# Client-side fakes


class FakeConnection:
    def __init__(self, inbound=None):
        self.emitted = []
        self.inbound = list(inbound or [])

    async def emit(self, event, data=None):
        self.emitted.append((event, data))

    async def envelopes(self):
        for event, data in self.inbound:
            yield event, data


class FakePeer:
    def __init__(self, media):
        self.media = media
        self.applied_answer = None
        self.received_offer = None
        self.closed = False

    async def create_offer(self):
        return {"type": "offer", "sdp": "v=0 offer"}

    async def create_answer(self, offer):
        self.received_offer = offer
        return {"type": "answer", "sdp": "v=0 answer"}

    async def apply_answer(self, answer):
        self.applied_answer = answer

    async def close(self):
        self.closed = True


class FakeMedia:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.active = False
        self.capture_count = 0
        self.release_count = 0

    async def capture(self):
        from chat_client.errors import MediaUnavailableError

        if self.fail:
            raise MediaUnavailableError("Permission denied")
        self.capture_count += 1
        self.active = True
        return self

    def release(self):
        self.release_count += 1
        self.active = False


@pytest.fixture
def fake_connection():
    return FakeConnection()


@pytest.fixture
def fake_media():
    return FakeMedia()


@pytest.fixture
def peers():
    return []


@pytest.fixture
def session(fake_connection, fake_media, peers):
    from chat_client.session import ClientSession

    def factory(media):
        peer = FakePeer(media)
        peers.append(peer)
        return peer

    return ClientSession(fake_connection, fake_media, factory)
