"""Shared fixtures: manual clock, in-memory Socket.IO server, ack recorder."""

import asyncio
from collections import defaultdict

import pytest

from shared_timer.channel import SocketIOChannel
from shared_timer.handler import ConnectionEventHandler

TICK_MS = 5


class ManualClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float):
        self.now += ms


class SequenceIdProvider:
    def __init__(self, *ids: str):
        self.ids = list(ids)

    def new_id(self) -> str:
        return self.ids.pop(0)


class FakeSocketIOServer:
    """The room bookkeeping of socketio.AsyncServer, without a transport."""

    def __init__(self):
        self.room_members: dict[str, set[str]] = {}
        self.received: dict[str, list[tuple[str, dict]]] = defaultdict(list)

    def connect(self, sid: str):
        self.room_members[sid] = {sid}

    async def enter_room(self, sid, room, namespace=None):
        self.room_members[sid].add(room)

    async def leave_room(self, sid, room, namespace=None):
        self.room_members[sid].discard(room)

    def rooms(self, sid, namespace=None):
        return list(self.room_members.get(sid, ()))

    async def emit(self, event, data=None, to=None, namespace=None):
        for sid, rooms in self.room_members.items():
            if to in rooms:
                self.received[sid].append((event, data))


class AckRecorder:
    def __init__(self):
        self.calls: list[tuple] = []

    def __call__(self, *args):
        self.calls.append(args)

    @property
    def payload(self):
        assert len(self.calls) == 1, f"expected one ack, got {self.calls}"
        return self.calls[0][0] if self.calls[0] else None


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def server():
    return FakeSocketIOServer()


@pytest.fixture
def ack():
    return AckRecorder()


@pytest.fixture
async def connect(server, clock):
    """Factory for connected handlers; closes them all at teardown."""
    handlers = []

    def _connect(sid: str, *ids: str) -> ConnectionEventHandler:
        server.connect(sid)
        channel = SocketIOChannel(server, sid)
        handler = ConnectionEventHandler(
            channel,
            id_provider=SequenceIdProvider(*(ids or ("timer1",))),
            clock=clock,
            tick_interval_ms=TICK_MS,
        )
        handler.subscribe()
        handlers.append(handler)
        return handler

    yield _connect
    for handler in handlers:
        await handler.close()


class YieldingSocketIOServer(FakeSocketIOServer):
    """Room changes give up control to the event loop, like a real transport."""

    async def enter_room(self, sid, room, namespace=None):
        await asyncio.sleep(0)
        await super().enter_room(sid, room, namespace)

    async def leave_room(self, sid, room, namespace=None):
        await asyncio.sleep(0)
        await super().leave_room(sid, room, namespace)


class FailingSocketIOServer(FakeSocketIOServer):
    async def enter_room(self, sid, room, namespace=None):
        raise ConnectionError("transport closed")
