import asyncio
import json
import uuid

import pytest
import pytest_asyncio

from pairchat.core.rooms import ConnectionRegistry
from pairchat.core.store import ChatStore


class FakeConnection:
    """In-memory stand-in for a live connection; records every frame sent."""

    def __init__(self, sid=None):
        self.sid = sid or uuid.uuid4().hex
        self.frames = []
        self.closed = False

    async def send(self, frame):
        if self.closed:
            raise ConnectionError(f"{self.sid} closed")
        self.frames.append(frame)

    def events(self, type_):
        return [f["payload"] for f in self.frames if f["type"] == type_]


class FakeSocket:
    """Enough of a websockets ServerConnection for ServerRuntime._handle_connection."""

    remote_address = ("127.0.0.1", 40000)

    def __init__(self):
        self.inbound = asyncio.Queue()
        self.outbound = asyncio.Queue()

    async def send(self, text):
        await self.outbound.put(json.loads(text))

    def __aiter__(self):
        return self

    async def __anext__(self):
        raw = await self.inbound.get()
        if raw is None:
            raise StopAsyncIteration
        return raw

    def push(self, type_, payload=None):
        self.inbound.put_nowait(json.dumps({"type": type_, "payload": payload}))

    def push_raw(self, raw):
        self.inbound.put_nowait(raw)

    def hangup(self):
        self.inbound.put_nowait(None)

    async def close(self):
        self.hangup()

    async def recv(self, timeout=1.0):
        return await asyncio.wait_for(self.outbound.get(), timeout)


@pytest_asyncio.fixture
async def store(tmp_path):
    s = ChatStore(str(tmp_path / "chat.db"))
    await s.open()
    try:
        yield s
    finally:
        await s.close()


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def make_connection():
    return FakeConnection


@pytest.fixture
def make_socket():
    return FakeSocket
