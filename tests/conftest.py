"""Shared fixtures: in-memory gateway, fake connections, a wired router."""

from __future__ import annotations

import asyncio
import json

import pytest
import pytest_asyncio

from livechat.config import ChatConfig, ReconnectConfig
from livechat.core.dedup import DedupCache
from livechat.core.presence import PresenceTracker
from livechat.core.registry import ConnectionRegistry
from livechat.core.router import ChatRouter
from livechat.core.types import Role
from livechat.errors import TransportFailure
from livechat.protocol import codec
from livechat.storage.gateway import PersistenceGateway
from livechat.storage.memory_store import MemoryThreadStore
from livechat.transport.base import ClientConnection


class FakeConnection(ClientConnection):
    """Records every frame sent; can be told to fail sends."""

    def __init__(self, client_id: str, role: Role = Role.VISITOR, display_name: str = "Guest"):
        super().__init__(client_id, role, display_name)
        self.sent: list = []
        self.open = True
        self.fail_sends = False
        self.close_code: int | None = None

    @property
    def is_open(self) -> bool:
        return self.open

    async def send(self, frame) -> None:
        if self.fail_sends or not self.open:
            raise TransportFailure("peer gone")
        self.sent.append(frame)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.open:
            self.open = False
            self.close_code = code

    def of_type(self, frame_type: str) -> list:
        return [f for f in self.sent if f.type == frame_type]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def chat_config() -> ChatConfig:
    return ChatConfig(typing_timeout=0.05)


@pytest_asyncio.fixture
async def gateway():
    gw = PersistenceGateway(MemoryThreadStore())
    await gw.start()
    yield gw
    await gw.stop()


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest_asyncio.fixture
async def router(registry, gateway, chat_config):
    chat = ChatRouter(registry, gateway, PresenceTracker(), DedupCache(), chat_config)
    yield chat
    chat.shutdown()


@pytest.fixture
def visitor_factory():
    def make(client_id: str = "visitor_1", name: str = "Guest") -> FakeConnection:
        return FakeConnection(client_id, Role.VISITOR, name)

    return make


@pytest.fixture
def admin_factory():
    counter = iter(range(1, 1000))

    def make(name: str = "Admin") -> FakeConnection:
        return FakeConnection(f"admin_{next(counter)}", Role.ADMIN, name)

    return make


class FakeSocket:
    """Client-side websocket stand-in: feed() queues server frames, drop() ends the stream."""

    def __init__(self, url: str):
        self.url = url
        self.sent: list[dict] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def feed(self, frame) -> None:
        self._incoming.put_nowait(frame if isinstance(frame, str) else codec.encode(frame))

    def drop(self) -> None:
        self._incoming.put_nowait(None)

    def sent_types(self) -> list[str]:
        return [f["type"] for f in self.sent]

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


class FakeConnector:
    def __init__(self):
        self.sockets: list[FakeSocket] = []
        self.urls: list[str] = []
        self.refuse = False

    @property
    def calls(self) -> int:
        return len(self.urls)

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]

    async def __call__(self, url: str) -> FakeSocket:
        self.urls.append(url)
        if self.refuse:
            raise OSError("connection refused")
        sock = FakeSocket(url)
        self.sockets.append(sock)
        return sock


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def fast_reconnect() -> ReconnectConfig:
    return ReconnectConfig(base_delay=0.01, max_delay=0.04, max_attempts=3)
