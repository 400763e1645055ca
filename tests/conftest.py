"""Shared pytest fixtures for neurocalm-monitor tests."""

import asyncio
from datetime import datetime, timedelta

import pytest

from src.models import TransportKind
from src.telemetry.connection import ConnectionManager
from src.telemetry.transports.base import BaseTransport


class FakeTransport(BaseTransport):
    """In-memory transport driven by the test."""

    kind = TransportKind.LOCAL_LINK
    message_oriented = False

    def __init__(self, open_error=None, release_error=None, hold_open=False):
        super().__init__()
        self.open_error = open_error
        self.release_error = release_error
        self.gate = asyncio.Event()
        if not hold_open:
            self.gate.set()
        self.queue: asyncio.Queue = asyncio.Queue()
        self.open_calls = 0
        self.release_calls = 0

    @property
    def description(self) -> str:
        return "fake transport"

    async def _open(self) -> None:
        self.open_calls += 1
        await self.gate.wait()
        if self.open_error is not None:
            raise self.open_error

    async def _receive(self):
        item = await self.queue.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def _release(self) -> None:
        self.release_calls += 1
        if self.release_error is not None:
            raise self.release_error

    def push(self, item) -> None:
        """Queue a chunk, None (end of stream) or an exception."""
        self.queue.put_nowait(item)


class FakeMessageTransport(FakeTransport):
    """Fake message-oriented transport (like the WebSocket link)."""

    kind = TransportKind.NETWORK_SOCKET
    message_oriented = True


class TransportRecorder:
    """Transport factory that records what it built."""

    def __init__(self, **options):
        self.options = options
        self.created: list[FakeTransport] = []
        self.requests: list[tuple] = []

    def __call__(self, kind, endpoint):
        self.requests.append((kind, endpoint))
        cls = FakeMessageTransport if kind is TransportKind.NETWORK_SOCKET else FakeTransport
        transport = cls(**self.options)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


async def settle(rounds: int = 10) -> None:
    """Let pending tasks (receive pumps) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    """Clock advancing one second per call."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 15, 10, 30, 0)

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current


@pytest.fixture
def recorder() -> TransportRecorder:
    """Transport factory producing fake transports."""
    return TransportRecorder()


@pytest.fixture
def manager(recorder) -> ConnectionManager:
    """Connection manager using fake transports."""
    return ConnectionManager(transport_factory=recorder)


@pytest.fixture
def clock() -> FakeClock:
    """Deterministic clock for history labels."""
    return FakeClock()
