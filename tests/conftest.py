import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from app.broadcast import Peer
from app.config import Settings
from app.core import build_core
from app.main import create_app
from app.registry import DeviceRegistry


class FakeClock:
    def __init__(self, start=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        # strictly increasing, like a real clock between two events
        self.now += timedelta(milliseconds=1)
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class FakeConnection:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []
        self.closed = False

    async def send_text(self, data):
        if self.fail:
            raise ConnectionResetError("connection reset by peer")
        self.sent.append(json.loads(data))

    async def close(self, code=1000):
        self.closed = True

    def of_type(self, kind):
        return [m for m in self.sent if m["type"] == kind]


class StalledConnection(FakeConnection):
    """Never finishes a write"""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def send_text(self, data):
        await self.release.wait()
        await super().send_text(data)


def queued(peer: Peer, kind=None):
    """Take everything waiting in a peer's outbox"""
    messages = []
    while not peer.outbox.empty():
        messages.append(json.loads(peer.outbox.get_nowait()))
    if kind is not None:
        messages = [m for m in messages if m["type"] == kind]
    return messages


async def settle(rounds=20):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return DeviceRegistry(clock=clock)


@pytest.fixture
def settings():
    return Settings(DATABASE_URL="sqlite://", READING_RETENTION=50, OUTBOX_SIZE=16)


@pytest.fixture
def core(settings):
    return build_core(settings)


@pytest.fixture
def client(settings):
    # every app gets its own in-memory database
    app = create_app(settings)
    with TestClient(app) as c:
        yield c
