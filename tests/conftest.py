import asyncio
import os
import sys
from pathlib import Path

import pytest_asyncio

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("APP_ENV", "test")

from src.eventcast.app.main import app
from src.eventcast.app.core.hub import BroadcastHub, Subscriber, init_hub, close_hub

HEARTBEAT_INTERVAL = 0.05
WRITE_TIMEOUT = 0.1
QUEUE_SIZE = 8


class RecordingChannel:
    """Channel double that keeps every frame written to it."""

    def __init__(self):
        self.frames = []
        self.closed = False

    async def write(self, data):
        if self.closed:
            raise ConnectionResetError("channel closed")
        self.frames.append(data)

    def close(self):
        self.closed = True


class FailingChannel(RecordingChannel):
    def __init__(self, exc=None):
        super().__init__()
        self.exc = exc or BrokenPipeError("peer went away")
        self.attempts = 0

    async def write(self, data):
        self.attempts += 1
        raise self.exc


class StalledChannel(RecordingChannel):
    """Channel whose writes never complete."""

    async def write(self, data):
        await asyncio.Event().wait()


async def attach_subscriber(hub, channel=None):
    subscriber = Subscriber(channel if channel is not None else RecordingChannel())
    await hub.attach(subscriber)
    return subscriber


@pytest_asyncio.fixture
async def hub():
    # Heartbeats stay out of the way unless a test asks for them.
    hub = BroadcastHub(heartbeat_interval=30, write_timeout=WRITE_TIMEOUT, queue_size=QUEUE_SIZE)
    try:
        yield hub
    finally:
        await hub.shutdown()


@pytest_asyncio.fixture
async def heartbeat_hub():
    hub = BroadcastHub(heartbeat_interval=HEARTBEAT_INTERVAL, write_timeout=WRITE_TIMEOUT, queue_size=QUEUE_SIZE)
    try:
        yield hub
    finally:
        await hub.shutdown()


@pytest_asyncio.fixture
async def app_hub(hub):
    init_hub(app, hub)
    try:
        yield hub
    finally:
        await close_hub(app)
