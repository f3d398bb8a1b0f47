from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol

from fastapi import FastAPI, Request

from ..schemas.events import Event, utc_timestamp
from .config import Settings, get_settings
from .sse import HEARTBEAT_FRAME, encode_event

# In-memory broadcast hub for SSE. One instance per process; it does not fan out
# across workers. Subscribers go CONNECTING -> ACTIVE -> CLOSED and never back.

logger = logging.getLogger(__name__)

HUB_KEY = "broadcast_hub"


class HubError(Exception):
    pass


class ValidationError(HubError):
    """Publish request rejected before any delivery attempt."""


class DeliveryError(HubError):
    """A single write to a single subscriber failed."""


class SubscriberClosedError(HubError):
    """A closed subscriber cannot be registered again."""


class Channel(Protocol):
    async def write(self, data: bytes) -> None: ...

    def close(self) -> None: ...


class QueueChannel:
    """Bounded buffer between the hub and one streaming response.

    The hub writes frames in; the response generator drains them with
    `frames()` until the channel is closed.
    """

    def __init__(self, maxsize: int = 100) -> None:
        self._queue: asyncio.Queue[Optional[bytes]] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise DeliveryError("channel is closed")
        await self._queue.put(data)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Unread frames are dropped; the reader only needs the end marker.
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[bytes]:
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame


class SubscriberState(str, enum.Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSED = "closed"


class Subscriber:
    def __init__(self, channel: Channel, subscriber_id: Optional[str] = None) -> None:
        self.id = subscriber_id or uuid.uuid4().hex
        self.channel = channel
        self.state = SubscriberState.CONNECTING
        self._keepalive: Optional[asyncio.Task] = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Subscriber):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        return f"Subscriber(id={self.id!r}, state={self.state.value})"

    @property
    def active(self) -> bool:
        return self.state is SubscriberState.ACTIVE

    @property
    def keepalive(self) -> Optional[asyncio.Task]:
        return self._keepalive

    def attach_keepalive(self, task: asyncio.Task) -> None:
        if self._keepalive is not None:
            raise RuntimeError(f"keep-alive already running for {self.id}")
        self._keepalive = task

    def release_keepalive(self) -> bool:
        """Cancel the keep-alive task. Returns False if it was already released."""
        task, self._keepalive = self._keepalive, None
        if task is None:
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True


class SubscriberRegistry:
    def __init__(self) -> None:
        self._subscribers: dict[str, Subscriber] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, subscriber: Subscriber) -> bool:
        return subscriber.id in self._subscribers

    async def register(self, subscriber: Subscriber) -> None:
        async with self._lock:
            if subscriber.state is SubscriberState.CLOSED:
                raise SubscriberClosedError(f"subscriber {subscriber.id} is closed")
            self._subscribers.setdefault(subscriber.id, subscriber)

    async def unregister(self, subscriber: Subscriber) -> bool:
        async with self._lock:
            return self._subscribers.pop(subscriber.id, None) is not None

    async def snapshot(self) -> list[Subscriber]:
        async with self._lock:
            return list(self._subscribers.values())

    async def clear(self) -> list[Subscriber]:
        async with self._lock:
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
        return subscribers

    def count(self) -> int:
        return len(self._subscribers)


class LifecycleManager:
    def __init__(
        self,
        registry: SubscriberRegistry,
        *,
        heartbeat_interval: float = 30.0,
        write_timeout: float = 5.0,
    ) -> None:
        self.registry = registry
        self.heartbeat_interval = heartbeat_interval
        self.write_timeout = write_timeout

    async def activate(self, subscriber: Subscriber) -> None:
        if subscriber.active:
            return
        await self.registry.register(subscriber)
        subscriber.state = SubscriberState.ACTIVE
        subscriber.attach_keepalive(asyncio.create_task(self._keepalive(subscriber)))
        logger.info("Client connected. Active connections: %d", self.registry.count())

    async def deliver(self, subscriber: Subscriber, frame: bytes) -> bool:
        """Attempt one bounded write. Failures retire the subscriber and return False."""
        if subscriber.state is SubscriberState.CLOSED:
            return False
        try:
            await self._write(subscriber, frame)
        except DeliveryError as exc:
            await self.on_write_failure(subscriber, exc)
            return False
        return True

    async def on_write_failure(self, subscriber: Subscriber, error: Exception) -> None:
        logger.warning("Error sending to client %s: %s", subscriber.id, error)
        await self._retire(subscriber, "write failure")

    async def on_disconnect_signal(self, subscriber: Subscriber) -> None:
        await self._retire(subscriber, "disconnect")

    async def shutdown(self) -> None:
        subscribers = await self.registry.clear()
        for subscriber in subscribers:
            await self._retire(subscriber, "shutdown")
        if subscribers:
            logger.info("Closed %d client connections on shutdown", len(subscribers))

    async def _write(self, subscriber: Subscriber, frame: bytes) -> None:
        try:
            await asyncio.wait_for(subscriber.channel.write(frame), timeout=self.write_timeout)
        except DeliveryError:
            raise
        except asyncio.TimeoutError as exc:
            raise DeliveryError(f"write timed out after {self.write_timeout}s") from exc
        except Exception as exc:  # pylint: disable=broad-except
            raise DeliveryError(f"write failed: {exc!r}") from exc

    async def _retire(self, subscriber: Subscriber, reason: str) -> None:
        subscriber.state = SubscriberState.CLOSED
        subscriber.release_keepalive()
        removed = await self.registry.unregister(subscriber)
        subscriber.channel.close()
        if removed:
            logger.info(
                "Client disconnected (%s). Active connections: %d", reason, self.registry.count()
            )

    async def _keepalive(self, subscriber: Subscriber) -> None:
        while subscriber.active:
            await asyncio.sleep(self.heartbeat_interval)
            if not subscriber.active:
                break
            await self.deliver(subscriber, HEARTBEAT_FRAME)


@dataclass(frozen=True)
class PublishResult:
    delivered_count: int
    event: Event


class EventPublisher:
    def __init__(
        self,
        registry: SubscriberRegistry,
        lifecycle: LifecycleManager,
        *,
        default_type: str = "update",
    ) -> None:
        self.registry = registry
        self.lifecycle = lifecycle
        self.default_type = default_type

    def build_event(self, type: Optional[str], message: Optional[str]) -> Event:
        text = (message or "").strip()
        if not text:
            raise ValidationError("Message is required")
        event_type = (type or "").strip() or self.default_type
        return Event(type=event_type, message=text, timestamp=utc_timestamp())

    async def publish(self, type: Optional[str] = None, message: Optional[str] = None) -> PublishResult:
        """Deliver a new event to every subscriber registered right now.

        `delivered_count` is the number of subscribers attempted, not the number
        that accepted the frame; failed subscribers are retired by the
        lifecycle manager.
        """
        event = self.build_event(type, message)
        # Encode before touching the registry so a bad payload reaches nobody.
        frame = encode_event(event)
        targets = await self.registry.snapshot()
        if targets:
            await asyncio.gather(*(self.lifecycle.deliver(s, frame) for s in targets))
        logger.info("Published %r event to %d clients", event.type, len(targets))
        return PublishResult(delivered_count=len(targets), event=event)


class BroadcastHub:
    def __init__(
        self,
        *,
        heartbeat_interval: float = 30.0,
        write_timeout: float = 5.0,
        queue_size: int = 100,
        default_type: str = "update",
    ) -> None:
        self.queue_size = queue_size
        self.registry = SubscriberRegistry()
        self.lifecycle = LifecycleManager(
            self.registry,
            heartbeat_interval=heartbeat_interval,
            write_timeout=write_timeout,
        )
        self.publisher = EventPublisher(self.registry, self.lifecycle, default_type=default_type)

    @classmethod
    def from_settings(cls, settings: Settings) -> "BroadcastHub":
        return cls(
            heartbeat_interval=settings.heartbeat_interval_seconds,
            write_timeout=settings.write_timeout_seconds,
            queue_size=settings.subscriber_queue_size,
            default_type=settings.default_event_type,
        )

    def open_subscriber(self) -> Subscriber:
        return Subscriber(QueueChannel(maxsize=self.queue_size))

    async def attach(self, subscriber: Subscriber) -> None:
        await self.lifecycle.activate(subscriber)

    async def disconnect(self, subscriber: Subscriber) -> None:
        await self.lifecycle.on_disconnect_signal(subscriber)

    async def publish(self, type: Optional[str] = None, message: Optional[str] = None) -> PublishResult:
        return await self.publisher.publish(type, message)

    def count(self) -> int:
        return self.registry.count()

    async def shutdown(self) -> None:
        await self.lifecycle.shutdown()


def init_hub(app: FastAPI, hub: Optional[BroadcastHub] = None) -> BroadcastHub:
    hub = hub or BroadcastHub.from_settings(get_settings())
    app.state.__setattr__(HUB_KEY, hub)
    return hub


async def close_hub(app: FastAPI) -> None:
    hub: Optional[BroadcastHub] = getattr(app.state, HUB_KEY, None)
    if hub is not None:
        try:
            await hub.shutdown()
        finally:
            delattr(app.state, HUB_KEY)


def get_hub(request: Request) -> BroadcastHub:
    """FastAPI dependency returning the hub created by the app lifespan."""
    hub: Optional[BroadcastHub] = getattr(request.app.state, HUB_KEY, None)
    if hub is None:
        raise RuntimeError("Broadcast hub not initialized")
    return hub
