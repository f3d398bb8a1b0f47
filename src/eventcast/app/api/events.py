from __future__ import annotations

import asyncio
from typing import AsyncGenerator

from fastapi import APIRouter, Depends
from starlette.responses import StreamingResponse

from ..core.hub import BroadcastHub, QueueChannel, Subscriber, get_hub
from ..core.sse import SSE_HEADERS, encode_event
from ..schemas.events import (
    ClientCountResponse,
    Event,
    PublishRequest,
    PublishResponse,
    utc_timestamp,
)

router = APIRouter(prefix="/api", tags=["events"])


async def event_stream(hub: BroadcastHub, subscriber: Subscriber) -> AsyncGenerator[bytes, None]:
    channel = subscriber.channel
    if not isinstance(channel, QueueChannel):
        raise TypeError(f"streaming needs a QueueChannel, got {type(channel).__name__}")
    try:
        yield encode_event(
            Event(type="connected", message="Connected to SSE", timestamp=utc_timestamp())
        )
        await hub.attach(subscriber)
        async for frame in channel.frames():
            yield frame
    except asyncio.CancelledError:
        # client disconnected
        pass
    finally:
        await hub.disconnect(subscriber)


@router.get("/sse")
async def subscribe_events(hub: BroadcastHub = Depends(get_hub)):
    """Server-Sent Events stream of published events.
    Frontend can connect with: new EventSource('/api/sse')
    """
    subscriber = hub.open_subscriber()
    return StreamingResponse(
        event_stream(hub, subscriber),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/send-event", response_model=PublishResponse)
async def send_event(body: PublishRequest, hub: BroadcastHub = Depends(get_hub)):
    result = await hub.publish(body.type, body.message)
    return PublishResponse(client_count=result.delivered_count, data=result.event)


@router.get("/clients", response_model=ClientCountResponse)
async def client_count(hub: BroadcastHub = Depends(get_hub)):
    return ClientCountResponse(client_count=hub.count())
