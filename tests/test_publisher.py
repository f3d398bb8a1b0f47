import asyncio
import json
from datetime import datetime

import pytest

from src.eventcast.app.core import hub as hub_module
from src.eventcast.app.core.hub import SubscriberState, ValidationError
from src.eventcast.app.core.sse import decode_frame, encode_event
from tests.conftest import FailingChannel, RecordingChannel, StalledChannel, attach_subscriber

pytestmark = pytest.mark.asyncio


def parse_timestamp(value):
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


async def test_publish_defaults_type_and_counts_subscribers(hub):
    channels = [RecordingChannel() for _ in range(3)]
    for channel in channels:
        await attach_subscriber(hub, channel)

    result = await hub.publish(message="hello")

    assert result.delivered_count == 3
    assert result.event.type == "update"
    assert result.event.message == "hello"
    assert parse_timestamp(result.event.timestamp).tzinfo is not None
    for channel in channels:
        assert channel.frames == [encode_event(result.event)]


@pytest.mark.parametrize("message", ["", "   ", "\n\t", None])
async def test_blank_message_is_rejected_without_delivery(hub, message):
    channel = RecordingChannel()
    await attach_subscriber(hub, channel)

    with pytest.raises(ValidationError):
        await hub.publish("alert", message)

    assert channel.frames == []
    assert hub.count() == 1


async def test_blank_message_is_rejected_with_no_subscribers(hub):
    with pytest.raises(ValidationError):
        await hub.publish(message="  ")


async def test_blank_type_falls_back_to_default(hub):
    result = await hub.publish("  ", "ping")
    assert result.event.type == "update"
    assert result.delivered_count == 0


async def test_message_is_trimmed(hub):
    result = await hub.publish("info", "  spaced out  ")
    assert result.event.message == "spaced out"


async def test_failing_subscriber_is_removed_and_others_still_receive(hub):
    good = [RecordingChannel(), RecordingChannel()]
    for channel in good:
        await attach_subscriber(hub, channel)
    bad_channel = FailingChannel()
    bad = await attach_subscriber(hub, bad_channel)

    result = await hub.publish("update", "first")

    assert result.delivered_count == 3
    assert hub.count() == 2
    assert bad.state is SubscriberState.CLOSED
    assert bad_channel.closed
    assert bad.keepalive is None
    for channel in good:
        assert len(channel.frames) == 1

    result = await hub.publish("update", "second")
    assert result.delivered_count == 2
    assert bad_channel.attempts == 1


async def test_stalled_subscriber_does_not_stall_broadcast(hub):
    fast = RecordingChannel()
    await attach_subscriber(hub, fast)
    slow = await attach_subscriber(hub, StalledChannel())

    result = await asyncio.wait_for(hub.publish("update", "tick"), timeout=2)

    assert result.delivered_count == 2
    assert len(fast.frames) == 1
    assert slow.state is SubscriberState.CLOSED
    assert hub.count() == 1


async def test_alert_round_trips_through_frame(hub):
    channel = RecordingChannel()
    await attach_subscriber(hub, channel)

    result = await hub.publish("alert", "disk full")

    frame = channel.frames[0]
    event = decode_frame(frame)
    assert event.type == "alert"
    assert event.message == "disk full"
    assert event.timestamp == result.event.timestamp
    parse_timestamp(event.timestamp)


async def test_frame_layout(hub):
    result = await hub.publish("alert", "café \"quoted\"")
    frame = encode_event(result.event)

    assert frame.startswith(b"data: ")
    assert frame.endswith(b"\n\n")
    assert frame.count(b"\n") == 2
    payload = frame[len(b"data: "):-2].decode("utf-8")
    assert list(json.loads(payload)) == ["type", "message", "timestamp"]
    assert payload.startswith('{"type":"alert","message":')
    assert "café" in payload


async def test_events_reach_each_subscriber_in_publish_order(hub):
    channel = RecordingChannel()
    await attach_subscriber(hub, channel)

    for i in range(5):
        await hub.publish("update", f"event {i}")

    assert [decode_frame(f).message for f in channel.frames] == [f"event {i}" for i in range(5)]


async def test_encoding_failure_reaches_nobody(hub, monkeypatch):
    channel = RecordingChannel()
    await attach_subscriber(hub, channel)

    def broken(event):
        raise TypeError("not serializable")

    monkeypatch.setattr(hub_module, "encode_event", broken)

    with pytest.raises(TypeError):
        await hub.publish("update", "hello")
    assert channel.frames == []
    assert hub.count() == 1
