from __future__ import annotations

import json
from typing import AsyncIterable, AsyncIterator, Optional

from ..schemas.events import Event

# Frame layout for text/event-stream:
#   data: {"type":"...","message":"...","timestamp":"..."}\n\n
# Lines starting with ':' are comments and carry no event.

HEARTBEAT_FRAME = b":heartbeat\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_event(event: Event) -> bytes:
    payload = json.dumps(
        {"type": event.type, "message": event.message, "timestamp": event.timestamp},
        ensure_ascii=False,
        separators=(",", ":"),
    )
    return f"data: {payload}\n\n".encode("utf-8")


def encode_comment(text: str) -> bytes:
    lines = text.splitlines() or [""]
    return ("".join(f":{line}\n" for line in lines) + "\n").encode("utf-8")


def decode_frame(frame: bytes | str) -> Optional[Event]:
    """Rebuild the Event carried by one frame.

    Returns None for frames without data lines (heartbeats and other comments).
    Raises ValueError when the data is not a JSON event object.
    """
    text = frame.decode("utf-8") if isinstance(frame, bytes) else frame
    data_lines: list[str] = []
    for line in text.splitlines():
        if not line or line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field != "data":
            continue
        data_lines.append(value[1:] if value.startswith(" ") else value)
    if not data_lines:
        return None
    try:
        obj = json.loads("\n".join(data_lines))
    except json.JSONDecodeError as exc:
        raise ValueError(f"frame data is not JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise ValueError("frame data is not an event object")
    return Event(**obj)


async def iter_frames(chunks: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
    """Split an arbitrary chunked byte stream into complete frames."""
    buffer = b""
    async for chunk in chunks:
        buffer += chunk.replace(b"\r\n", b"\n")
        while b"\n\n" in buffer:
            frame, buffer = buffer.split(b"\n\n", 1)
            yield frame + b"\n\n"
