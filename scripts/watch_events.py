#!/usr/bin/env python3

"""Print events streamed by an eventcast server, reconnecting when the stream ends."""

import argparse
import asyncio
import logging

import httpx

from src.eventcast.app.core.sse import decode_frame, iter_frames

DEFAULT_BASE_URL = "http://localhost:8000"
RECONNECT_DELAY_SECONDS = 3

logger = logging.getLogger("watch_events")


async def watch(base_url: str) -> None:
    timeout = httpx.Timeout(10.0, read=None)
    async with httpx.AsyncClient(base_url=base_url, timeout=timeout) as client:
        while True:
            try:
                async with client.stream("GET", "/api/sse") as resp:
                    resp.raise_for_status()
                    async for frame in iter_frames(resp.aiter_bytes()):
                        try:
                            event = decode_frame(frame)
                        except ValueError as exc:
                            logger.warning("Skipping malformed frame: %s", exc)
                            continue
                        if event is not None:
                            print(f"[{event.timestamp}] {event.type}: {event.message}")
                logger.info("Stream ended")
            except httpx.HTTPError as exc:
                logger.error("Stream error: %s", exc)
            logger.info("Reconnecting in %d seconds", RECONNECT_DELAY_SECONDS)
            await asyncio.sleep(RECONNECT_DELAY_SECONDS)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL)
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)
    try:
        asyncio.run(watch(args.base_url))
    except KeyboardInterrupt:
        pass
