#!/usr/bin/env python3

"""Publish one event to a running eventcast server."""

import argparse
import asyncio
import json

import httpx

DEFAULT_BASE_URL = "http://localhost:8000"


async def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("message")
    parser.add_argument("--type", default=None, help="event type (server default: update)")
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL)
    args = parser.parse_args()

    body = {"message": args.message}
    if args.type:
        body["type"] = args.type
    async with httpx.AsyncClient(base_url=args.base_url) as client:
        resp = await client.post("/api/send-event", json=body)
    if resp.status_code != 200:
        raise SystemExit(f"Publish failed ({resp.status_code}): {resp.text}")
    data = resp.json()
    print(f"Sent to {data['clientCount']} clients: {json.dumps(data['data'])}")


if __name__ == "__main__":
    asyncio.run(main())
