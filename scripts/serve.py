#!/usr/bin/env python3

"""Run the eventcast server with uvicorn."""

import argparse

import uvicorn

from src.eventcast.app.core.config import get_settings

APP_PATH = "src.eventcast.app.main:app"


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true")
    args = parser.parse_args(argv)

    settings = get_settings()
    # Single worker: the broadcast hub lives in this process only.
    uvicorn.run(
        APP_PATH,
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=1,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
