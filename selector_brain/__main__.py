"""
Serve the Selector Brain API.

    python -m selector_brain --port 8100

Settings come from SELECTOR_BRAIN_* variables or a .env file. The served
brain has no page attached, so /resolve reports a missing driver until an
embedding process calls set_driver(); reports, clustering and learned-state
transfer work against the loaded history.
"""

import argparse
import asyncio
import sys

import uvicorn

from .api import create_app


def main(argv=None):
    parser = argparse.ArgumentParser(description="Serve the Selector Brain API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8100)
    parser.add_argument("--log-level", default="info")
    args = parser.parse_args(argv)

    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

    uvicorn.run(create_app(), host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
