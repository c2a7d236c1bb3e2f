#!/usr/bin/env python3
"""
Trace Relay Server
WebSocket server forwarding trace events from producers to a single consumer
"""
import argparse
import asyncio
import logging

from peertrace.config import RelaySettings, add_relay_arguments, setup_logging
from peertrace.relay import serve

logger = logging.getLogger("relay_server")


async def main(settings):
    """Start relay server"""
    if not settings.secure:
        logger.warning("No certificate given, serving plain ws://")
    await serve(settings.host, settings.port, ssl_context=settings.ssl_context())


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Trace relay server")
    add_relay_arguments(parser)
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    setup_logging(args.verbose)
    try:
        asyncio.run(main(RelaySettings.from_args(args)))
    except KeyboardInterrupt:
        pass
