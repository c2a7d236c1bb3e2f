#!/usr/bin/env python3
"""
Trace Collector
Registers as the relay consumer and records every traced peer connection
"""
import argparse
import asyncio
import logging

from websockets.exceptions import ConnectionClosed

from peertrace.collector import Collector
from peertrace.config import DEFAULT_URL, client_ssl_context, setup_logging

logger = logging.getLogger("collector")


async def run(collector):
    try:
        await collector.run()
    except ConnectionClosed as e:
        logger.warning(f"Relay connection closed: {e}")
    except OSError as e:
        logger.error(f"Failed to connect to relay: {e}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Trace collector")
    parser.add_argument("--url", default=DEFAULT_URL, help="Relay WebSocket URL")
    parser.add_argument("--output", default="peertrace_dump.json", help="JSON dump of all records")
    parser.add_argument("--csv", default=None, help="Optional CSV export of the stats series")
    parser.add_argument("--cafile", default=None)
    parser.add_argument("--insecure", action="store_true")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    setup_logging(args.verbose)
    ssl_context = client_ssl_context(args.cafile, args.insecure) if args.url.startswith("wss://") else None
    collector = Collector(args.url, ssl=ssl_context)

    try:
        asyncio.run(run(collector))
    except KeyboardInterrupt:
        pass
    finally:
        collector.print_summary()
        collector.dump(args.output)
        if args.csv:
            collector.export_csv(args.csv)
