#!/usr/bin/env python3
"""
Loopback Demo
Two instrumented peers negotiate locally and stream a synthetic video track,
every negotiation step is traced to the relay
"""
import argparse
import asyncio
import logging

import peertrace
from peertrace.config import TraceSettings, add_trace_arguments, setup_logging
from peertrace.media import BlackholeSink, PatternVideoTrack

logger = logging.getLogger("loopback_demo")


async def exchange(offerer, answerer):
    """Offer/answer round trip between two local peers."""
    await offerer.setLocalDescription(await offerer.createOffer())
    await answerer.setRemoteDescription(offerer.localDescription)
    await answerer.setLocalDescription(await answerer.createAnswer())
    await offerer.setRemoteDescription(answerer.localDescription)


async def run(settings, duration):
    sink = BlackholeSink()
    instrumentation = await peertrace.start(
        settings.url,
        stats_interval=settings.stats_interval,
        reconnect_delay=settings.reconnect_delay,
        ssl=settings.ssl_context(),
        track_sink=sink,
    )
    channel = instrumentation.tracer.channel

    offerer = instrumentation.create_peer_connection()
    answerer = instrumentation.create_peer_connection()

    video_track = PatternVideoTrack()
    offerer.addTransceiver(video_track, direction="sendonly")
    channel_out = offerer.createDataChannel("chat")

    @channel_out.on("open")
    def on_open():
        channel_out.send("ping")

    logger.info("Exchanging SDP...")
    await exchange(offerer, answerer)
    logger.info(f"Streaming for {duration}s...")

    try:
        await asyncio.sleep(duration)
    except asyncio.CancelledError:
        pass
    finally:
        video_track.stop()
        await offerer.close()
        await answerer.close()
        await sink.stop()
        # let the pollers notice the closed state
        await asyncio.sleep(settings.stats_interval * 1.5)
        await channel.flush()
        logger.info(f"{len(channel.pending)} event(s) still pending")
        await channel.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Instrumented loopback WebRTC session")
    add_trace_arguments(parser)
    parser.add_argument("--duration", type=float, default=10.0, help="Seconds to stream")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    setup_logging(args.verbose)
    try:
        asyncio.run(run(TraceSettings.from_args(args), args.duration))
    except KeyboardInterrupt:
        pass
