"""
Demo media collaborators
A synthetic video source instead of a camera, and a sink that swallows remote tracks
"""
import asyncio
import logging

import numpy as np
from aiortc import VideoStreamTrack
from aiortc.contrib.media import MediaBlackhole
from av import VideoFrame

logger = logging.getLogger(__name__)


class PatternVideoTrack(VideoStreamTrack):
    """Moving colour bars, paced by VideoStreamTrack.next_timestamp()."""

    kind = "video"

    def __init__(self, width=640, height=360):
        super().__init__()
        self.width = width
        self.height = height
        self.counter = 0
        bars = np.array([
            [255, 255, 255], [255, 255, 0], [0, 255, 255], [0, 255, 0],
            [255, 0, 255], [255, 0, 0], [0, 0, 255], [0, 0, 0],
        ], dtype=np.uint8)
        columns = np.repeat(np.arange(len(bars)), -(-width // len(bars)))[:width]
        self.pattern = np.broadcast_to(bars[columns], (height, width, 3))

    async def recv(self):
        pts, time_base = await self.next_timestamp()
        shifted = np.roll(self.pattern, self.counter * 4, axis=1)
        self.counter += 1

        frame = VideoFrame.from_ndarray(np.ascontiguousarray(shifted), format="rgb24")
        frame.pts = pts
        frame.time_base = time_base
        return frame


class BlackholeSink:
    """Remote track sink: consumes every attached track and discards the media."""

    def __init__(self):
        self.blackhole = MediaBlackhole()
        self.tracks = []

    def attach(self, track):
        logger.info(f"Track received: {track.kind} (ID: {track.id})")
        self.tracks.append(track)
        self.blackhole.addTrack(track)
        # start() only spins up consumers for tracks it has not seen yet
        asyncio.ensure_future(self.blackhole.start())

    async def stop(self):
        await self.blackhole.stop()
