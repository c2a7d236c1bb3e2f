"""
Polling stats reporter
One timer per peer connection, stops itself once the connection is closed
"""
import asyncio
import logging

from peertrace.config import DEFAULT_STATS_INTERVAL
from peertrace.serialize import to_serializable

logger = logging.getLogger(__name__)


class StatsReporter:
    def __init__(self, pc, connection_id, tracer, interval=DEFAULT_STATS_INTERVAL):
        self.pc = pc
        self.connection_id = connection_id
        self.tracer = tracer
        self.interval = interval
        self.task = None

    @property
    def running(self):
        return self.task is not None and not self.task.done()

    def start(self):
        if self.running:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, stats polling disabled for {self.connection_id}")
            return
        self.task = loop.create_task(self.poll())

    def stop(self):
        if self.task is not None:
            self.task.cancel()

    async def poll(self):
        while True:
            await asyncio.sleep(self.interval)

            if getattr(self.pc, "connectionState", None) == "closed":
                self.tracer.emit("connectionstatechange", self.connection_id, "closed")
                logger.debug(f"Connection {self.connection_id} closed, stats polling stopped")
                return

            try:
                report = await self.pc.getStats()
            except Exception as e:
                logger.warning(f"getStats failed for {self.connection_id}: {e}")
                continue
            self.tracer.emit("getStats", self.connection_id, to_serializable(report))
