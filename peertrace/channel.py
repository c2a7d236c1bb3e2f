"""
Event channel
Persistent WebSocket to the collector, buffers events until it is open
"""
import asyncio
import json
import logging
from collections import deque

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from peertrace.serialize import to_serializable

logger = logging.getLogger(__name__)

CONNECTING = "connecting"
READY = "ready"
CLOSED = "closed"
ERRORING = "erroring"


def encode_event(event):
    try:
        return json.dumps(event)
    except (TypeError, ValueError) as e:
        method = event.get("method") if isinstance(event, dict) else None
        logger.warning(f"Event {method!r} not serializable ({e}), coercing")
    # str keys, depth-bounded, so cycles end up as repr strings
    try:
        return json.dumps(to_serializable(event))
    except (TypeError, ValueError) as e:
        logger.error(f"Coercion failed ({e}), sending repr of the event")
        return json.dumps(repr(event))


class EventChannel:
    """
    Ships trace events over a WebSocket.

    Events sent before the socket is ready wait in the pending queue and are
    drained, oldest first, the moment it opens. A single writer task keeps
    the outbound order FIFO.
    """

    def __init__(self, url, ssl=None, reconnect_delay=None, connect=None):
        self.url = url
        self.ssl = ssl
        self.reconnect_delay = reconnect_delay
        self.state = CONNECTING
        self._connect = connect or websockets.connect
        self._pending = deque()
        self._outbox = None
        self._ws = None
        self._tasks = []
        self._reconnect_task = None
        self._opening = None
        self._stopped = False

    @property
    def ready(self):
        return self.state == READY

    @property
    def pending(self):
        return list(self._pending)

    def send(self, event):
        payload = encode_event(event)
        if self.state == READY:
            self._outbox.put_nowait(payload)
        else:
            self._pending.append(payload)

    async def open(self):
        """
        Single connection attempt. Returns True once the channel is ready.

        Callers arriving while an attempt is in flight wait on that attempt
        instead of opening a second socket.
        """
        if self.state == READY:
            return True
        self._stopped = False
        if self._opening is None or self._opening.done():
            self._opening = asyncio.get_running_loop().create_task(self._open())
        return await asyncio.shield(self._opening)

    async def _open(self):
        self.state = CONNECTING
        kwargs = {"ssl": self.ssl} if self.ssl is not None else {}
        try:
            ws = await self._connect(self.url, **kwargs)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.error(f"Failed to connect event channel to {self.url}: {e}")
            self.state = ERRORING
            self._schedule_reconnect()
            return False

        if self._stopped:
            await ws.close()
            return False

        self._on_open(ws)
        logger.info(f"Event channel connected to {self.url} ({self._outbox.qsize()} queued)")
        return True

    def _on_open(self, ws):
        # no awaits in here: nothing can be appended between drain and ready
        self._ws = ws
        self._outbox = asyncio.Queue()
        while self._pending:
            self._outbox.put_nowait(self._pending.popleft())
        self.state = READY
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._pump(ws)),
            loop.create_task(self._watch(ws)),
        ]

    async def _pump(self, ws):
        while True:
            payload = await self._outbox.get()
            try:
                await ws.send(payload)
            except ConnectionClosed as e:
                logger.warning(f"Event channel closed while sending: {e}")
                self._on_lost(ws, unsent=payload, erroring=True)
                return
            finally:
                self._outbox.task_done()

    async def _watch(self, ws):
        await ws.wait_closed()
        code = getattr(ws, "close_code", None)
        logger.info(f"Event channel to {self.url} closed (code={code})")
        self._on_lost(ws, erroring=code not in (None, 1000, 1001))

    def _on_lost(self, ws, unsent=None, erroring=False):
        if ws is not self._ws or self.state != READY:
            return
        self.state = ERRORING if erroring else CLOSED

        # anything the transport never accepted goes back in front, in order
        requeue = [] if unsent is None else [unsent]
        while not self._outbox.empty():
            requeue.append(self._outbox.get_nowait())
            self._outbox.task_done()
        self._pending.extendleft(reversed(requeue))

        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current:
                task.cancel()
        self._tasks = []
        self._ws = None
        self._schedule_reconnect()

    def _schedule_reconnect(self):
        if self.reconnect_delay is None or self._stopped:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect())

    async def _reconnect(self):
        await asyncio.sleep(self.reconnect_delay)
        if self._stopped or self.state == READY:
            return
        logger.info(f"Reconnecting event channel to {self.url}")
        # open() schedules the next attempt itself on failure
        self._reconnect_task = None
        await self.open()

    async def flush(self):
        """Wait until every queued event was handed to the transport."""
        if self.state == READY:
            await self._outbox.join()

    async def close(self):
        self._stopped = True
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None
        ws = self._ws
        if ws is None:
            self.state = CLOSED
            return
        self._on_lost(ws)
        self.state = CLOSED
        await ws.close()
