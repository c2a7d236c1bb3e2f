"""
Trace relay server
WebSocket endpoint forwarding producer traffic to a single registered consumer
"""
import asyncio
import logging

import websockets
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

logger = logging.getLogger(__name__)

# Sent by a socket that wants to receive the relayed traffic
CONTROL_MESSAGE = "receive"


def peer_name(websocket):
    address = getattr(websocket, "remote_address", None)
    if not address:
        return "unknown"
    return f"{address[0]}:{address[1]}"


def is_control(message, control=CONTROL_MESSAGE):
    if isinstance(message, (bytes, bytearray)):
        try:
            message = bytes(message).decode("utf-8")
        except UnicodeDecodeError:
            return False
    return message == control


class RelayServer:
    """
    Single consumer relay.

    consumer is the one socket that registered with the control message, a
    later registration replaces it. Messages from a producer arriving while no
    consumer is registered wait in that producer's buffer and are flushed in
    order ahead of its next message once a consumer exists.
    """

    def __init__(self, control_message=CONTROL_MESSAGE):
        self.control_message = control_message
        self.consumer = None
        self.buffers = {}
        self.connections = set()

    def pending(self, websocket):
        return list(self.buffers.get(websocket, ()))

    async def handler(self, websocket):
        peer_id = peer_name(websocket)
        self.connections.add(websocket)
        self.buffers[websocket] = []
        logger.info(f"Peer connected: {peer_id}, current client size is {len(self.connections)}")

        try:
            async for message in websocket:
                await self.on_message(websocket, message)
        except ConnectionClosed:
            logger.info(f"Peer disconnected: {peer_id}")
        finally:
            self.on_close(websocket)
            logger.info(f"Closed connection {peer_id}, current client size is {len(self.connections)}")

    async def on_message(self, websocket, message):
        if is_control(message, self.control_message):
            if self.consumer is not None and self.consumer is not websocket:
                logger.info(f"Consumer {peer_name(self.consumer)} replaced by {peer_name(websocket)}")
            else:
                logger.info(f"Consumer registered: {peer_name(websocket)}")
            self.consumer = websocket
            return

        buffer = self.buffers.setdefault(websocket, [])
        if self.consumer is None:
            buffer.append(message)
            return

        # swap before awaiting so nothing is flushed twice
        backlog = list(buffer)
        buffer.clear()
        for queued in backlog:
            await self.forward(queued)
        await self.forward(message)

    async def forward(self, message):
        consumer = self.consumer
        if consumer is None or consumer.state is not State.OPEN:
            logger.warning("Consumer not open, dropping message")
            return
        try:
            await consumer.send(message)
        except ConnectionClosed as e:
            logger.warning(f"Consumer closed while forwarding, dropping message: {e}")

    def on_close(self, websocket):
        self.connections.discard(websocket)
        self.buffers.pop(websocket, None)
        if websocket is self.consumer:
            # registration resets entirely, the next consumer starts fresh
            self.consumer = None
            logger.info("Consumer disconnected, registration cleared")


async def serve(host, port, ssl_context=None, relay=None):
    """Run the relay until cancelled."""
    relay = relay or RelayServer()
    scheme = "wss" if ssl_context is not None else "ws"
    async with websockets.serve(relay.handler, host, port, ssl=ssl_context):
        logger.info(f"Relay server running, use {scheme}://{host}:{port} to connect")
        await asyncio.Future()  # Run forever
