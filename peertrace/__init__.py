"""
peertrace
Traces the negotiation lifecycle of aiortc peer connections and relays the
events to a collector over WebSocket
"""
from peertrace.capability import CANDIDATES, probe_capability
from peertrace.channel import EventChannel
from peertrace.config import DEFAULT_STATS_INTERVAL
from peertrace.errors import CapabilityError, PeerTraceError
from peertrace.interceptor import Instrumentation
from peertrace.relay import CONTROL_MESSAGE, RelayServer
from peertrace.tracer import Tracer

__version__ = "0.1.0"

__all__ = [
    "CANDIDATES",
    "CONTROL_MESSAGE",
    "CapabilityError",
    "EventChannel",
    "Instrumentation",
    "PeerTraceError",
    "RelayServer",
    "Tracer",
    "probe_capability",
    "start",
]


async def start(url, namespace=None, stats_interval=DEFAULT_STATS_INTERVAL, reconnect_delay=None,
                ssl=None, track_sink=None, patch=False):
    """
    Wire channel, tracer and instrumentation together.

    The capability is probed before the socket is touched, so a missing
    RTCPeerConnection fails here. A channel that cannot connect is not fatal:
    events keep queueing until it opens.
    """
    channel = EventChannel(url, ssl=ssl, reconnect_delay=reconnect_delay)
    instrumentation = Instrumentation(Tracer(channel), namespace=namespace,
                                      stats_interval=stats_interval, track_sink=track_sink)
    instrumentation.install(patch=patch)
    await channel.open()
    return instrumentation
