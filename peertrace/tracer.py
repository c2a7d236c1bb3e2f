"""
Trace emitter
Formats (method, connection id, args) into events for the channel
"""
import logging

from peertrace.serialize import to_serializable

logger = logging.getLogger(__name__)


def trace_event(method, connection_id, args=None):
    """Build the wire form of one trace event."""
    return {"method": method, "id": connection_id, "args": args}


class Tracer:
    def __init__(self, channel):
        self.channel = channel

    def emit(self, method, connection_id, args=None):
        try:
            payload = to_serializable(args)
        except Exception as e:
            logger.warning(f"Could not coerce args of {method}: {e}")
            payload = repr(args)
        self.channel.send(trace_event(method, connection_id, payload))
