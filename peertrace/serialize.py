"""
Payload coercion
Turns whatever the capability hands us into something json.dumps accepts
"""
import dataclasses
import datetime
from collections.abc import Mapping

MAX_DEPTH = 8

_PRIMITIVES = (str, int, float, bool, type(None))


def to_serializable(value, _depth=0):
    """Best-effort conversion of value to plain JSON types."""
    if isinstance(value, _PRIMITIVES):
        return value
    if _depth >= MAX_DEPTH:
        return repr(value)

    depth = _depth + 1
    if isinstance(value, Mapping):
        # maplike to object, mostly for getStats reports
        return {str(k): to_serializable(v, depth) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_serializable(v, depth) for v in value]
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: to_serializable(getattr(value, f.name), depth)
            for f in dataclasses.fields(value)
        }
    if _is_track(value):
        return describe_track(value)
    return repr(value)


def _is_track(value):
    return hasattr(value, "kind") and hasattr(value, "id") and hasattr(value, "recv")


def describe_track(track):
    if track is None:
        return None
    return {"id": getattr(track, "id", None), "kind": getattr(track, "kind", None)}


def describe_stream(stream):
    get_tracks = getattr(stream, "getTracks", None)
    tracks = get_tracks() if get_tracks else []
    return {
        "id": getattr(stream, "id", None),
        "tracks": [describe_track(t) for t in tracks],
    }


def describe_transceiver(transceiver, index, kind=None):
    sender = getattr(transceiver, "sender", None)
    receiver = getattr(transceiver, "receiver", None)
    sender_track = getattr(sender, "track", None)
    receiver_track = getattr(receiver, "track", None)
    return {
        "index": index,
        "mid": getattr(transceiver, "mid", None),
        "kind": kind if kind is not None else getattr(transceiver, "kind", None),
        "sender": {"track": getattr(sender_track, "id", None)},
        "receiver": {"track": getattr(receiver_track, "id", None)},
        "direction": getattr(transceiver, "direction", None),
        "currentDirection": getattr(transceiver, "currentDirection", None),
    }


def call_arguments(args, kwargs):
    """Positional and keyword arguments of an intercepted call."""
    return {
        "args": to_serializable(list(args)),
        "kwargs": to_serializable(dict(kwargs)),
    }


def error_string(exc):
    return f"{type(exc).__name__}: {exc}"
