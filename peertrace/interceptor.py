"""
Interception layer
Builds a traced subclass of the peer connection capability. Every
negotiation call, media change and state notification becomes a trace event.
"""
import functools
import inspect
import logging
import uuid
from collections.abc import Mapping

from peertrace.capability import load_namespace, probe_capability
from peertrace.config import DEFAULT_STATS_INTERVAL
from peertrace.serialize import (
    call_arguments,
    describe_stream,
    describe_track,
    describe_transceiver,
    error_string,
    to_serializable,
)
from peertrace.stats import StatsReporter

logger = logging.getLogger(__name__)

TRACED = "__peertrace_traced__"

NEGOTIATION_METHODS = ("createOffer", "createAnswer")
DESCRIPTION_METHODS = ("setLocalDescription", "setRemoteDescription", "addIceCandidate")
STREAM_METHODS = ("addStream", "removeStream")
CALL_ONLY_METHODS = ("close", "createDataChannel")


def new_connection_id():
    return uuid.uuid4().hex


def connection_id(pc):
    return getattr(pc, "_peertrace_id", None)


def is_traced(obj):
    return bool(getattr(obj, TRACED, False))


def _mark(fn):
    setattr(fn, TRACED, True)
    return fn


def _first(args):
    return args[0] if args else None


def _options(args, kwargs):
    """Options of createOffer/createAnswer, for either calling convention."""
    if len(args) == 1 and isinstance(args[0], Mapping):
        return args[0]
    if len(args) == 3 and isinstance(args[2], Mapping):
        return args[2]
    if kwargs:
        return dict(kwargs)
    return None


def _unwrap(event, attribute):
    # browser-style listeners get an event object, aiortc passes the value itself
    return getattr(event, attribute, event)


def _on_candidate(pc, args):
    return to_serializable(_unwrap(_first(args), "candidate"))


def _on_stream(pc, args):
    return describe_stream(_unwrap(_first(args), "stream"))


def _on_track(pc, args):
    event = _first(args)
    track = _unwrap(event, "track")
    streams = getattr(event, "streams", None) or []
    return {
        "track": describe_track(track),
        "streams": [getattr(s, "id", None) for s in streams],
    }


def _state(attribute):
    def describe(pc, args):
        return getattr(pc, attribute, None)
    return describe


def _on_datachannel(pc, args):
    channel = _unwrap(_first(args), "channel")
    return [getattr(channel, "id", None), getattr(channel, "label", None)]


# notification -> (trace method, args builder)
LISTENERS = {
    "icecandidate": ("icecandidate", _on_candidate),
    "addstream": ("onaddstream", _on_stream),
    "removestream": ("onremovestream", _on_stream),
    "track": ("ontrack", _on_track),
    "signalingstatechange": ("signalingstatechange", _state("signalingState")),
    "iceconnectionstatechange": ("iceconnectionstatechange", _state("iceConnectionState")),
    "connectionstatechange": ("connectionstatechange", _state("connectionState")),
    "icegatheringstatechange": ("onicegatheringstatechange", _state("iceGatheringState")),
    "negotiationneeded": ("onnegotiationneeded", lambda pc, args: {}),
    "datachannel": ("ondatachannel", _on_datachannel),
}


class Instrumentation:
    """
    Owns the traced peer connection class.

    Build one per application and create connections through it (or call
    install(patch=True) to publish the traced class in place of the original).
    Installing is idempotent: the capability is probed and wrapped once, an
    already traced capability or method is never wrapped again.
    """

    def __init__(self, tracer, namespace=None, stats_interval=DEFAULT_STATS_INTERVAL, track_sink=None):
        self.tracer = tracer
        self.namespace = namespace
        self.stats_interval = stats_interval
        self.track_sink = track_sink
        self.capability_name = None
        self.original_class = None
        self.peer_connection_class = None
        self._patched = None

    @property
    def installed(self):
        return self.peer_connection_class is not None

    def install(self, patch=False):
        if self.peer_connection_class is None:
            name, capability = probe_capability(self.namespace)
            if is_traced(capability):
                logger.info(f"{name} is already traced, reusing it")
                traced = capability
            else:
                traced = self._build_class(capability)
                logger.info(f"Instrumented {name}")
            self.capability_name = name
            self.original_class = capability
            self.peer_connection_class = traced

        if patch and self._patched is None:
            self._publish()
        return self.peer_connection_class

    def uninstall(self):
        """Restore the original binding replaced by install(patch=True)."""
        if self._patched is None:
            return
        ns, original = self._patched
        self._bind(ns, original)
        self._patched = None

    def _publish(self):
        ns = load_namespace(self.namespace)
        if self.peer_connection_class is self.original_class:
            return
        self._patched = (ns, self.original_class)
        self._bind(ns, self.peer_connection_class)

    def _bind(self, ns, value):
        if isinstance(ns, dict):
            ns[self.capability_name] = value
        else:
            setattr(ns, self.capability_name, value)

    def create_peer_connection(self, *args, **kwargs):
        return self.install()(*args, **kwargs)

    def _build_class(self, base):
        instrumentation = self

        @functools.wraps(base.__init__)
        def __init__(pc, *args, **kwargs):
            base.__init__(pc, *args, **kwargs)
            instrumentation.attach(pc, args, kwargs)

        attrs = {
            TRACED: True,
            "__init__": __init__,
            "__module__": base.__module__,
            "__qualname__": base.__qualname__,
            "__doc__": base.__doc__,
        }
        wrappers = [
            (NEGOTIATION_METHODS, self._wrap_negotiation),
            (DESCRIPTION_METHODS, self._wrap_description),
            (STREAM_METHODS, self._wrap_stream),
            (("addTrack",), self._wrap_add_track),
            (("removeTrack",), self._wrap_remove_track),
            (("addTransceiver",), self._wrap_add_transceiver),
            (CALL_ONLY_METHODS, self._wrap_call_only),
        ]
        for names, wrap in wrappers:
            for name in names:
                original = getattr(base, name, None)
                if original is None:
                    logger.debug(f"{base.__name__} has no {name}, not wrapping it")
                    continue
                if is_traced(original):
                    continue
                attrs[name] = _mark(wrap(name, original))

        # subclass, so isinstance checks against the original keep working
        return type(base.__name__, (base,), attrs)

    def attach(self, pc, args, kwargs):
        """Give a freshly constructed connection its id, listeners and stats poller."""
        pc._peertrace_id = new_connection_id()
        self.tracer.emit("create", pc._peertrace_id, call_arguments(args, kwargs))
        self._observe(pc)

        if hasattr(pc, "getStats"):
            reporter = StatsReporter(pc, pc._peertrace_id, self.tracer, self.stats_interval)
            pc._peertrace_stats = reporter
            reporter.start()

    def _observe(self, pc):
        subscribe = getattr(pc, "on", None)
        if subscribe is None:
            logger.debug(f"{type(pc).__name__} has no event emitter, skipping listeners")
            return
        for event, (method, describe) in LISTENERS.items():
            subscribe(event, self._listener(pc, event, method, describe))

    def _listener(self, pc, event, method, describe):
        def handler(*args):
            self.tracer.emit(method, connection_id(pc), describe(pc, args))
            if event == "track" and self.track_sink is not None:
                self.track_sink.attach(_unwrap(_first(args), "track"))
        return handler

    def _settle(self, pc_id, method, call, with_result):
        try:
            result = call()
        except Exception as e:
            self.tracer.emit(method + "OnFailure", pc_id, error_string(e))
            raise
        if inspect.isawaitable(result):
            return self._outcome(pc_id, method, result, with_result)
        self.tracer.emit(method + "OnSuccess", pc_id, result if with_result else None)
        return result

    async def _outcome(self, pc_id, method, awaitable, with_result):
        try:
            value = await awaitable
        except Exception as e:
            self.tracer.emit(method + "OnFailure", pc_id, error_string(e))
            raise
        self.tracer.emit(method + "OnSuccess", pc_id, value if with_result else None)
        return value

    def _wrap_negotiation(self, name, original):
        @functools.wraps(original)
        def wrapper(pc, *args, **kwargs):
            pc_id = connection_id(pc)
            self.tracer.emit(name, pc_id, _options(args, kwargs))
            return self._settle(pc_id, name, lambda: original(pc, *args, **kwargs), True)
        return wrapper

    def _wrap_description(self, name, original):
        @functools.wraps(original)
        def wrapper(pc, *args, **kwargs):
            pc_id = connection_id(pc)
            self.tracer.emit(name, pc_id, args[0] if args else next(iter(kwargs.values()), None))
            return self._settle(pc_id, name, lambda: original(pc, *args, **kwargs), False)
        return wrapper

    def _wrap_stream(self, name, original):
        @functools.wraps(original)
        def wrapper(pc, stream, *args, **kwargs):
            self.tracer.emit(name, connection_id(pc), describe_stream(stream))
            return original(pc, stream, *args, **kwargs)
        return wrapper

    def _wrap_add_track(self, name, original):
        @functools.wraps(original)
        def wrapper(pc, track, *streams, **kwargs):
            self.tracer.emit(name, connection_id(pc), {
                "track": describe_track(track),
                "streams": [getattr(s, "id", None) for s in streams],
            })
            sender = original(pc, track, *streams, **kwargs)
            self._wrap_replace_track(pc, sender)
            return sender
        return wrapper

    def _wrap_remove_track(self, name, original):
        @functools.wraps(original)
        def wrapper(pc, sender, *args, **kwargs):
            self.tracer.emit(name, connection_id(pc), {"track": describe_track(getattr(sender, "track", None))})
            return original(pc, sender, *args, **kwargs)
        return wrapper

    def _wrap_add_transceiver(self, name, original):
        @functools.wraps(original)
        def wrapper(pc, track_or_kind, *args, **kwargs):
            transceiver = original(pc, track_or_kind, *args, **kwargs)
            if isinstance(track_or_kind, str):
                kind = track_or_kind
            else:
                kind = getattr(track_or_kind, "kind", None)
            get_transceivers = getattr(pc, "getTransceivers", None)
            index = len(get_transceivers()) - 1 if get_transceivers else None
            self.tracer.emit("transceiverAdded", connection_id(pc), describe_transceiver(transceiver, index, kind))
            self._wrap_replace_track(pc, getattr(transceiver, "sender", None))
            return transceiver
        return wrapper

    def _wrap_call_only(self, name, original):
        @functools.wraps(original)
        def wrapper(pc, *args, **kwargs):
            self.tracer.emit(name, connection_id(pc), call_arguments(args, kwargs))
            return original(pc, *args, **kwargs)
        return wrapper

    def _wrap_replace_track(self, pc, sender):
        replace = getattr(sender, "replaceTrack", None)
        if replace is None or is_traced(replace):
            return

        @functools.wraps(replace)
        def replaceTrack(with_track, *args, **kwargs):
            self.tracer.emit("replaceTrack", connection_id(pc), {
                "from": describe_track(getattr(sender, "track", None)),
                "to": describe_track(with_track),
            })
            return replace(with_track, *args, **kwargs)

        try:
            sender.replaceTrack = _mark(replaceTrack)
        except AttributeError:
            logger.debug(f"Cannot wrap replaceTrack on {type(sender).__name__}")
