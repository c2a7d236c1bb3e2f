"""
Capability probing
Resolves the peer connection constructor before anything gets wrapped
"""
import importlib
import logging

from peertrace.errors import CapabilityError

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "aiortc"

# Probed in order, first hit wins
CANDIDATES = (
    "RTCPeerConnection",
    "mozRTCPeerConnection",
    "webkitRTCPeerConnection",
)


def load_namespace(namespace=None):
    """Return the object the candidates are looked up on."""
    if namespace is None:
        namespace = DEFAULT_NAMESPACE
    if isinstance(namespace, str):
        try:
            return importlib.import_module(namespace)
        except ImportError as e:
            raise CapabilityError(f"cannot import {namespace!r}: {e}") from e
    return namespace


def probe_capability(namespace=None, candidates=CANDIDATES):
    """
    Find the first candidate constructor bound on the namespace.

    Returns (name, constructor). Raises CapabilityError when nothing matches,
    never hands back a missing capability.
    """
    ns = load_namespace(namespace)
    for name in candidates:
        if isinstance(ns, dict):
            constructor = ns.get(name)
        else:
            constructor = getattr(ns, name, None)
        if constructor:
            logger.debug(f"Resolved peer connection capability as {name}")
            return name, constructor

    raise CapabilityError(
        f"cannot find any of {', '.join(candidates)} in {getattr(ns, '__name__', ns)!r}"
    )
