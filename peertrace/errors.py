"""Exceptions raised by peertrace."""


class PeerTraceError(Exception):
    """Base class for peertrace errors."""


class CapabilityError(PeerTraceError):
    """The native peer connection capability could not be found."""
