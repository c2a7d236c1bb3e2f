"""
Settings for the tracer, the relay server and the collector
"""
import logging
import os
import ssl
from dataclasses import dataclass
from typing import Optional

DEFAULT_STATS_INTERVAL = 1.0
DEFAULT_RELAY_HOST = "0.0.0.0"
DEFAULT_RELAY_PORT = 8043
DEFAULT_URL = f"ws://127.0.0.1:{DEFAULT_RELAY_PORT}"

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(verbose=False):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)


def _env_float(name, default):
    value = os.environ.get(name)
    return float(value) if value else default


@dataclass
class TraceSettings:
    url: str = DEFAULT_URL
    stats_interval: float = DEFAULT_STATS_INTERVAL
    reconnect_delay: Optional[float] = None
    cafile: Optional[str] = None
    insecure: bool = False

    @classmethod
    def from_args(cls, args):
        return cls(
            url=args.url,
            stats_interval=args.stats_interval,
            reconnect_delay=args.reconnect_delay,
            cafile=args.cafile,
            insecure=args.insecure,
        )

    def ssl_context(self):
        if not self.url.startswith("wss://"):
            return None
        return client_ssl_context(self.cafile, self.insecure)


@dataclass
class RelaySettings:
    host: str = DEFAULT_RELAY_HOST
    port: int = DEFAULT_RELAY_PORT
    certfile: Optional[str] = None
    keyfile: Optional[str] = None

    @classmethod
    def from_args(cls, args):
        return cls(host=args.host, port=args.port, certfile=args.cert, keyfile=args.key)

    @property
    def secure(self):
        return bool(self.certfile)

    def ssl_context(self):
        if not self.secure:
            return None
        return server_ssl_context(self.certfile, self.keyfile)


def add_trace_arguments(parser):
    parser.add_argument("--url", default=os.environ.get("PEERTRACE_URL", DEFAULT_URL),
                        help="Relay/collector WebSocket URL")
    parser.add_argument("--stats-interval", type=float,
                        default=_env_float("PEERTRACE_STATS_INTERVAL", DEFAULT_STATS_INTERVAL),
                        help="Seconds between getStats polls")
    parser.add_argument("--reconnect-delay", type=float, default=None,
                        help="Retry a lost event channel after this many seconds")
    parser.add_argument("--cafile", default=None, help="CA bundle for wss:// URLs")
    parser.add_argument("--insecure", action="store_true",
                        help="Skip certificate verification (self-signed relay)")


def add_relay_arguments(parser):
    parser.add_argument("--host", default=os.environ.get("PEERTRACE_RELAY_HOST", DEFAULT_RELAY_HOST))
    parser.add_argument("--port", type=int,
                        default=int(os.environ.get("PEERTRACE_RELAY_PORT", DEFAULT_RELAY_PORT)))
    parser.add_argument("--cert", default=os.environ.get("PEERTRACE_SSL_CERT"), help="TLS certificate (enables wss)")
    parser.add_argument("--key", default=os.environ.get("PEERTRACE_SSL_KEY"), help="TLS private key")


def server_ssl_context(certfile, keyfile=None):
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(certfile, keyfile)
    return context


def client_ssl_context(cafile=None, insecure=False):
    context = ssl.create_default_context(cafile=cafile)
    if insecure:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context
