"""wsbridge - relay WebSocket clients to a backend chosen at connect time."""

from wsbridge.core.config import RelayConfig
from wsbridge.core.target import TargetEndpoint, resolve_target
from wsbridge.relay.session import RelaySession
from wsbridge.server.app import RelayServer

__version__ = "0.1.0"

__all__ = [
    "RelayConfig",
    "RelayServer",
    "RelaySession",
    "TargetEndpoint",
    "resolve_target",
    "__version__",
]
