"""Relay session, its state machine and connection adapters."""

from .connection import Connection, InboundConnection, OutboundConnection, dial, wire_close_code
from .fsm import (
    INTERNAL_ERROR_CLOSE_CODE,
    ConnectionState,
    Frame,
    FrameType,
    SessionSnapshot,
    SessionState,
    Side,
    transition,
)
from .registry import SessionRegistry
from .session import RelaySession, SessionStats

__all__ = [
    # Session
    "RelaySession",
    "SessionStats",
    "SessionRegistry",
    # State machine
    "INTERNAL_ERROR_CLOSE_CODE",
    "ConnectionState",
    "SessionState",
    "SessionSnapshot",
    "Side",
    "Frame",
    "FrameType",
    "transition",
    # Connections
    "Connection",
    "InboundConnection",
    "OutboundConnection",
    "dial",
    "wire_close_code",
]
