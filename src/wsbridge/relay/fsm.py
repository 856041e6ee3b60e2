"""Relay session state machine.

Every connection-level event goes through :func:`transition`, a pure function
that returns the next snapshot plus a list of effects. The session runner
executes the effects; nothing in this module touches a socket.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum

INTERNAL_ERROR_CLOSE_CODE = 1011


class Side(Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"

    @property
    def peer(self) -> Side:
        return Side.OUTBOUND if self is Side.INBOUND else Side.INBOUND

    @property
    def label(self) -> str:
        return "Client" if self is Side.INBOUND else "Backend"


class ConnectionState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class SessionState(Enum):
    INIT = "init"
    DIALING = "dialing"
    ACTIVE = "active"
    CLOSING = "closing"
    TERMINATED = "terminated"


class FrameType(Enum):
    TEXT = "text"
    BINARY = "binary"


@dataclass(frozen=True)
class Frame:
    """One relayed message. The payload is never inspected."""

    type: FrameType
    payload: str | bytes

    @classmethod
    def from_payload(cls, payload: str | bytes) -> Frame:
        if isinstance(payload, str):
            return cls(FrameType.TEXT, payload)
        return cls(FrameType.BINARY, bytes(payload))

    @property
    def size(self) -> int:
        if isinstance(self.payload, str):
            return len(self.payload.encode("utf-8"))
        return len(self.payload)


# Events


@dataclass(frozen=True)
class DialStarted:
    pass


@dataclass(frozen=True)
class Opened:
    side: Side


@dataclass(frozen=True)
class MessageReceived:
    side: Side
    frame: Frame


@dataclass(frozen=True)
class Closed:
    side: Side
    code: int
    reason: str = ""


@dataclass(frozen=True)
class Errored:
    side: Side
    error: str


@dataclass(frozen=True)
class DialFailed:
    error: str


Event = DialStarted | Opened | MessageReceived | Closed | Errored | DialFailed


# Effects


@dataclass(frozen=True)
class Forward:
    to: Side
    frame: Frame


@dataclass(frozen=True)
class ForwardingDropped:
    """A message arrived while its peer was not open; it is discarded."""

    to: Side
    frame: Frame
    peer_state: ConnectionState


@dataclass(frozen=True)
class RequestClose:
    side: Side
    code: int
    reason: str


@dataclass(frozen=True)
class AbortDial:
    reason: str


Effect = Forward | ForwardingDropped | RequestClose | AbortDial


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of a session's lifecycle.

    The inbound side starts OPEN because the router completes its handshake
    before the session exists; the outbound side starts CONNECTING.
    """

    state: SessionState = SessionState.INIT
    inbound: ConnectionState = ConnectionState.OPEN
    outbound: ConnectionState = ConnectionState.CONNECTING
    close_requested: frozenset[Side] = field(default_factory=frozenset)
    close_code: int | None = None
    close_reason: str = ""

    def connection(self, side: Side) -> ConnectionState:
        return self.inbound if side is Side.INBOUND else self.outbound

    def with_connection(self, side: Side, state: ConnectionState) -> SessionSnapshot:
        if side is Side.INBOUND:
            return replace(self, inbound=state)
        return replace(self, outbound=state)

    def is_open(self, side: Side) -> bool:
        return self.connection(side) is ConnectionState.OPEN

    @property
    def terminated(self) -> bool:
        return self.state is SessionState.TERMINATED


def _derive_state(snap: SessionSnapshot) -> SessionSnapshot:
    closed = ConnectionState.CLOSED
    if snap.inbound is closed and snap.outbound is closed:
        state = SessionState.TERMINATED
    elif (
        snap.close_requested
        or snap.inbound in (ConnectionState.CLOSING, closed)
        or snap.outbound in (ConnectionState.CLOSING, closed)
    ):
        state = SessionState.CLOSING
    elif snap.outbound is ConnectionState.OPEN:
        state = SessionState.ACTIVE
    elif snap.state is SessionState.DIALING:
        state = SessionState.DIALING
    else:
        state = snap.state
    return replace(snap, state=state)


def _close_peer(
    snap: SessionSnapshot, peer: Side, code: int, reason: str
) -> tuple[SessionSnapshot, list[Effect]]:
    current = snap.connection(peer)
    if peer in snap.close_requested or current in (
        ConnectionState.CLOSING,
        ConnectionState.CLOSED,
    ):
        return snap, []

    snap = replace(snap, close_requested=snap.close_requested | {peer})
    if current is ConnectionState.CONNECTING:
        return snap, [AbortDial(reason=reason)]

    snap = snap.with_connection(peer, ConnectionState.CLOSING)
    return snap, [RequestClose(side=peer, code=code, reason=reason)]


def _terminate_side(
    snap: SessionSnapshot, side: Side, code: int, reason: str, peer_code: int, peer_reason: str
) -> tuple[SessionSnapshot, list[Effect]]:
    snap = snap.with_connection(side, ConnectionState.CLOSED)
    if snap.close_code is None:
        snap = replace(snap, close_code=code, close_reason=reason)
    return _close_peer(snap, side.peer, peer_code, peer_reason)


def transition(snap: SessionSnapshot, event: Event) -> tuple[SessionSnapshot, list[Effect]]:
    """Apply one event to a snapshot.

    Returns the new snapshot and the effects the runner must execute, in order.
    """
    effects: list[Effect] = []

    if isinstance(event, DialStarted):
        if snap.state is SessionState.INIT:
            snap = replace(snap, state=SessionState.DIALING)

    elif isinstance(event, Opened):
        if snap.connection(event.side) is ConnectionState.CONNECTING:
            snap = snap.with_connection(event.side, ConnectionState.OPEN)
            if event.side in snap.close_requested:
                # Close was requested while still connecting.
                snap = snap.with_connection(event.side, ConnectionState.CLOSING)
                code = snap.close_code if snap.close_code is not None else INTERNAL_ERROR_CLOSE_CODE
                effects.append(RequestClose(event.side, code, snap.close_reason))

    elif isinstance(event, MessageReceived):
        if snap.connection(event.side) is not ConnectionState.CLOSED:
            to = event.side.peer
            peer_state = snap.connection(to)
            if peer_state is ConnectionState.OPEN:
                effects.append(Forward(to=to, frame=event.frame))
            else:
                effects.append(ForwardingDropped(to=to, frame=event.frame, peer_state=peer_state))

    elif isinstance(event, Closed):
        if snap.connection(event.side) is not ConnectionState.CLOSED:
            snap, effects = _terminate_side(
                snap, event.side, event.code, event.reason, event.code, event.reason
            )

    elif isinstance(event, Errored):
        if snap.connection(event.side) is not ConnectionState.CLOSED:
            reason = f"{event.side.label} error"
            snap, effects = _terminate_side(
                snap, event.side, INTERNAL_ERROR_CLOSE_CODE, reason,
                INTERNAL_ERROR_CLOSE_CODE, reason,
            )

    elif isinstance(event, DialFailed):
        if snap.outbound is not ConnectionState.CLOSED:
            reason = "Backend connection failed"
            snap, effects = _terminate_side(
                snap, Side.OUTBOUND, INTERNAL_ERROR_CLOSE_CODE, reason,
                INTERNAL_ERROR_CLOSE_CODE, reason,
            )

    return _derive_state(snap), effects
