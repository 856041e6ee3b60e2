"""Connection adapters for both legs of a relay session.

The inbound leg is the aiohttp ``WebSocketResponse`` accepted by the router;
the outbound leg is a ``websockets`` client connection dialed to the target.
Both expose the same small surface so the session runner never needs to know
which library is underneath.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Protocol

import structlog
import websockets
from aiohttp import WSMsgType, web
from websockets.asyncio.client import ClientConnection, connect

from wsbridge.core.errors import DialError
from wsbridge.relay.fsm import (
    INTERNAL_ERROR_CLOSE_CODE,
    Closed,
    Errored,
    Frame,
    FrameType,
    MessageReceived,
    Side,
)

if TYPE_CHECKING:
    from wsbridge.core.config import RelayConfig
    from wsbridge.core.target import TargetEndpoint

logger = structlog.get_logger()

NO_STATUS_CLOSE_CODE = 1005
NORMAL_CLOSE_CODE = 1000

# Codes an endpoint may put in a close frame (RFC 6455 section 7.4).
_SENDABLE_CODES = frozenset({1000, 1001, 1002, 1003, 1007, 1008, 1009, 1010, 1011, 1012, 1013, 1014})
_MAX_REASON_BYTES = 123

ConnectionEvent = MessageReceived | Closed | Errored


def wire_close_code(code: int) -> int:
    """Map a close code to one that may legally be sent on the wire."""
    if code in _SENDABLE_CODES or 3000 <= code <= 4999:
        return code
    if code == NO_STATUS_CLOSE_CODE:
        return NORMAL_CLOSE_CODE
    return INTERNAL_ERROR_CLOSE_CODE


def truncate_reason(reason: str) -> str:
    """Trim a close reason to the 123 bytes a close frame can carry."""
    encoded = reason.encode("utf-8")
    if len(encoded) <= _MAX_REASON_BYTES:
        return reason
    return encoded[:_MAX_REASON_BYTES].decode("utf-8", errors="ignore")


class Connection(Protocol):
    """Duplex message channel owned by a single relay session."""

    side: Side

    async def send(self, frame: Frame) -> None: ...

    async def close(self, code: int, reason: str) -> None: ...

    def events(self) -> AsyncIterator[ConnectionEvent]: ...


class InboundConnection:
    """Client leg, backed by an already prepared aiohttp WebSocketResponse."""

    side = Side.INBOUND

    def __init__(self, ws: web.WebSocketResponse):
        self._ws = ws

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def send(self, frame: Frame) -> None:
        try:
            if frame.type is FrameType.TEXT:
                await self._ws.send_str(frame.payload)
            else:
                await self._ws.send_bytes(frame.payload)
        except (ConnectionResetError, RuntimeError) as e:
            raise ConnectionError(f"client send failed: {e}") from e

    async def close(self, code: int, reason: str) -> None:
        if self._ws.closed:
            return
        await self._ws.close(
            code=wire_close_code(code),
            message=truncate_reason(reason).encode("utf-8"),
        )

    async def events(self) -> AsyncIterator[ConnectionEvent]:
        while True:
            msg = await self._ws.receive()
            if msg.type == WSMsgType.TEXT:
                yield MessageReceived(self.side, Frame(FrameType.TEXT, msg.data))
            elif msg.type == WSMsgType.BINARY:
                yield MessageReceived(self.side, Frame(FrameType.BINARY, msg.data))
            elif msg.type == WSMsgType.CLOSE:
                yield Closed(self.side, msg.data or NO_STATUS_CLOSE_CODE, msg.extra or "")
                return
            elif msg.type == WSMsgType.ERROR:
                error = self._ws.exception() or msg.data
                yield Errored(self.side, str(error))
                return
            elif msg.type in (WSMsgType.CLOSING, WSMsgType.CLOSED):
                yield Closed(self.side, self._ws.close_code or NO_STATUS_CLOSE_CODE, "")
                return


class OutboundConnection:
    """Backend leg, backed by a websockets client connection."""

    side = Side.OUTBOUND

    def __init__(self, ws: ClientConnection):
        self._ws = ws

    async def send(self, frame: Frame) -> None:
        try:
            await self._ws.send(frame.payload)
        except websockets.ConnectionClosed as e:
            raise ConnectionError(f"backend send failed: {e}") from e

    async def close(self, code: int, reason: str) -> None:
        await self._ws.close(code=wire_close_code(code), reason=truncate_reason(reason))

    async def events(self) -> AsyncIterator[ConnectionEvent]:
        try:
            async for message in self._ws:
                yield MessageReceived(self.side, Frame.from_payload(message))
        except websockets.ConnectionClosed as e:
            if e.rcvd is None:
                yield Errored(self.side, str(e))
            else:
                yield Closed(self.side, e.rcvd.code, e.rcvd.reason)
            return
        yield Closed(
            self.side,
            self._ws.close_code or NO_STATUS_CLOSE_CODE,
            self._ws.close_reason or "",
        )


async def dial(target: TargetEndpoint, config: RelayConfig) -> OutboundConnection:
    """Open the outbound WebSocket to the target.

    Raises:
        DialError: Resolution, network, TLS or handshake failure, or timeout.
    """
    try:
        ws = await connect(
            target.url,
            open_timeout=config.dial_timeout,
            max_size=config.max_message_size,
            ping_interval=config.ping_interval,
            close_timeout=config.close_timeout,
        )
    except (OSError, TimeoutError, websockets.WebSocketException) as e:
        raise DialError(f"Failed to connect to {target.url}: {e}", url=target.url) from e

    logger.debug("Outbound handshake complete", target=target.url, subprotocol=ws.subprotocol)
    return OutboundConnection(ws)
