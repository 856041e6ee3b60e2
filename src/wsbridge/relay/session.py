"""Relay session: one inbound and one outbound WebSocket, paired for life."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

import structlog

from wsbridge.core.config import RelayConfig, get_config
from wsbridge.core.errors import DialError
from wsbridge.core.target import TargetEndpoint
from wsbridge.observability.metrics import (
    DROPPED_MESSAGES,
    RELAYED_BYTES,
    RELAYED_MESSAGES,
)
from wsbridge.relay.connection import Connection, dial
from wsbridge.relay.fsm import (
    AbortDial,
    Closed,
    ConnectionState,
    DialFailed,
    DialStarted,
    Effect,
    Errored,
    Event,
    Forward,
    ForwardingDropped,
    Opened,
    RequestClose,
    SessionSnapshot,
    SessionState,
    Side,
    transition,
)

logger = structlog.get_logger()

Dialer = Callable[[TargetEndpoint, RelayConfig], Awaitable[Connection]]

_DIRECTION = {Side.OUTBOUND: "upstream", Side.INBOUND: "downstream"}

SHUTDOWN_CLOSE_CODE = 1001
SHUTDOWN_CLOSE_REASON = "Relay shutting down"

# Close tasks for backend sockets whose session had already ended.
_late_closes: set[asyncio.Task] = set()


@dataclass
class SessionStats:
    """Per-session counters, keyed by the side a message was sent to."""

    messages: dict[Side, int] = field(default_factory=lambda: {Side.INBOUND: 0, Side.OUTBOUND: 0})
    bytes: dict[Side, int] = field(default_factory=lambda: {Side.INBOUND: 0, Side.OUTBOUND: 0})
    dropped: dict[Side, int] = field(default_factory=lambda: {Side.INBOUND: 0, Side.OUTBOUND: 0})


class RelaySession:
    """Pumps messages between an accepted client socket and a backend socket.

    The inbound pump starts before the dial completes, so client messages that
    arrive while the backend is still connecting are dropped rather than
    queued. Each pump awaits its forward before reading the next message,
    which keeps per-direction ordering.
    """

    def __init__(
        self,
        inbound: Connection,
        target: TargetEndpoint,
        config: RelayConfig | None = None,
        dialer: Dialer = dial,
    ):
        self.id: UUID = uuid4()
        self.created_at = datetime.now(UTC)
        self.inbound = inbound
        self.outbound: Connection | None = None
        self.target = target
        self.config = config or get_config()
        self.stats = SessionStats()
        self.dial_error: DialError | None = None
        self._dialer = dialer
        self._snapshot = SessionSnapshot()
        self._terminated = asyncio.Event()
        self._in_flight = 0
        self._dial: asyncio.Future | None = None
        self._tasks: set[asyncio.Task] = set()
        self._log = logger.bind(session=str(self.id)[:8], target=target.url)
        self._log.info("Relay session created")

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def state(self) -> SessionState:
        return self._snapshot.state

    def _connection(self, side: Side) -> Connection | None:
        return self.inbound if side is Side.INBOUND else self.outbound

    async def run(self) -> None:
        """Run until both connections are closed."""
        self._spawn(self._pump(self.inbound))
        await self._dispatch(DialStarted())
        self._spawn(self._dial_outbound())
        try:
            await self._terminated.wait()
        finally:
            await self._shutdown()

    async def close(
        self, code: int = SHUTDOWN_CLOSE_CODE, reason: str = SHUTDOWN_CLOSE_REASON
    ) -> None:
        """Close both legs from outside, e.g. on server shutdown."""
        if self._snapshot.terminated:
            return
        self._log.info("Closing relay session", code=code, reason=reason)
        await self._dispatch(Closed(Side.INBOUND, code, reason))
        with contextlib.suppress(ConnectionError):
            await self.inbound.close(code, reason)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _dial_outbound(self) -> None:
        # The dial itself is never cancelled: a cancel landing just as the
        # handshake completes would drop the open socket. An abandoned dial
        # runs to completion and its connection is closed on arrival.
        self._dial = asyncio.ensure_future(self._dialer(self.target, self.config))
        try:
            conn = await asyncio.shield(self._dial)
        except asyncio.CancelledError:
            self._dial.add_done_callback(self._close_abandoned)
            raise
        except DialError as e:
            self.dial_error = e
            self._log.error("Backend dial failed", error=str(e))
            await self._dispatch(DialFailed(error=str(e)))
            return
        except Exception as e:
            self.dial_error = DialError(str(e), url=self.target.url)
            self._log.exception("Unexpected error while dialing backend")
            await self._dispatch(DialFailed(error=str(e)))
            return

        if self._snapshot.outbound is not ConnectionState.CONNECTING:
            # Session moved on while the dial was in flight.
            await self._close_late(conn)
            return

        self.outbound = conn
        self._log.info("Backend connection opened")
        await self._dispatch(Opened(Side.OUTBOUND))
        self._spawn(self._pump(conn))

    def _close_abandoned(self, dial: asyncio.Future) -> None:
        if dial.cancelled() or dial.exception() is not None:
            return
        task = asyncio.ensure_future(self._close_late(dial.result()))
        _late_closes.add(task)
        task.add_done_callback(_late_closes.discard)

    async def _close_late(self, conn: Connection) -> None:
        """Close a backend connection that opened after the session ended."""
        if self._snapshot.close_code is not None:
            code, reason = self._snapshot.close_code, self._snapshot.close_reason
        else:
            code, reason = SHUTDOWN_CLOSE_CODE, SHUTDOWN_CLOSE_REASON
        self._log.info("Closing backend connection opened after session ended", code=code)
        try:
            await conn.close(code, reason)
        except ConnectionError as e:
            self._log.warning("Late backend close failed", error=str(e))

    async def _pump(self, conn: Connection) -> None:
        try:
            async for event in conn.events():
                await self._dispatch(event)
        except Exception as e:
            self._log.exception(f"{conn.side.label} receive loop failed")
            await self._dispatch(Errored(conn.side, str(e)))

    async def _dispatch(self, event: Event) -> None:
        previous = self._snapshot
        self._snapshot, effects = transition(previous, event)
        if self._snapshot != previous:
            self._log_event(event)
        self._in_flight += 1
        try:
            for effect in effects:
                await self._execute(effect)
        finally:
            self._in_flight -= 1
        # Let pending close handshakes finish before run() returns.
        if self._snapshot.terminated and self._in_flight == 0:
            self._terminated.set()

    def _log_event(self, event: Event) -> None:
        if isinstance(event, Closed):
            self._log.info(
                f"{event.side.label} connection closed",
                code=event.code,
                reason=event.reason,
                state=self._snapshot.state.value,
            )
        elif isinstance(event, Errored):
            self._log.error(f"{event.side.label} connection error", error=event.error)

    async def _execute(self, effect: Effect) -> None:
        if isinstance(effect, Forward):
            conn = self._connection(effect.to)
            if conn is None:
                return
            try:
                await conn.send(effect.frame)
            except ConnectionError as e:
                await self._dispatch(Errored(effect.to, str(e)))
                return
            self.stats.messages[effect.to] += 1
            self.stats.bytes[effect.to] += effect.frame.size
            RELAYED_MESSAGES.labels(direction=_DIRECTION[effect.to], type=effect.frame.type.value).inc()
            RELAYED_BYTES.labels(direction=_DIRECTION[effect.to]).inc(effect.frame.size)

        elif isinstance(effect, ForwardingDropped):
            self.stats.dropped[effect.to] += 1
            DROPPED_MESSAGES.labels(direction=_DIRECTION[effect.to]).inc()
            self._log.warning(
                f"{effect.to.label} connection not open, dropping message",
                peer_state=effect.peer_state.value,
                size=effect.frame.size,
            )

        elif isinstance(effect, RequestClose):
            conn = self._connection(effect.side)
            if conn is None:
                return
            self._log.debug(
                f"Closing {effect.side.label.lower()} connection",
                code=effect.code,
                reason=effect.reason,
            )
            try:
                await conn.close(effect.code, effect.reason)
            except ConnectionError as e:
                await self._dispatch(Errored(effect.side, str(e)))

        elif isinstance(effect, AbortDial):
            self._log.info("Backend dial abandoned", reason=effect.reason)
            await self._dispatch(DialFailed(error=f"dial aborted: {effect.reason}"))

    async def _shutdown(self) -> None:
        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current and not t.done()]
        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if not self._snapshot.terminated:
            # Cancelled from outside before both legs closed.
            for conn in (self.outbound, self.inbound):
                if conn is not None:
                    with contextlib.suppress(Exception):
                        await conn.close(SHUTDOWN_CLOSE_CODE, SHUTDOWN_CLOSE_REASON)

        self._log.info(
            "Relay session terminated",
            upstream_messages=self.stats.messages[Side.OUTBOUND],
            downstream_messages=self.stats.messages[Side.INBOUND],
            dropped=sum(self.stats.dropped.values()),
        )
