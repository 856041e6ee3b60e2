"""Shared test doubles for relay sessions."""

from __future__ import annotations

import asyncio

import pytest

from wsbridge.core.config import RelayConfig
from wsbridge.relay.fsm import Closed, Errored, Frame, MessageReceived, Side


class FakeConnection:
    """In-memory Connection: tests push events in and inspect what was sent."""

    def __init__(self, side: Side):
        self.side = side
        self.sent: list[Frame] = []
        self.closes: list[tuple[int, str]] = []
        self.fail_send = False
        self._events: asyncio.Queue = asyncio.Queue()
        self._finished = False

    def receive(self, payload: str | bytes) -> None:
        self._events.put_nowait(MessageReceived(self.side, Frame.from_payload(payload)))

    def remote_close(self, code: int, reason: str = "") -> None:
        self._events.put_nowait(Closed(self.side, code, reason))

    def remote_error(self, error: str) -> None:
        self._events.put_nowait(Errored(self.side, error))

    async def send(self, frame: Frame) -> None:
        if self.fail_send:
            raise ConnectionError("send on broken connection")
        self.sent.append(frame)

    async def close(self, code: int, reason: str) -> None:
        self.closes.append((code, reason))
        # Peer acknowledges the close handshake.
        self._events.put_nowait(Closed(self.side, code, reason))

    async def events(self):
        while not self._finished:
            event = await self._events.get()
            if isinstance(event, (Closed, Errored)):
                self._finished = True
            yield event


async def eventually(predicate, timeout: float = 2.0) -> None:
    """Wait until predicate() is true."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.001)


@pytest.fixture
def relay_config() -> RelayConfig:
    return RelayConfig(close_timeout=1.0, ping_interval=None)
