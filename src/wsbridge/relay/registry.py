"""Live session bookkeeping and the concurrent session limit."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from wsbridge.core.errors import SessionLimitError

if TYPE_CHECKING:
    from wsbridge.relay.session import RelaySession

logger = structlog.get_logger()


class SessionRegistry:
    """Tracks running relay sessions.

    ``max_sessions=None`` leaves the number of sessions unbounded.
    """

    def __init__(self, max_sessions: int | None = None) -> None:
        self.max_sessions = max_sessions
        self._sessions: dict[UUID, RelaySession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    @property
    def full(self) -> bool:
        return self.max_sessions is not None and len(self._sessions) >= self.max_sessions

    def check_capacity(self) -> None:
        """Raise SessionLimitError if no new session may be started."""
        if self.full:
            raise SessionLimitError(f"Session limit reached ({self.max_sessions})")

    def add(self, session: RelaySession) -> None:
        self.check_capacity()
        self._sessions[session.id] = session

    def discard(self, session: RelaySession) -> None:
        self._sessions.pop(session.id, None)

    def sessions(self) -> list[RelaySession]:
        return list(self._sessions.values())
