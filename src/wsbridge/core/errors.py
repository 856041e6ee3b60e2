"""Error taxonomy for the relay.

Validation errors are turned into HTTP responses before any connection
exists. Once a session is running, failures are resolved inside it by
closing the affected connections.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for relay errors."""

    status: int = 500


class InvalidTargetError(RelayError):
    """Target address is malformed or missing."""

    status = 400

    def __init__(self, message: str, value: str | None = None):
        super().__init__(message)
        self.value = value


class MissingTargetError(InvalidTargetError):
    """No target was supplied and no default is configured."""

    status = 503


class UpgradeSetupError(RelayError):
    """The inbound WebSocket handshake could not be completed."""

    status = 500


class DialError(RelayError):
    """Outbound connection to the target could not be established."""

    status = 502

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


class SessionLimitError(RelayError):
    """Maximum number of concurrent sessions reached."""

    status = 503
