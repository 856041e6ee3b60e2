"""Backend target resolution.

Purely syntactic: no DNS lookups and no connection attempts happen here.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import unquote

from wsbridge.core.errors import InvalidTargetError, MissingTargetError

PLAIN_SCHEME = "ws://"
SECURE_SCHEME = "wss://"


@dataclass(frozen=True)
class TargetEndpoint:
    """Validated backend WebSocket address."""

    url: str
    secure: bool

    @property
    def scheme(self) -> str:
        return "wss" if self.secure else "ws"

    def __str__(self) -> str:
        return self.url


def _has_scheme(value: str) -> bool:
    return value.startswith(PLAIN_SCHEME) or value.startswith(SECURE_SCHEME)


def is_valid_target(value: str | None) -> bool:
    """Return True if value carries a ws:// or wss:// scheme marker."""
    return bool(value) and _has_scheme(value)


def resolve_target(requested: str | None, default: str | None = None) -> TargetEndpoint:
    """Resolve the backend endpoint for one relay request.

    Args:
        requested: Per-request value (query parameter), may be None or empty.
        default: Process-wide default target from configuration.

    Returns:
        TargetEndpoint preserving the exact address.

    Raises:
        MissingTargetError: Neither a requested value nor a default exists.
        InvalidTargetError: The chosen value lacks a ws:// or wss:// prefix.
    """
    value = requested or default
    if not value:
        raise MissingTargetError("No target URL supplied and no default target configured")

    # Links generated by the form handler carry the target percent-encoded
    # once more than the query string itself requires.
    if not _has_scheme(value) and "%" in value:
        decoded = unquote(value)
        if _has_scheme(decoded):
            value = decoded

    if not _has_scheme(value):
        raise InvalidTargetError(
            "Invalid target URL. Must start with 'wss://' or 'ws://'.",
            value=value,
        )

    return TargetEndpoint(url=value, secure=value.startswith(SECURE_SCHEME))
