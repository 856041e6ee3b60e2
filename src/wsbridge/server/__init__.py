"""Relay HTTP server."""

from .app import RelayServer, is_upgrade_request

__all__ = ["RelayServer", "is_upgrade_request"]
