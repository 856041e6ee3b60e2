"""Core."""

from .config import RelayConfig, clear_config, get_config, load_config_from_file
from .errors import (
    DialError,
    InvalidTargetError,
    MissingTargetError,
    RelayError,
    SessionLimitError,
    UpgradeSetupError,
)
from .target import TargetEndpoint, is_valid_target, resolve_target

__all__ = [
    # Config
    "RelayConfig",
    "get_config",
    "clear_config",
    "load_config_from_file",
    # Errors
    "RelayError",
    "InvalidTargetError",
    "MissingTargetError",
    "UpgradeSetupError",
    "DialError",
    "SessionLimitError",
    # Target
    "TargetEndpoint",
    "is_valid_target",
    "resolve_target",
]
