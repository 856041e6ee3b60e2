"""Relay configuration with environment variable support.

All settings can be configured via environment variables with the WSBRIDGE_ prefix.
Example: WSBRIDGE_DEFAULT_TARGET=wss://backend.example.com/path sets the default target.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from wsbridge.core.target import is_valid_target


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            return tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e


def flatten_config(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in config.items():
        full_key = f"{prefix}_{key}" if prefix else key
        if isinstance(value, dict):
            result.update(flatten_config(value, full_key))
        else:
            result[full_key] = value
    return result


class RelayConfig(BaseSettings):
    """Relay server configuration.

    Values are fixed once the server is constructed; the default target is
    never mutated at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="WSBRIDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    bind: str = Field(
        default="0.0.0.0:8000",
        description="HTTP bind address (host:port).",
    )
    default_target: str | None = Field(
        default=None,
        description="Backend WebSocket URL used when a request does not name one.",
    )
    target_param: str = Field(
        default="vlessUrl",
        description="Query parameter carrying the per-request target URL.",
    )
    max_sessions: int | None = Field(
        default=None,
        ge=1,
        description="Maximum concurrent relay sessions. None for unbounded.",
    )
    dial_timeout: float | None = Field(
        default=None,
        description="Timeout for the outbound handshake (seconds). None for indefinite.",
    )
    close_timeout: float = Field(
        default=5.0,
        description="WebSocket close handshake timeout (seconds).",
    )
    ping_interval: float | None = Field(
        default=30.0,
        description="Outbound keepalive ping interval (seconds). None disables pings.",
    )
    max_message_size: int = Field(
        default=16 * 1024 * 1024,
        description="Maximum relayed message size (bytes). Default 16MB.",
    )
    log_level: str = Field(
        default="info",
        description="Log level (debug, info, warning, error).",
    )
    log_json: bool = Field(
        default=False,
        description="Render log lines as JSON instead of console output.",
    )

    @field_validator("default_target")
    @classmethod
    def _check_default_target(cls, value: str | None) -> str | None:
        if value in (None, ""):
            return None
        if not is_valid_target(value):
            raise ValueError("default_target must start with 'ws://' or 'wss://'")
        return value

    @field_validator("dial_timeout")
    @classmethod
    def _zero_means_indefinite(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            return None
        return value

    @classmethod
    def from_file(cls, path: str | Path, **overrides: Any) -> RelayConfig:
        """Build a config from a YAML/TOML file, with keyword overrides on top."""
        data = flatten_config(load_config_from_file(path))
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**data)

    def to_display_dict(self) -> dict[str, Any]:
        """Export current configuration for display."""
        return {
            "bind": self.bind,
            "default_target": self.default_target,
            "target_param": self.target_param,
            "max_sessions": self.max_sessions,
            "dial_timeout": self.dial_timeout,
            "close_timeout": self.close_timeout,
            "ping_interval": self.ping_interval,
            "max_message_size": self.max_message_size,
            "log_level": self.log_level,
        }


_config: RelayConfig | None = None


def get_config() -> RelayConfig:
    """Get the global configuration instance.

    Returns a cached instance of RelayConfig that reads from environment variables.
    To reload config (e.g., in tests), call clear_config() first.
    """
    global _config
    if _config is None:
        _config = RelayConfig()
    return _config


def clear_config() -> None:
    """Clear the cached configuration."""
    global _config
    _config = None
