"""wsbridge CLI - run the relay server."""

from __future__ import annotations

import asyncio

import click
from pydantic import ValidationError
from rich.console import Console

from wsbridge.core.config import RelayConfig
from wsbridge.observability.logs import configure_logging
from wsbridge.server.app import RelayServer

console = Console()

BANNER = """
============================================
   W S B R I D G E
   relay WebSocket clients to any backend
============================================
"""

# How unset options read in the startup summary.
_UNSET_DISPLAY = {
    "default_target": "none (requests must name one)",
    "max_sessions": "unbounded",
    "dial_timeout": "indefinite",
    "ping_interval": "disabled",
}


@click.command()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option("--bind", "-b", default=None, help="Bind address (default: 0.0.0.0:8000)")
@click.option(
    "--default-target",
    envvar="WSBRIDGE_DEFAULT_TARGET",
    default=None,
    help="Backend WebSocket URL used when a request names none",
)
@click.option(
    "--target-param",
    default=None,
    help="Query parameter carrying the target URL (default: vlessUrl)",
)
@click.option(
    "--max-sessions",
    type=int,
    default=None,
    help="Maximum concurrent relay sessions (default: unbounded)",
)
@click.option(
    "--dial-timeout",
    type=float,
    default=None,
    help="Backend handshake timeout in seconds (0 or unset for indefinite)",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Log level (default: info)",
)
@click.option("--json-logs", is_flag=True, default=False, help="Emit JSON log lines")
def main(
    config_file: str | None,
    bind: str | None,
    default_target: str | None,
    target_param: str | None,
    max_sessions: int | None,
    dial_timeout: float | None,
    log_level: str | None,
    json_logs: bool,
):
    """Run the wsbridge relay server."""
    overrides = {
        "bind": bind,
        "default_target": default_target,
        "target_param": target_param,
        "max_sessions": max_sessions,
        "dial_timeout": dial_timeout,
        "log_level": log_level,
        "log_json": json_logs or None,
    }
    try:
        if config_file:
            config = RelayConfig.from_file(config_file, **overrides)
        else:
            config = RelayConfig(**{k: v for k, v in overrides.items() if v is not None})
    except (ValidationError, ValueError) as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e

    configure_logging(config.log_level, config.log_json)

    console.print(BANNER, style="cyan")
    console.print(f"Listening on {config.bind}", style="yellow")
    for key, value in config.to_display_dict().items():
        if key == "bind":
            continue
        shown = _UNSET_DISPLAY.get(key, "none") if value is None else value
        console.print(f"{key.replace('_', ' ').capitalize()}: {shown}", style="dim")

    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        console.print("\nShutting down...", style="yellow")


async def run_server(config: RelayConfig):
    """Run the relay server until cancelled."""
    server = RelayServer(config)

    try:
        await server.start()
        console.print("Server started, press Ctrl+C to stop", style="green")

        await asyncio.Event().wait()
    finally:
        await server.stop()


if __name__ == "__main__":
    main()
