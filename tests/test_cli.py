"""Tests for the wsbridge CLI."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

from click.testing import CliRunner

from wsbridge.cli import main
from wsbridge.core.config import RelayConfig


class TestCLI:
    """CLI option handling; the server itself is patched out."""

    def test_help(self):
        runner = CliRunner()
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "--default-target" in result.output
        assert "--max-sessions" in result.output
        assert "--dial-timeout" in result.output

    def test_options_build_config(self):
        runner = CliRunner()
        with patch("wsbridge.cli.run_server", new_callable=AsyncMock) as run_server, \
                patch("wsbridge.cli.configure_logging"):
            result = runner.invoke(
                main,
                [
                    "--bind", "127.0.0.1:9001",
                    "--default-target", "wss://backend.example.com/ws",
                    "--max-sessions", "25",
                    "--dial-timeout", "10",
                ],
            )

        assert result.exit_code == 0, result.output
        config = run_server.call_args.args[0]
        assert isinstance(config, RelayConfig)
        assert config.bind == "127.0.0.1:9001"
        assert config.default_target == "wss://backend.example.com/ws"
        assert config.max_sessions == 25
        assert config.dial_timeout == 10.0
        assert "unbounded" not in result.output
        assert "Max sessions: 25" in result.output
        assert "Dial timeout: 10.0" in result.output

    def test_invalid_default_target(self):
        runner = CliRunner()
        with patch("wsbridge.cli.run_server", new_callable=AsyncMock) as run_server:
            result = runner.invoke(main, ["--default-target", "http://x"])

        assert result.exit_code != 0
        assert "Invalid configuration" in result.output
        run_server.assert_not_called()

    def test_config_file(self, tmp_path):
        path = tmp_path / "relay.toml"
        path.write_text('bind = "127.0.0.1:9002"\ntarget_param = "target"\n')

        runner = CliRunner()
        with patch("wsbridge.cli.run_server", new_callable=AsyncMock) as run_server, \
                patch("wsbridge.cli.configure_logging"):
            result = runner.invoke(main, ["--config", str(path), "--max-sessions", "3"])

        assert result.exit_code == 0, result.output
        config = run_server.call_args.args[0]
        assert config.bind == "127.0.0.1:9002"
        assert config.target_param == "target"
        assert config.max_sessions == 3

    def test_summary_shows_unset_options(self):
        runner = CliRunner()
        with patch("wsbridge.cli.run_server", new_callable=AsyncMock), \
                patch("wsbridge.cli.configure_logging"):
            result = runner.invoke(main, [])

        assert result.exit_code == 0, result.output
        assert "Default target: none (requests must name one)" in result.output
        assert "Max sessions: unbounded" in result.output
        assert "Dial timeout: indefinite" in result.output
        assert "Target param: vlessUrl" in result.output
