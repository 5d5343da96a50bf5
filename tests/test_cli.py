"""Tests for CLI module."""

from unittest.mock import AsyncMock, patch

import pytest
import yaml
from click.testing import CliRunner

from linkvault import __version__
from linkvault.cli import main


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.dump(
            {
                "index_path": str(tmp_path / "sessions.json"),
                "sessions_dir": str(tmp_path / "sessions"),
                "archive": {"tag": "BOT", "public_url": "https://store.example"},
            }
        )
    )
    return path


class TestCLIHelp:
    """Test CLI help output."""

    def test_cli_help(self, runner):
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "serve" in result.output
        assert "locator" in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output


class TestLocatorCommands:
    """Test locator subcommands."""

    def test_make_uses_configured_tag(self, runner, config_file):
        result = runner.invoke(
            main, ["-c", str(config_file), "locator", "make", "https://mega.nz/file/abc#key"]
        )

        assert result.exit_code == 0
        assert result.output.strip() == "BOT~abc#key"

    def test_make_with_tag(self, runner, config_file):
        result = runner.invoke(
            main,
            ["-c", str(config_file), "locator", "make", "https://mega.nz/#!abc!key", "--tag", "X"],
        )

        assert result.output.strip() == "X~abc#key"

    def test_parse(self, runner, config_file):
        result = runner.invoke(main, ["-c", str(config_file), "locator", "parse", "BOT~abc#key"])

        assert result.exit_code == 0
        assert "File ID: abc" in result.output
        assert "URL:     https://store.example/file/abc#key" in result.output

    def test_parse_invalid(self, runner, config_file):
        result = runner.invoke(main, ["-c", str(config_file), "locator", "parse", "nonsense"])

        assert result.exit_code == 1
        assert "Error" in result.output


class TestServeCommand:
    """Test serve command."""

    def test_serve_requires_socket_factory(self, runner, config_file):
        result = runner.invoke(main, ["-c", str(config_file), "serve"])

        assert result.exit_code == 1
        assert "no socket factory configured" in result.output

    def test_serve_rejects_bad_factory(self, runner, config_file):
        result = runner.invoke(
            main, ["-c", str(config_file), "serve", "--socket-factory", "not-a-spec"]
        )

        assert result.exit_code == 1
        assert "cannot load socket factory" in result.output

    def test_serve_starts_server(self, runner, config_file):
        """serve wires the server and shuts it down on Ctrl+C."""
        with patch("linkvault.server.SessionServer") as mock_server_class:
            server = mock_server_class.from_config.return_value
            server.start = AsyncMock()
            server.close = AsyncMock()
            server.get_port.return_value = 8123

            with patch("asyncio.Event") as mock_event:
                mock_event.return_value.wait = AsyncMock(side_effect=KeyboardInterrupt)
                result = runner.invoke(
                    main,
                    [
                        "-c",
                        str(config_file),
                        "serve",
                        "--port",
                        "8123",
                        "--socket-factory",
                        "tests.fakes:FakeSocketFactory",
                    ],
                )

        assert "listening on 0.0.0.0:8123" in result.output
        server.start.assert_awaited_once_with("0.0.0.0", 8123)
        server.close.assert_awaited_once()


class TestSessionsCommand:
    """Test sessions subcommands."""

    def test_sessions_list_empty(self, runner, config_file):
        result = runner.invoke(main, ["-c", str(config_file), "sessions", "list"])

        assert result.exit_code == 0
        assert "No sessions recorded." in result.output

    def test_sessions_list(self, runner, config_file, tmp_path):
        (tmp_path / "sessions.json").write_text(
            '{"sessions": [{"session_id": "SESS_a", "mode": "qr", "status": "completed",'
            ' "locator": "BOT~a#b"}]}'
        )

        result = runner.invoke(main, ["-c", str(config_file), "sessions", "list"])

        assert "SESS_a" in result.output
        assert "BOT~a#b" in result.output
