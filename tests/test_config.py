"""Tests for config module."""

from pathlib import Path
from unittest.mock import Mock

import yaml

from linkvault.config import (
    DEFAULT_NOTIFICATION_TEMPLATE,
    ArchiveConfig,
    Config,
    PairingConfig,
    get_config_path,
    load_config,
)


class TestConfigDefaults:
    """Test default configuration values."""

    def test_default_config_values(self):
        """Config has sensible defaults when no file exists."""
        config = Config()

        assert config.port == 8000
        assert config.bind_address == "0.0.0.0"
        assert config.log_level == "INFO"
        assert config.log_file is None
        assert config.session_prefix == "SESS_"
        assert config.qr_response == "html"
        assert config.socket_factory is None
        assert config.index_max_records == 1000

    def test_pairing_defaults(self):
        """Pairing timings match the documented defaults."""
        pairing = PairingConfig()

        assert pairing.settle_delay == 5.0
        assert pairing.snapshot_attempts == 15
        assert pairing.snapshot_interval == 3.0
        assert pairing.upload_attempts == 4
        assert pairing.reconnect_delay == 5.0
        assert pairing.min_snapshot_size == 100
        assert pairing.retain_sessions is False

    def test_archive_has_no_embedded_credentials(self):
        """Remote store credentials default to unset."""
        archive = ArchiveConfig()

        assert archive.username is None
        assert archive.password is None
        assert archive.tag == "SESS"


class TestGetConfigPath:
    """Test config path resolution."""

    def test_get_config_path_default(self):
        """Default config path is ~/.config/linkvault/config.yaml."""
        path = get_config_path()
        assert path == Path.home() / ".config" / "linkvault" / "config.yaml"

    def test_get_config_path_custom(self):
        """Can override config path."""
        custom = Path("/custom/config.yaml")
        assert get_config_path(custom) == custom


class TestLoadConfig:
    """Test config loading."""

    def test_load_config_no_file_returns_defaults(self, tmp_path):
        """Config returns defaults when no file exists."""
        config = load_config(tmp_path / "nonexistent.yaml", environ={})

        assert config.port == 8000
        assert config.log_level == "INFO"

    def test_load_config_from_file(self, tmp_path):
        """Config loads values and sections from YAML file."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            yaml.dump(
                {
                    "port": 9000,
                    "bind_address": "127.0.0.1",
                    "archive": {"upload_url": "https://store.example/upload", "tag": "BOT"},
                    "pairing": {"snapshot_attempts": 3, "retain_sessions": True},
                    "notifications": {"enabled": False},
                }
            )
        )

        config = load_config(config_file, environ={})

        assert config.port == 9000
        assert config.bind_address == "127.0.0.1"
        assert config.archive.upload_url == "https://store.example/upload"
        assert config.archive.tag == "BOT"
        assert config.pairing.snapshot_attempts == 3
        assert config.pairing.retain_sessions is True
        assert config.pairing.upload_attempts == 4  # Default
        assert config.notifications.enabled is False
        assert config.notifications.template == DEFAULT_NOTIFICATION_TEMPLATE

    def test_unknown_section_keys_are_ignored(self, tmp_path):
        reader = Mock(return_value={"pairing": {"snapshot_attempts": 2, "bogus": 1}})

        config = load_config(tmp_path / "config.yaml", file_reader=reader, environ={})

        assert config.pairing.snapshot_attempts == 2

    def test_home_is_expanded_in_paths(self, tmp_path):
        reader = Mock(return_value={"sessions_dir": "~/lv/sessions", "index_path": "~/lv/index.json"})

        config = load_config(tmp_path / "config.yaml", file_reader=reader, environ={})

        assert config.sessions_dir == str(Path.home() / "lv" / "sessions")
        assert config.index_path == str(Path.home() / "lv" / "index.json")

    def test_load_config_with_injectable_reader(self, tmp_path):
        """Config loading supports injectable file reader for testing."""
        mock_reader = Mock(return_value={"port": 5555, "log_level": "WARNING"})

        config = load_config(tmp_path / "config.yaml", file_reader=mock_reader, environ={})

        assert config.port == 5555
        assert config.log_level == "WARNING"
        mock_reader.assert_called_once()

    def test_load_config_handles_invalid_yaml(self, tmp_path):
        """Config handles invalid YAML gracefully."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("invalid: yaml: content: [")

        config = load_config(config_file, environ={})

        assert config.port == 8000

    def test_load_config_handles_empty_file(self, tmp_path):
        """Config handles empty file gracefully."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("")

        config = load_config(config_file, environ={})

        assert config.port == 8000

    def test_invalid_qr_response_falls_back(self, tmp_path):
        reader = Mock(return_value={"qr_response": "svg"})

        config = load_config(tmp_path / "config.yaml", file_reader=reader, environ={})

        assert config.qr_response == "html"


class TestEnvironmentOverrides:
    """Environment variables win over the file."""

    def test_archive_credentials_from_environment(self, tmp_path):
        reader = Mock(return_value={"archive": {"username": "file-user", "password": "file-pass"}})
        environ = {
            "LINKVAULT_ARCHIVE_USERNAME": "env-user",
            "LINKVAULT_ARCHIVE_PASSWORD": "env-pass",
            "LINKVAULT_ARCHIVE_URL": "https://env.example/upload",
        }

        config = load_config(tmp_path / "config.yaml", file_reader=reader, environ=environ)

        assert config.archive.username == "env-user"
        assert config.archive.password == "env-pass"
        assert config.archive.upload_url == "https://env.example/upload"

    def test_port_from_environment(self, tmp_path):
        reader = Mock(return_value={"port": 9000})

        config = load_config(
            tmp_path / "config.yaml", file_reader=reader, environ={"LINKVAULT_PORT": "7000"}
        )

        assert config.port == 7000

    def test_empty_environment_values_are_ignored(self, tmp_path):
        reader = Mock(return_value={"archive": {"username": "file-user"}})

        config = load_config(
            tmp_path / "config.yaml",
            file_reader=reader,
            environ={"LINKVAULT_ARCHIVE_USERNAME": ""},
        )

        assert config.archive.username == "file-user"
