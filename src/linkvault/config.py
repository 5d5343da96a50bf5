"""Configuration management for linkvault."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml


DEFAULT_NOTIFICATION_TEMPLATE = """\
*SESSION GENERATED SUCCESSFULLY*

Session ID:
```{locator}```

Keep this ID private. Anyone holding it can restore your linked device."""

# Environment overrides. Remote store credentials are only ever read from
# configuration, never embedded in code.
ENV_ARCHIVE_URL = "LINKVAULT_ARCHIVE_URL"
ENV_ARCHIVE_USERNAME = "LINKVAULT_ARCHIVE_USERNAME"
ENV_ARCHIVE_PASSWORD = "LINKVAULT_ARCHIVE_PASSWORD"
ENV_PORT = "LINKVAULT_PORT"


def _default_base_dir() -> Path:
    return Path.home() / ".config" / "linkvault"


@dataclass
class ArchiveConfig:
    """Remote archive configuration."""

    upload_url: str = ""
    public_url: str = "https://mega.nz"
    username: str | None = None
    password: str | None = None
    tag: str = "SESS"
    timeout: float = 60.0  # seconds


@dataclass
class PairingConfig:
    """Pairing workflow timing and retry bounds."""

    settle_delay: float = 5.0  # seconds after open before reading creds
    snapshot_attempts: int = 15
    snapshot_interval: float = 3.0
    upload_attempts: int = 4
    upload_interval: float = 3.0
    reconnect_attempts: int = 3
    reconnect_delay: float = 5.0
    notify_grace: float = 2.0  # let the outbound message leave before closing
    code_request_delay: float = 1.5
    issue_timeout: float = 60.0  # no QR/code issued within this window
    auth_timeout: float = 300.0  # artifact issued but phone never confirmed
    min_snapshot_size: int = 100  # bytes
    retain_sessions: bool = False


@dataclass
class NotificationsConfig:
    """Confirmation message configuration."""

    enabled: bool = True
    template: str = DEFAULT_NOTIFICATION_TEMPLATE
    send_locator_alone: bool = True
    message_gap: float = 1.0


@dataclass
class Config:
    """Service configuration."""

    port: int = 8000
    bind_address: str = "0.0.0.0"
    sessions_dir: str = field(default_factory=lambda: str(_default_base_dir() / "sessions"))
    index_path: str = field(default_factory=lambda: str(_default_base_dir() / "sessions.json"))
    index_max_records: int = 1000  # finished records kept in the index
    log_level: str = "INFO"
    log_file: str | None = None
    session_prefix: str = "SESS_"
    qr_response: str = "html"  # "html" or "json"
    socket_factory: str | None = None  # "package.module:callable"
    rate_limit_per_minute: int = 30
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)
    pairing: PairingConfig = field(default_factory=PairingConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


def get_config_path(custom_path: Path | None = None) -> Path:
    """Get the configuration file path.

    Args:
        custom_path: Override path. If None, returns default.

    Returns:
        Path to config file.
    """
    if custom_path is not None:
        return custom_path
    return _default_base_dir() / "config.yaml"


def _default_file_reader(path: Path) -> dict[str, Any] | None:
    """Default file reader that loads YAML from disk."""
    if not path.exists():
        return None
    try:
        content = path.read_text()
        if not content.strip():
            return None
        return yaml.safe_load(content)
    except yaml.YAMLError:
        return None


def _section(data: Mapping[str, Any], cls: type, name: str) -> Any:
    """Build a section dataclass, keeping defaults for missing keys."""
    section_data = data.get(name) or {}
    known = {key: value for key, value in section_data.items() if key in cls.__dataclass_fields__}
    return cls(**known)


def load_config(
    path: Path | None = None,
    file_reader: Callable[[Path], dict[str, Any] | None] | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from file and environment.

    Args:
        path: Path to config file. If None, uses default path.
        file_reader: Injectable file reader for testing.
        environ: Injectable environment for testing. Defaults to os.environ.

    Returns:
        Config object with values from file, environment or defaults.
    """
    config_path = get_config_path(path)
    reader = file_reader or _default_file_reader
    env = os.environ if environ is None else environ

    data = reader(config_path) or {}
    defaults = Config()

    config = Config(
        port=data.get("port", defaults.port),
        bind_address=data.get("bind_address", defaults.bind_address),
        sessions_dir=str(Path(data.get("sessions_dir", defaults.sessions_dir)).expanduser()),
        index_path=str(Path(data.get("index_path", defaults.index_path)).expanduser()),
        index_max_records=data.get("index_max_records", defaults.index_max_records),
        log_level=data.get("log_level", defaults.log_level),
        log_file=data.get("log_file", defaults.log_file),
        session_prefix=data.get("session_prefix", defaults.session_prefix),
        qr_response=data.get("qr_response", defaults.qr_response),
        socket_factory=data.get("socket_factory", defaults.socket_factory),
        rate_limit_per_minute=data.get(
            "rate_limit_per_minute", defaults.rate_limit_per_minute
        ),
        archive=_section(data, ArchiveConfig, "archive"),
        pairing=_section(data, PairingConfig, "pairing"),
        notifications=_section(data, NotificationsConfig, "notifications"),
    )

    # Environment wins over the file
    if env.get(ENV_ARCHIVE_URL):
        config.archive.upload_url = env[ENV_ARCHIVE_URL]
    if env.get(ENV_ARCHIVE_USERNAME):
        config.archive.username = env[ENV_ARCHIVE_USERNAME]
    if env.get(ENV_ARCHIVE_PASSWORD):
        config.archive.password = env[ENV_ARCHIVE_PASSWORD]
    if env.get(ENV_PORT):
        config.port = int(env[ENV_PORT])

    if config.qr_response not in ("html", "json"):
        config.qr_response = defaults.qr_response

    return config
