"""Protocols and enums for the WhatsApp protocol layer.

linkvault never speaks the WhatsApp multi-device protocol itself. A socket
implementation is plugged in through ``SocketFactory`` and must satisfy
``WhatsAppSocket``.
"""

import importlib
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, AsyncIterator, Optional, Protocol

if TYPE_CHECKING:
    from linkvault.credentials import AuthState

USER_SERVER = "s.whatsapp.net"


class ConnectionStatus(Enum):
    """Connection state reported by the protocol layer."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSE = "close"


class DisconnectReason(IntEnum):
    """Status codes attached to a closed connection."""

    CONNECTION_LOST = 408
    CONNECTION_CLOSED = 428
    CONNECTION_REPLACED = 440
    LOGGED_OUT = 401
    FORBIDDEN = 403
    MULTIDEVICE_MISMATCH = 411
    BAD_SESSION = 500
    UNAVAILABLE_SERVICE = 503
    RESTART_REQUIRED = 515


@dataclass(frozen=True)
class ConnectionUpdate:
    """One event from the protocol layer's connection stream.

    Attributes:
        connection: New connection state, if it changed.
        qr: Scannable pairing payload, if one was issued.
        status_code: Disconnect status code when connection is CLOSE.
        error: Human-readable disconnect reason.
    """

    connection: Optional[ConnectionStatus] = None
    qr: Optional[str] = None
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_logged_out(self) -> bool:
        return (
            self.connection is ConnectionStatus.CLOSE
            and self.status_code == DisconnectReason.LOGGED_OUT
        )


class WhatsAppSocket(Protocol):
    """A live protocol-layer connection for one session.

    Implementations call ``auth.save_creds()`` on every credential update and
    deliver connection updates strictly in emission order.
    """

    @property
    def user_jid(self) -> Optional[str]:
        """JID of the authenticated account, None before pairing."""
        ...

    @property
    def registered(self) -> bool:
        """Whether the credentials already belong to a linked device."""
        ...

    @property
    def is_connected(self) -> bool:
        """Whether the underlying connection is currently open."""
        ...

    def updates(self) -> AsyncIterator[ConnectionUpdate]:
        """Stream of connection updates. Ends when the socket is closed."""
        ...

    async def request_pairing_code(self, phone_number: str) -> str:
        """Request a numeric pairing code for phone_number (digits only)."""
        ...

    async def send_message(self, jid: str, text: str) -> None:
        """Send a text message."""
        ...

    async def close(self) -> None:
        """Close the connection."""
        ...


class SocketFactory(Protocol):
    """Opens a protocol connection using the given credentials."""

    async def __call__(self, auth: "AuthState") -> WhatsAppSocket:
        ...


def normalize_jid(jid: str) -> str:
    """Strip the device suffix from a JID.

    "15551234567:12@s.whatsapp.net" -> "15551234567@s.whatsapp.net"
    """
    user, sep, server = jid.partition("@")
    user = user.split(":", 1)[0]
    if not sep:
        return f"{user}@{USER_SERVER}"
    return f"{user}@{server}"


def load_socket_factory(spec: str) -> SocketFactory:
    """Resolve a socket factory from "package.module:callable".

    Raises:
        ValueError: If spec is malformed or does not name a callable.
        ImportError: If the module cannot be imported.
    """
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Socket factory must look like 'module:callable', got {spec!r}")

    module = importlib.import_module(module_name)
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ValueError(f"{spec} is not callable")
    return factory
