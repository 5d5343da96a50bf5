"""Pairing session state machine.

Represents one pairing attempt with validated state transitions and the
single-response latch guarding the HTTP reply.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional


class PairingMode(Enum):
    """How the phone links the new device."""

    QR = "qr"
    CODE = "code"


class PairingState(Enum):
    """Pairing workflow states."""

    INIT = auto()
    CONNECTING = auto()
    QR_ISSUED = auto()
    CODE_ISSUED = auto()
    AUTHENTICATED = auto()
    ARCHIVING = auto()
    NOTIFYING = auto()
    DONE = auto()
    FAILED = auto()
    RECONNECTING = auto()


TERMINAL_STATES = frozenset({PairingState.DONE, PairingState.FAILED})

_VALID_TRANSITIONS = {
    PairingState.INIT: {PairingState.CONNECTING, PairingState.FAILED},
    PairingState.CONNECTING: {
        PairingState.QR_ISSUED,
        PairingState.CODE_ISSUED,
        # Reconnect after the artifact went out, phone confirms on this socket
        PairingState.AUTHENTICATED,
        PairingState.RECONNECTING,
        PairingState.FAILED,
    },
    PairingState.QR_ISSUED: {
        PairingState.AUTHENTICATED,
        PairingState.RECONNECTING,
        PairingState.FAILED,
    },
    PairingState.CODE_ISSUED: {
        PairingState.AUTHENTICATED,
        PairingState.RECONNECTING,
        PairingState.FAILED,
    },
    PairingState.AUTHENTICATED: {PairingState.ARCHIVING, PairingState.FAILED},
    PairingState.ARCHIVING: {PairingState.NOTIFYING, PairingState.FAILED},
    PairingState.NOTIFYING: {PairingState.DONE, PairingState.FAILED},
    PairingState.RECONNECTING: {PairingState.CONNECTING, PairingState.FAILED},
    PairingState.DONE: set(),
    PairingState.FAILED: set(),
}


@dataclass(frozen=True)
class IssuedArtifact:
    """What the HTTP caller receives: a QR payload or a pairing code.

    Attributes:
        session_id: Session the artifact belongs to.
        mode: Pairing mode.
        qr: Raw QR payload (QR mode).
        qr_data_url: PNG data URL of the rendered QR (QR mode).
        code: Formatted pairing code (CODE mode).
    """

    session_id: str
    mode: PairingMode
    qr: Optional[str] = None
    qr_data_url: Optional[str] = None
    code: Optional[str] = None


class ResponseLatch:
    """Lets exactly one artifact through to the waiting HTTP handler."""

    def __init__(self):
        self._future: Optional[asyncio.Future] = None
        self.attempts = 0

    def future(self) -> asyncio.Future:
        """The underlying future, bound to the running loop on first use."""
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
        return self._future

    @property
    def fired(self) -> bool:
        return self._future is not None and self._future.done()

    @property
    def artifact(self) -> Optional[IssuedArtifact]:
        return self._future.result() if self.fired else None

    def fire(self, artifact: IssuedArtifact) -> bool:
        """Deliver the artifact.

        Returns:
            True for the first call, False for every later one.
        """
        self.attempts += 1
        future = self.future()
        if future.done():
            return False
        future.set_result(artifact)
        return True

    async def wait(self) -> IssuedArtifact:
        """Wait for the first artifact."""
        return await asyncio.shield(self.future())


@dataclass
class PairingSession:
    """Represents an active pairing attempt.

    Attributes:
        session_id: Unique session identifier.
        mode: QR or pairing code.
        phone_number: Validated digits (CODE mode only).
        created_at: Unix timestamp when session was created.
        state: Current pairing state.
        locator: Archive locator once uploaded.
        failure: Error that moved the session to FAILED.
        reconnects: Reconnect attempts used so far.
    """

    session_id: str
    mode: PairingMode
    phone_number: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    state: PairingState = PairingState.INIT

    locator: Optional[str] = None
    failure: Optional[Exception] = None
    reconnects: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def can_transition_to(self, new_state: PairingState) -> bool:
        return new_state in _VALID_TRANSITIONS.get(self.state, set())

    def transition_to(self, new_state: PairingState) -> None:
        """Transition to a new state with validation.

        Args:
            new_state: Target state.

        Raises:
            ValueError: If transition is not valid from current state.
        """
        if not self.can_transition_to(new_state):
            raise ValueError(f"Invalid transition: {self.state} -> {new_state}")

        self.state = new_state
