"""Pairing module for linkvault.

Provides device linking by QR code or pairing code:
- Input validation and session ids
- QR code rendering
- The pairing workflow state machine
- Management of running workflows
"""

from .manager import PairingManager
from .qr_generator import QrGenerator
from .session import IssuedArtifact, PairingMode, PairingSession, PairingState, ResponseLatch
from .validation import format_pairing_code, generate_session_id, validate_phone_number
from .workflow import PairingWorkflow

__all__ = [
    "IssuedArtifact",
    "PairingManager",
    "PairingMode",
    "PairingSession",
    "PairingState",
    "PairingWorkflow",
    "QrGenerator",
    "ResponseLatch",
    "format_pairing_code",
    "generate_session_id",
    "validate_phone_number",
]
