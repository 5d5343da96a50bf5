"""Input validation for pairing requests."""

import re
import secrets
import string

from linkvault.errors import InvalidPhoneNumber, InvalidSessionId

# Session ID configuration
SESSION_ID_LENGTH = 16
SESSION_ID_ALPHABET = string.ascii_letters + string.digits  # a-zA-Z0-9

# Full session ids are used as directory names: no path separators or dots
SESSION_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,128}")

PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 15
_PHONE_FORMATTING = re.compile(r"[\s+\-().]")
_PHONE_DIGITS = re.compile(rf"[0-9]{{{PHONE_MIN_DIGITS},{PHONE_MAX_DIGITS}}}")

PAIRING_CODE_GROUP = 4


def validate_phone_number(raw: str | None) -> str:
    """Normalize and validate an E.164-style phone number.

    Formatting characters (whitespace, "+", "-", ".", parentheses) are
    stripped; what remains must be 10-15 digits.

    Args:
        raw: Phone number as typed by the user.

    Returns:
        Digits only, country code first.

    Raises:
        InvalidPhoneNumber: If the number is missing or malformed.
    """
    if not raw:
        raise InvalidPhoneNumber("Phone number is required")

    digits = _PHONE_FORMATTING.sub("", raw)
    if not _PHONE_DIGITS.fullmatch(digits):
        raise InvalidPhoneNumber(
            "Invalid phone number. Use full international format, "
            f"{PHONE_MIN_DIGITS}-{PHONE_MAX_DIGITS} digits."
        )
    return digits


def generate_session_id(prefix: str = "", custom: str | None = None) -> str:
    """Generate a session id, or build one from a caller-supplied id.

    Args:
        prefix: Product prefix prepended to every id.
        custom: Caller-supplied id, sanitized to ASCII alphanumerics.

    Returns:
        prefix + 16 random alphanumerics, or prefix + sanitized custom id.

    Raises:
        InvalidSessionId: If custom is given but nothing survives sanitizing.
    """
    if custom is not None:
        sanitized = "".join(ch for ch in custom if ch in SESSION_ID_ALPHABET)
        if not sanitized:
            raise InvalidSessionId("Session id must contain letters or digits")
        return validate_session_id(f"{prefix}{sanitized}")

    random_part = "".join(secrets.choice(SESSION_ID_ALPHABET) for _ in range(SESSION_ID_LENGTH))
    return f"{prefix}{random_part}"


def validate_session_id(session_id: str | None) -> str:
    """Check that a full session id is safe to use as a directory name.

    Raises:
        InvalidSessionId: If the id is empty or has unsafe characters.
    """
    if not session_id or not SESSION_ID_PATTERN.fullmatch(session_id):
        raise InvalidSessionId(f"Invalid session id: {session_id!r}")
    return session_id


def format_pairing_code(code: str) -> str:
    """Group a pairing code in blocks of four: "ABCDEFGH" -> "ABCD-EFGH"."""
    compact = code.replace("-", "").strip()
    groups = [
        compact[i : i + PAIRING_CODE_GROUP] for i in range(0, len(compact), PAIRING_CODE_GROUP)
    ]
    return "-".join(groups) or code
