"""Base exceptions for linkvault.

Every error carries a machine-readable ``code`` and the HTTP ``status`` used
when it is surfaced to the client that started the pairing request.
"""


class LinkVaultError(Exception):
    """Base exception for all linkvault errors."""

    code = "INTERNAL_ERROR"
    status = 500


# Invalid input: rejected before any resource is allocated


class InvalidInput(LinkVaultError):
    """Request input failed validation."""

    code = "INVALID_INPUT"
    status = 400


class InvalidPhoneNumber(InvalidInput):
    """Phone number is not 10-15 digits."""

    code = "INVALID_PHONE"


class InvalidSessionId(InvalidInput):
    """Session id is empty after sanitizing."""

    code = "INVALID_SESSION_ID"


class InvalidLocator(InvalidInput):
    """Locator string cannot be parsed."""

    code = "INVALID_LOCATOR"


class SessionBusy(InvalidInput):
    """A workflow for this session id is still running."""

    code = "SESSION_BUSY"
    status = 409


# Transient I/O: eligible for bounded retry


class TransientIO(LinkVaultError):
    """Network or disk error that may succeed on retry."""

    code = "TRANSIENT_IO"
    status = 503


class NetworkError(TransientIO):
    """Remote store unreachable or temporarily failing."""

    code = "NETWORK_ERROR"


class StorageError(TransientIO):
    """Local credential storage operation failed."""

    code = "STORAGE_ERROR"


# Protocol failures: unexpected data, never retried


class ProtocolFailure(LinkVaultError):
    """Unexpected data from the protocol layer or the archive."""

    code = "PROTOCOL_FAILURE"
    status = 503


class ProtocolError(ProtocolFailure):
    """Archive returned a response of unexpected shape."""

    code = "PROTOCOL_ERROR"


class NoCredentialsProduced(ProtocolFailure):
    """Connection opened but no complete credential snapshot appeared."""

    code = "NO_CREDENTIALS"


class ArchiveUploadFailed(ProtocolFailure):
    """Credential upload failed after all attempts."""

    code = "ARCHIVE_UPLOAD_FAILED"


class ConnectionFailed(ProtocolFailure):
    """Protocol connection could not be established."""

    code = "CONNECTION_FAILED"


class PairingCodeFailed(ProtocolFailure):
    """Protocol layer refused to produce a pairing code."""

    code = "PAIRING_CODE_FAILED"


class WorkflowTimeout(ProtocolFailure):
    """A bounded wait inside the workflow expired."""

    code = "TIMEOUT"
    status = 504


# Terminal auth: never retried, always cleaned up


class TerminalAuth(LinkVaultError):
    """Credentials were rejected or the account logged out."""

    code = "TERMINAL_AUTH"
    status = 401


class AuthError(TerminalAuth):
    """Remote store rejected our credentials."""

    code = "ARCHIVE_AUTH_ERROR"
    status = 503


class LoggedOut(TerminalAuth):
    """Protocol layer reported the linked device as logged out."""

    code = "LOGGED_OUT"


class WorkflowCancelled(LinkVaultError):
    """Workflow was aborted by a supervisor."""

    code = "CANCELLED"
    status = 499


# Credential snapshot reads


class CredentialsNotFound(LinkVaultError):
    """No credential file exists for the session."""

    code = "SESSION_NOT_FOUND"
    status = 404


class CredentialsIncomplete(LinkVaultError):
    """Credential file exists but is below the minimum viable size."""

    code = "CREDENTIALS_INCOMPLETE"
    status = 409
