"""Classified error taxonomy shared by the sync pipeline."""

from __future__ import annotations

from http import HTTPStatus


class SyncError(RuntimeError):
    """Base class for failures reported back to the sync caller."""

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR
    default_message = "Failed to sync emails"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def public_message(self) -> str:
        """Message safe to return to the caller."""
        return str(self)


class InvalidRequestError(SyncError):
    """Raised when the trigger payload is missing required fields."""

    status_code = HTTPStatus.BAD_REQUEST
    default_message = "Invalid sync request"


class UnauthorizedError(SyncError):
    """Raised when neither a session nor an internal caller is recognised."""

    status_code = HTTPStatus.UNAUTHORIZED
    default_message = "Unauthorized"


class NotFoundError(SyncError):
    """Raised when the mailbox account is missing, inactive or not IMAP."""

    status_code = HTTPStatus.NOT_FOUND
    default_message = "IMAP email account not found or access denied"


class ConfigurationError(SyncError):
    """Raised when a required secret is absent from the environment."""

    default_message = "Server configuration error"


class CredentialError(SyncError):
    """Raised when stored credentials cannot be decrypted."""

    default_message = "Failed to decrypt stored credentials"


class FormatError(CredentialError):
    """Raised when a ciphertext is malformed or fails authentication."""

    default_message = "Invalid encrypted value format"


class TransportError(SyncError):
    """Raised for failures talking to the mail server."""

    default_message = "Mail server error"


class AuthenticationError(TransportError):
    """Raised when the mail server rejects the login."""

    default_message = "Authentication failed"


class TLSError(TransportError):
    """Raised for certificate or TLS negotiation problems."""

    default_message = "TLS negotiation failed"


class ConnectTimeoutError(TransportError):
    """Raised when the mail server does not answer within the connect timeout."""

    default_message = "Connection to the mail server timed out"


class FolderNotFoundError(TransportError):
    """Raised when a folder cannot be selected on the server."""

    def __init__(self, folder: str) -> None:
        super().__init__(f"Folder '{folder}' not found on the mail server")
        self.folder = folder


class SyncFailedError(SyncError):
    """Raised for failures without a dedicated classification."""


class ParseError(ValueError):
    """Raised when a raw message cannot be parsed. Never reaches the caller."""


class PersistenceError(RuntimeError):
    """Raised when a storage write or read fails. Absorbed per batch."""


CERTIFICATE_MESSAGE = (
    "SSL certificate issue. The mail server may be using a self-signed "
    "certificate; enable invalid certificate support for this account."
)
AUTHENTICATION_MESSAGE = (
    "Authentication failed. Please check your username and password."
)
TIMEOUT_MESSAGE = "Connection to the mail server timed out. Please try again later."


def classify_transport_error(exc: BaseException) -> str:
    """Map a failure onto the small user-facing vocabulary.

    Falls back to the underlying message when nothing matches.
    """
    if isinstance(exc, TLSError):
        return CERTIFICATE_MESSAGE
    if isinstance(exc, AuthenticationError):
        return AUTHENTICATION_MESSAGE
    if isinstance(exc, ConnectTimeoutError):
        return TIMEOUT_MESSAGE

    text = str(exc)
    lowered = text.lower()
    if "certificate" in lowered or "self signed" in lowered:
        return CERTIFICATE_MESSAGE
    if "authenticat" in lowered or "invalid credentials" in lowered:
        return AUTHENTICATION_MESSAGE
    if "timed out" in lowered or "timeout" in lowered:
        return TIMEOUT_MESSAGE
    return text or TransportError.default_message


__all__ = [
    "AUTHENTICATION_MESSAGE",
    "AuthenticationError",
    "CERTIFICATE_MESSAGE",
    "ConfigurationError",
    "ConnectTimeoutError",
    "CredentialError",
    "FolderNotFoundError",
    "FormatError",
    "InvalidRequestError",
    "NotFoundError",
    "ParseError",
    "PersistenceError",
    "SyncError",
    "SyncFailedError",
    "TIMEOUT_MESSAGE",
    "TLSError",
    "TransportError",
    "UnauthorizedError",
    "classify_transport_error",
]
