"""Credential protection and caller authorisation."""

from .credentials import decrypt_password, encrypt_password
from .sessions import (
    CallerAuthorizer,
    CallerCredentials,
    internal_caller,
    issue_session_token,
    verify_session_token,
)

__all__ = [
    "CallerAuthorizer",
    "CallerCredentials",
    "decrypt_password",
    "encrypt_password",
    "internal_caller",
    "issue_session_token",
    "verify_session_token",
]
