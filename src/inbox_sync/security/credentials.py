"""AES-256-GCM helpers for stored mailbox passwords.

Stored values use the ``iv:authTag:ciphertext`` layout with each part hex
encoded. The key is supplied as hex and truncated to 32 bytes.

WARNING: never log decrypted passwords.
"""

from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..core.errors import ConfigurationError, FormatError

KEY_LENGTH = 32
IV_LENGTH = 12
TAG_LENGTH = 16


def _load_key(key_hex: str | None) -> bytes:
    if not key_hex:
        raise ConfigurationError("Password encryption key is not configured")
    try:
        key = bytes.fromhex(key_hex.strip())[:KEY_LENGTH]
    except ValueError as exc:
        raise ConfigurationError("Password encryption key must be hex encoded") from exc
    if len(key) < KEY_LENGTH:
        raise ConfigurationError(
            f"Password encryption key must provide {KEY_LENGTH} bytes"
        )
    return key


def decrypt_password(encrypted_value: str, key_hex: str | None) -> str:
    """Decrypt ``encrypted_value`` and return the UTF-8 plaintext.

    Raises:
        ConfigurationError: the key is missing or unusable.
        FormatError: the value is malformed or fails tag verification.
    """
    key = _load_key(key_hex)

    parts = (encrypted_value or "").split(":")
    if len(parts) != 3 or not all(parts):
        raise FormatError("Invalid encrypted value format")
    iv_hex, tag_hex, ciphertext_hex = parts

    try:
        iv = bytes.fromhex(iv_hex)
        tag = bytes.fromhex(tag_hex)
        ciphertext = bytes.fromhex(ciphertext_hex)
    except ValueError as exc:
        raise FormatError("Encrypted value is not valid hex") from exc
    if len(tag) != TAG_LENGTH:
        raise FormatError("Encrypted value has an invalid authentication tag")

    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except (InvalidTag, ValueError) as exc:
        raise FormatError("Encrypted value failed authentication") from exc

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FormatError("Decrypted value is not valid UTF-8") from exc


def encrypt_password(
    plaintext: str, key_hex: str | None, *, iv: bytes | None = None
) -> str:
    """Encrypt ``plaintext`` into the stored ``iv:authTag:ciphertext`` layout."""
    if not plaintext:
        raise ValueError("Cannot encrypt empty password")
    key = _load_key(key_hex)
    nonce = iv if iv is not None else os.urandom(IV_LENGTH)
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"


__all__ = ["decrypt_password", "encrypt_password"]
