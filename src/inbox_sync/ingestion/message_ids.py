"""Message identifier normalisation and thread resolution."""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable

from ..core.models import ParsedMessage

MAX_MESSAGE_ID_LENGTH = 200
GENERATED_PREFIX = "gen"

Clock = Callable[[], float]
TokenFactory = Callable[[], str]


def _default_token() -> str:
    return secrets.token_hex(8)


def strip_brackets(value: str | None) -> str:
    """Trim whitespace and one pair of enclosing angle brackets."""
    text = (value or "").strip()
    if text.startswith("<") and text.endswith(">"):
        text = text[1:-1].strip()
    return text


def generate_message_id(
    clock: Clock = time.time, token_factory: TokenFactory = _default_token
) -> str:
    """Return a surrogate identifier from a timestamp and a random suffix."""
    token = "".join(char for char in token_factory() if char.isalnum())[:32]
    return f"{GENERATED_PREFIX}-{int(clock() * 1000)}-{token or _default_token()}"


def sanitize_message_id(
    raw: str | None,
    *,
    clock: Clock = time.time,
    token_factory: TokenFactory = _default_token,
) -> str:
    """Return a non-empty identifier of at most 200 characters.

    Values that are empty, contain ``@`` or are too long are replaced by a
    generated identifier.
    """
    candidate = strip_brackets(raw)
    if candidate and "@" not in candidate and len(candidate) <= MAX_MESSAGE_ID_LENGTH:
        return candidate
    return generate_message_id(clock, token_factory)


def source_key(parsed: ParsedMessage, folder: str) -> str | None:
    """Return a provider-stable identity for dedup across invocations.

    Surrogate identifiers change on every run, so the header value (or the
    folder UID when the header is missing) is kept alongside them.
    """
    header = strip_brackets(parsed.message_id)
    if header:
        return header[:512]
    if parsed.uid is not None:
        return f"uid:{folder}:{parsed.uid}"
    return None


def resolve_thread_id(parsed: ParsedMessage, message_id: str) -> str:
    """Return the root of the reference chain, or ``message_id`` for new threads."""
    for reference in parsed.references:
        root = strip_brackets(reference)
        if root:
            return root[:512]
    return message_id


__all__ = [
    "MAX_MESSAGE_ID_LENGTH",
    "generate_message_id",
    "resolve_thread_id",
    "sanitize_message_id",
    "source_key",
    "strip_brackets",
]
