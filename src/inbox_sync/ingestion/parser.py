"""Utilities for parsing raw RFC822 messages into structured models."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime

from ..core.datetime_utils import ensure_utc, utc_now
from ..core.errors import ParseError
from ..core.models import SEEN_FLAG, AttachmentMeta, ParsedMessage, RawMessage

NO_SUBJECT = "No Subject"
UNKNOWN_SENDER = "unknown"


class MessageParser:
    """Convert raw message bytes into :class:`ParsedMessage` instances."""

    def __init__(self) -> None:
        """Prepare internal parser instance."""
        self._parser = BytesParser(policy=policy.default)

    def parse(self, raw: RawMessage) -> ParsedMessage:
        """Parse ``raw`` or raise :class:`ParseError`."""
        if not isinstance(raw.source, (bytes, bytearray)) or not raw.source.strip():
            raise ParseError(f"Empty message source for sequence {raw.sequence_number}")
        try:
            message = self._parser.parsebytes(bytes(raw.source))
            return self._map(message, raw)
        except ParseError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            # Malformed headers surface as arbitrary errors from the header registry.
            raise ParseError(
                f"Unable to parse message {raw.sequence_number}: {exc}"
            ) from exc

    def _map(self, message: EmailMessage, raw: RawMessage) -> ParsedMessage:
        if not message.keys():
            raise ParseError(f"Message {raw.sequence_number} has no headers")

        sender_name, sender_email = _first_address(message.get("From"))
        _, recipient_email = _first_address(message.get("To"))
        body_text, body_html = _extract_bodies(message)

        return ParsedMessage(
            message_id=_header_text(message.get("Message-ID")),
            subject=_header_text(message.get("Subject")) or NO_SUBJECT,
            sender_email=sender_email or UNKNOWN_SENDER,
            sender_name=sender_name,
            recipient_email=recipient_email,
            sent_at=_try_parse_datetime(message.get("Date")) or utc_now(),
            text_body=body_text,
            html_body=body_html,
            attachments=tuple(_collect_attachments(message)),
            is_read=SEEN_FLAG in raw.flags,
            references=_reference_chain(message),
            uid=raw.uid,
        )


def _header_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _first_address(header_value: object) -> tuple[str | None, str | None]:
    """Return ``(name, address)`` for the first address, falling back to raw text."""
    text = _header_text(header_value)
    if text is None:
        return None, None
    for name, address in getaddresses([text]):
        if address:
            return name or None, address
    # Unstructured header: keep whatever the sender wrote.
    return None, text


def _reference_chain(message: EmailMessage) -> tuple[str, ...]:
    chain: list[str] = []
    for header in ("References", "In-Reply-To"):
        text = _header_text(message.get(header))
        if not text:
            continue
        for token in text.split():
            if token not in chain:
                chain.append(token)
    return tuple(chain)


def _collapse_chunks(chunks: Iterable[str], separator: str) -> str | None:
    filtered_chunks = [chunk for chunk in chunks if chunk]
    if not filtered_chunks:
        return None
    return separator.join(filtered_chunks)


def _extract_bodies(message: EmailMessage) -> tuple[str | None, str | None]:
    plain_chunks: list[str] = []
    html_chunks: list[str] = []

    for part in message.walk():
        if part.is_multipart():
            continue
        if part.get_content_disposition() == "attachment":
            continue
        content_type = part.get_content_type()
        if content_type not in ("text/plain", "text/html"):
            continue
        try:
            content_obj = part.get_content()
        except (LookupError, UnicodeDecodeError):
            # Unknown charset: decode leniently instead of dropping the part.
            payload = part.get_payload(decode=True) or b""
            content_obj = payload.decode("utf-8", errors="replace")
        if not isinstance(content_obj, str):
            continue
        content = content_obj.strip()
        if content_type == "text/plain":
            plain_chunks.append(content)
        else:
            html_chunks.append(content)

    text = _collapse_chunks(plain_chunks, "\n\n")
    html = _collapse_chunks(html_chunks, "\n")
    return text, html


def _collect_attachments(message: EmailMessage) -> Iterable[AttachmentMeta]:
    if not message.is_multipart():
        return
    for part in message.iter_attachments():
        payload = part.get_payload(decode=True) or b""
        yield AttachmentMeta(
            filename=part.get_filename(),
            content_type=part.get_content_type(),
            size=len(payload) if payload else None,
        )


def _try_parse_datetime(header_value: object) -> datetime | None:
    text = _header_text(header_value)
    if text is None:
        return None
    try:
        return ensure_utc(parsedate_to_datetime(text))
    except (TypeError, ValueError, IndexError):
        return None


__all__ = ["MessageParser", "NO_SUBJECT"]
