"""Tests for RFC822 parsing into structured messages."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from inbox_sync.core.errors import ParseError
from inbox_sync.core.models import RawMessage
from inbox_sync.ingestion import MessageParser

FIXTURE_PATH = Path(__file__).parent / "fixtures" / "sample_email.eml"


def test_message_parser_extracts_headers_and_bodies() -> None:
    raw = RawMessage(
        sequence_number=4,
        uid=101,
        source=FIXTURE_PATH.read_bytes(),
        flags=("\\Seen",),
    )

    parsed = MessageParser().parse(raw)

    assert parsed.uid == 101
    assert parsed.message_id == "<1234@example.com>"
    assert parsed.subject == "Quarterly report"
    assert parsed.sender_email == "sender@example.com"
    assert parsed.sender_name == "Sender Name"
    assert parsed.recipient_email == "user@example.com"
    assert parsed.sent_at == datetime(2025, 10, 14, 7, 30, tzinfo=UTC)
    assert parsed.text_body == "Hello world."
    assert "<strong>world</strong>" in (parsed.html_body or "")
    assert parsed.is_read is True
    assert parsed.references == (
        "<root@example.com>",
        "<parent@example.com>",
    )
    assert parsed.has_attachments
    attachment = parsed.attachments[0]
    assert attachment.filename == "note.txt"
    assert attachment.content_type == "application/octet-stream"
    assert attachment.size == 19


def test_missing_headers_fall_back_to_defaults() -> None:
    raw = RawMessage(
        sequence_number=1,
        uid=None,
        source=b"X-Mailer: test\r\n\r\nJust a body\r\n",
    )
    before = datetime.now(tz=UTC) - timedelta(seconds=1)

    parsed = MessageParser().parse(raw)

    assert parsed.message_id is None
    assert parsed.subject == "No Subject"
    assert parsed.sender_email == "unknown"
    assert parsed.recipient_email is None
    assert parsed.sent_at >= before
    assert parsed.text_body == "Just a body"
    assert parsed.is_read is False
    assert not parsed.has_attachments


def test_unparseable_date_defaults_to_now() -> None:
    raw = RawMessage(
        sequence_number=1,
        uid=None,
        source=b"From: a@example.com\r\nDate: not a date\r\n\r\nbody\r\n",
    )
    before = datetime.now(tz=UTC) - timedelta(seconds=1)

    parsed = MessageParser().parse(raw)

    assert parsed.sent_at >= before


@pytest.mark.parametrize("source", [b"", b"   \r\n", b"\r\n\r\nno headers here\r\n"])
def test_unusable_source_raises_parse_error(source: bytes) -> None:
    with pytest.raises(ParseError):
        MessageParser().parse(RawMessage(sequence_number=9, uid=None, source=source))


def test_malformed_address_header_raises_parse_error() -> None:
    source = b"From: a@b.example\r\nTo: a@[\r\nSubject: bad\r\n\r\nbody"

    with pytest.raises(ParseError):
        MessageParser().parse(RawMessage(sequence_number=4, uid=None, source=source))
