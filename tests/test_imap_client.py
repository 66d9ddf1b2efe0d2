"""Tests for the IMAP transport adapter."""

# pylint: disable=protected-access

from __future__ import annotations

import imaplib
import ssl
from unittest.mock import MagicMock

import pytest

from inbox_sync.core.config import SyncSettings
from inbox_sync.core.errors import (
    AuthenticationError,
    ConnectTimeoutError,
    FolderNotFoundError,
    TLSError,
    TransportError,
)
from inbox_sync.core.models import MailboxAccount
from inbox_sync.transport import ImapMailTransport


def _transport() -> ImapMailTransport:
    return ImapMailTransport("imap.test", 993, "user@test", "password")


def _fetch_handler(calls: list[str], failing: set[str] | None = None):
    def fetch(message_set, query):
        calls.append(message_set)
        assert query == "(UID FLAGS BODY.PEEK[])"
        if failing and message_set in failing:
            return "NO", [None]
        uid = 100 + int(message_set)
        header = f"{message_set} (UID {uid} FLAGS (\\Seen) BODY[] {{8}}"
        return "OK", [(header.encode(), f"raw-{message_set}".encode()), b")"]

    return fetch


def test_fetch_recent_returns_newest_first_bounded_by_limit() -> None:
    transport = _transport()
    mock_connection = MagicMock()
    mock_connection.select.return_value = ("OK", [b"7"])
    calls: list[str] = []
    mock_connection.fetch.side_effect = _fetch_handler(calls)
    transport._connection = mock_connection  # type: ignore[attr-defined]

    info = transport.open_folder("INBOX")
    messages = list(transport.fetch_recent(3))

    assert info.exists == 7
    mock_connection.select.assert_called_once_with("INBOX", readonly=True)
    assert calls == ["7", "6", "5"]
    assert [message.sequence_number for message in messages] == [7, 6, 5]
    assert messages[0].uid == 107
    assert messages[0].source == b"raw-7"
    assert "\\Seen" in messages[0].flags


def test_fetch_recent_with_fewer_messages_than_limit() -> None:
    transport = _transport()
    mock_connection = MagicMock()
    mock_connection.select.return_value = ("OK", [b"2"])
    calls: list[str] = []
    mock_connection.fetch.side_effect = _fetch_handler(calls)
    transport._connection = mock_connection  # type: ignore[attr-defined]

    transport.open_folder("INBOX")
    messages = list(transport.fetch_recent(50))

    assert calls == ["2", "1"]
    assert len(messages) == 2


def test_empty_folder_issues_no_fetches() -> None:
    transport = _transport()
    mock_connection = MagicMock()
    mock_connection.select.return_value = ("OK", [b"0"])
    transport._connection = mock_connection  # type: ignore[attr-defined]

    transport.open_folder("INBOX")

    assert not list(transport.fetch_recent(10))
    mock_connection.fetch.assert_not_called()


def test_failed_fetch_is_skipped_without_retry() -> None:
    transport = _transport()
    mock_connection = MagicMock()
    mock_connection.select.return_value = ("OK", [b"3"])
    calls: list[str] = []
    mock_connection.fetch.side_effect = _fetch_handler(calls, failing={"2"})
    transport._connection = mock_connection  # type: ignore[attr-defined]

    transport.open_folder("INBOX")
    messages = list(transport.fetch_recent(3))

    assert calls == ["3", "2", "1"]
    assert [message.sequence_number for message in messages] == [3, 1]


def test_missing_folder_raises_folder_not_found() -> None:
    transport = _transport()
    mock_connection = MagicMock()
    mock_connection.select.return_value = ("NO", [b"Mailbox does not exist"])
    transport._connection = mock_connection  # type: ignore[attr-defined]

    with pytest.raises(FolderNotFoundError) as excinfo:
        transport.open_folder("Sent Items")

    assert "Sent Items" in str(excinfo.value)
    mock_connection.select.assert_called_once_with('"Sent Items"', readonly=True)


def test_connect_switches_socket_to_blocking(monkeypatch: pytest.MonkeyPatch) -> None:
    mock_connection = MagicMock()
    constructor = MagicMock(return_value=mock_connection)
    monkeypatch.setattr(imaplib, "IMAP4_SSL", constructor)

    transport = ImapMailTransport(
        "imap.test", 993, "user@test", "password", connect_timeout=12.5
    )
    transport.connect()

    assert constructor.call_args.kwargs["timeout"] == 12.5
    mock_connection.login.assert_called_once_with("user@test", "password")
    mock_connection.sock.settimeout.assert_called_once_with(None)


def test_rejected_login_raises_authentication_error(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    mock_connection = MagicMock()
    mock_connection.state = "NONAUTH"
    mock_connection.login.side_effect = imaplib.IMAP4.error(
        "[AUTHENTICATIONFAILED] Invalid credentials"
    )
    monkeypatch.setattr(imaplib, "IMAP4_SSL", MagicMock(return_value=mock_connection))

    transport = _transport()
    with pytest.raises(AuthenticationError):
        transport.connect()

    mock_connection.shutdown.assert_called_once()


def test_greeting_failure_is_not_reported_as_authentication(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(
        imaplib, "IMAP4_SSL", MagicMock(side_effect=imaplib.IMAP4.error("bad greeting"))
    )

    with pytest.raises(TransportError) as excinfo:
        _transport().connect()

    assert not isinstance(excinfo.value, AuthenticationError)


def test_error_after_login_state_is_not_authentication(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    mock_connection = MagicMock()
    mock_connection.state = "LOGOUT"
    mock_connection.login.side_effect = imaplib.IMAP4.error("connection closed")
    monkeypatch.setattr(imaplib, "IMAP4_SSL", MagicMock(return_value=mock_connection))

    with pytest.raises(TransportError) as excinfo:
        _transport().connect()

    assert not isinstance(excinfo.value, AuthenticationError)


@pytest.mark.parametrize(
    ("failure", "expected"),
    [
        (TimeoutError("timed out"), ConnectTimeoutError),
        (ssl.SSLError("certificate verify failed"), TLSError),
        (ConnectionRefusedError("refused"), TransportError),
    ],
)
def test_connect_failures_are_classified(
    monkeypatch: pytest.MonkeyPatch,
    failure: Exception,
    expected: type[TransportError],
) -> None:
    monkeypatch.setattr(imaplib, "IMAP4_SSL", MagicMock(side_effect=failure))

    with pytest.raises(expected):
        _transport().connect()


def test_starttls_upgrades_plain_connection(monkeypatch: pytest.MonkeyPatch) -> None:
    mock_connection = MagicMock()
    monkeypatch.setattr(imaplib, "IMAP4", MagicMock(return_value=mock_connection))

    transport = ImapMailTransport(
        "imap.test", 143, "user@test", "password", security="STARTTLS"
    )
    transport.connect()

    mock_connection.starttls.assert_called_once()


def test_context_manager_logs_out_on_error(monkeypatch: pytest.MonkeyPatch) -> None:
    mock_connection = MagicMock()
    monkeypatch.setattr(imaplib, "IMAP4_SSL", MagicMock(return_value=mock_connection))

    with pytest.raises(RuntimeError):
        with _transport():
            raise RuntimeError("boom")

    mock_connection.logout.assert_called_once()


def test_logout_is_idempotent() -> None:
    transport = _transport()
    mock_connection = MagicMock()
    transport._connection = mock_connection  # type: ignore[attr-defined]

    transport.logout()
    transport.logout()

    mock_connection.logout.assert_called_once()


def test_for_account_uses_login_and_settings() -> None:
    account = MailboxAccount(
        id="acc-1",
        user_id="user-1",
        email="me@example.com",
        imap_host="imap.example.com",
        imap_port=993,
        imap_security="SSL/TLS",
        username=None,
        password_encrypted="",
    )
    settings = SyncSettings(connect_timeout_seconds=5, allow_invalid_certificates=False)

    transport = ImapMailTransport.for_account(account, "pw", settings)

    assert transport._username == "me@example.com"
    assert transport._connect_timeout == 5
    assert transport._allow_invalid_certificates is False
