"""Tests for the command-line entry point."""

from __future__ import annotations

from pathlib import Path

import pytest

from inbox_sync.cli import build_parser, execute
from inbox_sync.core.config import AppSettings, SecuritySettings, StorageSettings
from inbox_sync.security import decrypt_password, verify_session_token
from inbox_sync.storage import SqliteMailStore

KEY = "3c" * 32


def _settings(tmp_path: Path) -> AppSettings:
    return AppSettings(
        security=SecuritySettings(password_encryption_key=KEY, session_secret="s"),
        storage=StorageSettings(db_path=tmp_path / "cli.db"),
    )


def test_info_prints_configuration(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    args = build_parser().parse_args([])

    assert execute(args, _settings(tmp_path)) == 0
    assert "cli.db" in capsys.readouterr().out


def test_encrypt_password_prints_stored_form(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    args = build_parser().parse_args(["encrypt-password", "--password", "hunter2"])

    assert execute(args, _settings(tmp_path)) == 0
    stored = capsys.readouterr().out.strip()
    assert decrypt_password(stored, KEY) == "hunter2"


def test_issue_session_requires_user(tmp_path: Path) -> None:
    args = build_parser().parse_args(["issue-session"])

    assert execute(args, _settings(tmp_path)) == 1


def test_issue_session_prints_token(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    settings = _settings(tmp_path)
    args = build_parser().parse_args(["issue-session", "--user-id", "user-1"])

    assert execute(args, settings) == 0
    token = capsys.readouterr().out.strip()
    assert verify_session_token(token, settings.security) == "user-1"


def test_sync_without_internal_secret_is_unauthorised(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    args = build_parser().parse_args(
        ["sync", "--account-id", "acc-1", "--user-id", "user-1"]
    )

    assert execute(args, _settings(tmp_path)) == 1
    assert "401" in capsys.readouterr().out


def test_process_analysis_requires_endpoint(tmp_path: Path) -> None:
    args = build_parser().parse_args(["process-analysis"])

    assert execute(args, _settings(tmp_path)) == 1


def test_add_account_stores_encrypted_password(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    settings = _settings(tmp_path)
    args = build_parser().parse_args(
        [
            "add-account",
            "--account-id",
            "acc-9",
            "--user-id",
            "user-1",
            "--email",
            "me@example.com",
            "--imap-host",
            "imap.example.com",
            "--password",
            "hunter2",
        ]
    )

    assert execute(args, settings) == 0
    assert "acc-9" in capsys.readouterr().out
    with SqliteMailStore(settings.storage) as store:
        account = store.get_account("acc-9", "user-1")
    assert account is not None
    assert account.imap_port == 993
    assert account.imap_security == "SSL/TLS"
    assert decrypt_password(account.password_encrypted, KEY) == "hunter2"


def test_add_account_requires_connection_details(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    args = build_parser().parse_args(["add-account", "--user-id", "user-1"])

    assert execute(args, _settings(tmp_path)) == 1
    assert "--email, --imap-host" in capsys.readouterr().out


def test_info_reports_store_counts(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    settings = _settings(tmp_path)
    add = build_parser().parse_args(
        [
            "add-account",
            "--user-id",
            "user-1",
            "--email",
            "me@example.com",
            "--imap-host",
            "imap.example.com",
            "--password",
            "pw",
        ]
    )
    assert execute(add, settings) == 0
    capsys.readouterr()

    assert execute(build_parser().parse_args(["info"]), settings) == 0
    out = capsys.readouterr().out
    assert "Active accounts: 1" in out
    assert "Indexed emails: 0" in out


def test_sync_all_without_accounts_succeeds(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    args = build_parser().parse_args(["sync", "--all"])

    assert execute(args, _settings(tmp_path)) == 0
    assert "No active accounts" in capsys.readouterr().out
