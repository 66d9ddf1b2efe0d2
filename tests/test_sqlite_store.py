"""Tests for the SQLite-backed mail store."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from pathlib import Path

import pytest

from inbox_sync.core.config import StorageSettings
from inbox_sync.core.errors import PersistenceError
from inbox_sync.core.models import (
    AnalysisContext,
    EmailType,
    MailboxAccount,
    MessageContentRecord,
    MessageIndexRecord,
    ThreadPlaceholder,
)
from inbox_sync.storage import SqliteMailStore

TIMESTAMP = datetime(2025, 10, 24, 15, 0, tzinfo=UTC)


def _account(account_id: str = "acc-1", user_id: str = "user-1") -> MailboxAccount:
    return MailboxAccount(
        id=account_id,
        user_id=user_id,
        organization_id="org-1",
        email="me@example.com",
        imap_host="imap.example.com",
        imap_port=993,
        imap_security="SSL/TLS",
        username="me",
        password_encrypted="aa:bb:cc",
    )


def _index(message_id: str, source_key: str | None = None) -> MessageIndexRecord:
    return MessageIndexRecord(
        message_id=message_id,
        email_account_id="acc-1",
        user_id="user-1",
        thread_id="thread-1",
        email_type=EmailType.RECEIVED,
        folder_name="INBOX",
        subject="Demo",
        sender_email="sender@example.com",
        received_at=TIMESTAMP,
        source_key=source_key,
        preview_text="Demo",
    )


def _store(tmp_path: Path) -> SqliteMailStore:
    store = SqliteMailStore(StorageSettings(db_path=tmp_path / "inbox.db"))
    store.create_account(_account())
    store.ensure_threads(
        [ThreadPlaceholder("thread-1", "acc-1", "user-1", subject="Demo")]
    )
    return store


def test_account_round_trip_is_scoped_to_owner(tmp_path: Path) -> None:
    with _store(tmp_path) as store:
        account = store.get_account("acc-1", "user-1")
        assert account is not None
        assert account.login == "me"
        assert account.organization_id == "org-1"
        assert account.is_active is True
        assert store.get_account("acc-1", "someone-else") is None


def test_sync_metadata_and_errors_are_recorded(tmp_path: Path) -> None:
    with _store(tmp_path) as store:
        store.record_sync_error("acc-1", "Authentication failed")
        failed = store.get_account("acc-1", "user-1")
        assert failed is not None and failed.sync_error == "Authentication failed"

        store.update_sync_metadata("acc-1", TIMESTAMP, None)
        account = store.get_account("acc-1", "user-1")
        assert account is not None
        assert account.last_sync_at == TIMESTAMP
        assert account.sync_error is None


def test_index_insert_ignores_existing_pairs(tmp_path: Path) -> None:
    with _store(tmp_path) as store:
        first = store.insert_index_records([_index("m1"), _index("m2")])
        second = store.insert_index_records([_index("m2"), _index("m3")])

        assert set(first) == {"m1", "m2"}
        assert set(second) == {"m3"}
        assert store.count_index_records("acc-1") == 3


def test_message_exists_matches_id_or_source_key(tmp_path: Path) -> None:
    with _store(tmp_path) as store:
        store.insert_index_records([_index("gen-1-aa", source_key="1@example.com")])

        assert store.message_exists("gen-1-aa", "acc-1")
        assert store.message_exists("gen-2-bb", "acc-1", "1@example.com")
        assert not store.message_exists("gen-2-bb", "acc-1", "2@example.com")
        assert not store.message_exists("gen-1-aa", "acc-2")


def test_ensure_threads_is_insert_if_absent(tmp_path: Path) -> None:
    with _store(tmp_path) as store:
        created = store.ensure_threads(
            [
                ThreadPlaceholder("thread-1", "acc-1", "user-1"),
                ThreadPlaceholder("thread-2", "acc-1", "user-1"),
            ]
        )

        assert created == 1


def test_content_records_are_linked_to_index(tmp_path: Path) -> None:
    db_path = tmp_path / "inbox.db"
    with _store(tmp_path) as store:
        store.insert_index_records([_index("m1")])
        written = store.insert_content_records(
            [MessageContentRecord("m1", "acc-1", "Hello", "<p>Hello</p>")]
        )
        assert written == 1

        with pytest.raises(PersistenceError):
            store.insert_content_records(
                [MessageContentRecord("missing", "acc-1", "x", None)]
            )

    with sqlite3.connect(db_path) as connection:
        row = connection.execute(
            "SELECT plain_content, html_content FROM email_content_cache"
        ).fetchone()
    assert row == ("Hello", "<p>Hello</p>")


def test_index_insert_without_thread_raises(tmp_path: Path) -> None:
    with _store(tmp_path) as store:
        record = _index("m1")
        record.thread_id = "unknown-thread"

        with pytest.raises(PersistenceError):
            store.insert_index_records([record])
        assert store.count_index_records() == 0


def test_analysis_jobs_claim_complete_and_fail(tmp_path: Path) -> None:
    db_path = tmp_path / "inbox.db"
    with _store(tmp_path) as store:
        ids = store.insert_index_records([_index("m1"), _index("m2"), _index("m3")])
        accepted = store.publish_analysis(
            [
                AnalysisContext(email_id=ids["m1"], user_id="user-1"),
                AnalysisContext(email_id=ids["m2"], user_id="user-1", priority="high"),
                AnalysisContext(email_id=ids["m3"], user_id="user-1"),
            ]
        )
        assert accepted == 3

        jobs = store.claim_analysis_jobs(2)
        assert [job.context.email_id for job in jobs] == [ids["m2"], ids["m1"]]
        assert store.claim_analysis_jobs(5)[0].context.email_id == ids["m3"]
        assert store.claim_analysis_jobs(5) == []

        store.complete_analysis_job(jobs[0])
        store.fail_analysis_job(jobs[1], "timeout", final=False)
        retried = store.claim_analysis_jobs(5)
        assert [job.context.email_id for job in retried] == [ids["m1"]]
        assert retried[0].attempts == 1
        store.fail_analysis_job(retried[0], "timeout", final=True)

    with sqlite3.connect(db_path) as connection:
        statuses = dict(
            connection.execute(
                "SELECT message_id, processing_status FROM email_index"
            ).fetchall()
        )
    assert statuses == {"m1": "failed", "m2": "completed", "m3": "pending"}


def test_content_records_are_counted_per_account(tmp_path: Path) -> None:
    with _store(tmp_path) as store:
        store.insert_index_records([_index("m1"), _index("m2")])
        store.insert_content_records(
            [
                MessageContentRecord("m1", "acc-1", "One", None),
                MessageContentRecord("m2", "acc-1", "Two", None),
            ]
        )

        assert store.count_content_records() == 2
        assert store.count_content_records("acc-1") == 2
        assert store.count_content_records("acc-2") == 0


def test_list_active_accounts_skips_inactive(tmp_path: Path) -> None:
    with _store(tmp_path) as store:
        store.create_account(_account("acc-2", "user-2"))
        inactive = _account("acc-3", "user-3")
        inactive.is_active = False
        store.create_account(inactive)

        accounts = store.list_active_accounts()

    assert [account.id for account in accounts] == ["acc-1", "acc-2"]
    assert accounts[1].user_id == "user-2"
