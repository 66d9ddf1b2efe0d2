"""SQLite-backed storage for accounts, message index and content cache."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from types import TracebackType

from ..core.config import StorageSettings
from ..core.datetime_utils import parse_datetime, serialize_datetime, utc_now
from ..core.errors import PersistenceError
from ..core.interfaces import AnalysisJobStore, MailStore
from ..core.models import (
    AnalysisContext,
    AnalysisJob,
    MailboxAccount,
    MessageContentRecord,
    MessageIndexRecord,
    ProcessingStatus,
    ThreadPlaceholder,
)

LOGGER = logging.getLogger(__name__)

JOB_PENDING = "pending"
JOB_RUNNING = "running"
JOB_DONE = "done"
JOB_FAILED = "failed"


class SqliteMailStore(MailStore, AnalysisJobStore):
    """Persist accounts, index rows, content cache and analysis jobs."""

    def __init__(self, settings: StorageSettings) -> None:
        """Open the database and apply migrations."""
        self._settings = settings
        db_path = Path(settings.db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = sqlite3.connect(db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._connection.execute("PRAGMA foreign_keys = ON")
        self._apply_migrations()

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> SqliteMailStore:
        """Enter context manager scope."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure the connection is closed when exiting context manager."""
        self.close()

    # Accounts -----------------------------------------------------------------
    def create_account(self, account: MailboxAccount) -> None:
        """Insert a mailbox account row."""
        now = serialize_datetime(utc_now())
        with self._translate_errors("create account"), self._connection:
            self._connection.execute(
                """
                INSERT INTO email_accounts (
                    id, user_id, organization_id, email, provider_type,
                    imap_host, imap_port, imap_security, username,
                    password_encrypted, is_active, last_sync_at, sync_error,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    account.id,
                    account.user_id,
                    account.organization_id,
                    account.email,
                    account.provider_type,
                    account.imap_host,
                    account.imap_port,
                    account.imap_security,
                    account.username,
                    account.password_encrypted,
                    int(account.is_active),
                    serialize_datetime(account.last_sync_at),
                    account.sync_error,
                    now,
                    now,
                ),
            )

    def get_account(self, account_id: str, user_id: str) -> MailboxAccount | None:
        """Return the account owned by ``user_id`` or ``None``."""
        with self._translate_errors("load account"):
            row = self._connection.execute(
                "SELECT * FROM email_accounts WHERE id = ? AND user_id = ?",
                (account_id, user_id),
            ).fetchone()
        if row is None:
            return None
        return _account_from_row(row)

    def list_active_accounts(self) -> list[MailboxAccount]:
        """Return active IMAP accounts, oldest first."""
        with self._translate_errors("list accounts"):
            rows = self._connection.execute(
                """
                SELECT * FROM email_accounts
                WHERE is_active = 1 AND provider_type = 'imap'
                ORDER BY created_at, id
                """
            ).fetchall()
        return [_account_from_row(row) for row in rows]

    def update_sync_metadata(
        self, account_id: str, synced_at: datetime, sync_error: str | None
    ) -> None:
        """Record the time and outcome of the latest sync."""
        with self._translate_errors("update sync metadata"), self._connection:
            self._connection.execute(
                """
                UPDATE email_accounts
                SET last_sync_at = ?, sync_error = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    serialize_datetime(synced_at),
                    sync_error,
                    serialize_datetime(utc_now()),
                    account_id,
                ),
            )

    def record_sync_error(self, account_id: str, message: str) -> None:
        """Store ``message`` as the account's latest sync error."""
        with self._translate_errors("record sync error"), self._connection:
            self._connection.execute(
                "UPDATE email_accounts SET sync_error = ?, updated_at = ? WHERE id = ?",
                (message, serialize_datetime(utc_now()), account_id),
            )

    # Message index ------------------------------------------------------------
    def message_exists(
        self, message_id: str, account_id: str, source_key: str | None = None
    ) -> bool:
        """Return whether the message is already indexed for the account."""
        with self._translate_errors("check duplicate"):
            row = self._connection.execute(
                """
                SELECT 1 FROM email_index
                WHERE email_account_id = ?
                  AND (message_id = ? OR (? IS NOT NULL AND source_key = ?))
                LIMIT 1
                """,
                (account_id, message_id, source_key, source_key),
            ).fetchone()
        return row is not None

    def ensure_threads(self, placeholders: Sequence[ThreadPlaceholder]) -> int:
        """Insert thread rows if absent and return how many were created."""
        if not placeholders:
            return 0
        now = serialize_datetime(utc_now())
        before = self._connection.total_changes
        with self._translate_errors("create thread placeholders"), self._connection:
            self._connection.executemany(
                """
                INSERT INTO email_threads (
                    thread_id, email_account_id, user_id, subject, created_at
                ) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(thread_id, email_account_id) DO NOTHING
                """,
                [
                    (p.thread_id, p.email_account_id, p.user_id, p.subject, now)
                    for p in placeholders
                ],
            )
        return self._connection.total_changes - before

    def insert_index_records(
        self, records: Sequence[MessageIndexRecord]
    ) -> Mapping[str, int]:
        """Insert index rows in one transaction, returning ids of new rows.

        Rows that collide with an existing ``(message_id, account)`` pair are
        left untouched and omitted from the result.
        """
        inserted: dict[str, int] = {}
        if not records:
            return inserted
        now = serialize_datetime(utc_now())
        with self._translate_errors("insert index records"), self._connection:
            for record in records:
                cursor = self._connection.execute(
                    """
                    INSERT INTO email_index (
                        message_id, source_key, email_account_id, user_id,
                        organization_id, thread_id, email_type, folder_name,
                        subject, sender_email, sender_name, recipient_email,
                        sent_at, received_at, has_attachments, attachment_count,
                        is_read, preview_text, processing_status, ai_analysis,
                        analyzed_at, created_at, updated_at
                    ) VALUES (
                        ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?,
                        ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?
                    )
                    ON CONFLICT(message_id, email_account_id) DO NOTHING
                    """,
                    (
                        record.message_id,
                        record.source_key,
                        record.email_account_id,
                        record.user_id,
                        record.organization_id,
                        record.thread_id,
                        record.email_type.value,
                        record.folder_name,
                        record.subject,
                        record.sender_email,
                        record.sender_name,
                        record.recipient_email,
                        serialize_datetime(record.sent_at),
                        serialize_datetime(record.received_at),
                        int(record.has_attachments),
                        record.attachment_count,
                        int(record.is_read),
                        record.preview_text,
                        record.processing_status.value,
                        record.ai_analysis,
                        serialize_datetime(record.analyzed_at),
                        now,
                        now,
                    ),
                )
                if cursor.rowcount == 1 and cursor.lastrowid is not None:
                    inserted[record.message_id] = cursor.lastrowid
                else:
                    LOGGER.debug("Index row for %s already present", record.message_id)
        return inserted

    def insert_content_records(self, records: Sequence[MessageContentRecord]) -> int:
        """Insert content cache rows and return how many were written."""
        if not records:
            return 0
        now = serialize_datetime(utc_now())
        before = self._connection.total_changes
        with self._translate_errors("insert content records"), self._connection:
            self._connection.executemany(
                """
                INSERT INTO email_content_cache (
                    message_id, email_account_id, plain_content, html_content,
                    cached_at
                ) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(message_id, email_account_id) DO NOTHING
                """,
                [
                    (
                        record.message_id,
                        record.email_account_id,
                        record.plain_content,
                        record.html_content,
                        now,
                    )
                    for record in records
                ],
            )
        return self._connection.total_changes - before

    def count_index_records(self, account_id: str | None = None) -> int:
        """Return the number of index rows, optionally for one account."""
        with self._translate_errors("count index records"):
            if account_id is None:
                row = self._connection.execute(
                    "SELECT COUNT(*) FROM email_index"
                ).fetchone()
            else:
                row = self._connection.execute(
                    "SELECT COUNT(*) FROM email_index WHERE email_account_id = ?",
                    (account_id,),
                ).fetchone()
        return int(row[0])

    def count_content_records(self, account_id: str | None = None) -> int:
        """Return the number of cached content rows, optionally for one account."""
        with self._translate_errors("count content records"):
            if account_id is None:
                row = self._connection.execute(
                    "SELECT COUNT(*) FROM email_content_cache"
                ).fetchone()
            else:
                row = self._connection.execute(
                    "SELECT COUNT(*) FROM email_content_cache "
                    "WHERE email_account_id = ?",
                    (account_id,),
                ).fetchone()
        return int(row[0])

    # Analysis queue -------------------------------------------------------------
    def publish_analysis(self, contexts: Sequence[AnalysisContext]) -> int:
        """Queue analysis contexts and return how many were accepted."""
        if not contexts:
            return 0
        now = serialize_datetime(utc_now())
        with self._translate_errors("publish analysis jobs"), self._connection:
            self._connection.executemany(
                """
                INSERT INTO analysis_jobs (
                    email_id, user_id, organization_id, priority, skip_draft,
                    force_reprocess, status, attempts, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                """,
                [
                    (
                        context.email_id,
                        context.user_id,
                        context.organization_id,
                        context.priority,
                        int(context.skip_draft),
                        int(context.force_reprocess),
                        JOB_PENDING,
                        now,
                        now,
                    )
                    for context in contexts
                ],
            )
        return len(contexts)

    def claim_analysis_jobs(self, limit: int) -> list[AnalysisJob]:
        """Mark up to ``limit`` pending jobs as running and return them."""
        now = serialize_datetime(utc_now())
        with self._translate_errors("claim analysis jobs"), self._connection:
            rows = self._connection.execute(
                """
                SELECT * FROM analysis_jobs
                WHERE status = ?
                ORDER BY CASE priority
                    WHEN 'high' THEN 0 WHEN 'normal' THEN 1 ELSE 2 END, id
                LIMIT ?
                """,
                (JOB_PENDING, limit),
            ).fetchall()
            self._connection.executemany(
                "UPDATE analysis_jobs SET status = ?, updated_at = ? WHERE id = ?",
                [(JOB_RUNNING, now, row["id"]) for row in rows],
            )
        return [
            AnalysisJob(
                id=row["id"],
                context=AnalysisContext(
                    email_id=row["email_id"],
                    user_id=row["user_id"],
                    organization_id=row["organization_id"],
                    priority=row["priority"],
                    skip_draft=bool(row["skip_draft"]),
                    force_reprocess=bool(row["force_reprocess"]),
                ),
                attempts=row["attempts"],
                status=JOB_RUNNING,
            )
            for row in rows
        ]

    def complete_analysis_job(self, job: AnalysisJob) -> None:
        """Mark ``job`` done and its index row completed."""
        now = serialize_datetime(utc_now())
        with self._translate_errors("complete analysis job"), self._connection:
            self._connection.execute(
                """
                UPDATE analysis_jobs
                SET status = ?, attempts = attempts + 1, last_error = NULL,
                    updated_at = ?
                WHERE id = ?
                """,
                (JOB_DONE, now, job.id),
            )
            self._set_processing_status(
                job.context.email_id, ProcessingStatus.COMPLETED, now
            )

    def fail_analysis_job(self, job: AnalysisJob, error: str, *, final: bool) -> None:
        """Record a failed attempt; re-queue unless ``final``."""
        now = serialize_datetime(utc_now())
        with self._translate_errors("fail analysis job"), self._connection:
            self._connection.execute(
                """
                UPDATE analysis_jobs
                SET status = ?, attempts = attempts + 1, last_error = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (JOB_FAILED if final else JOB_PENDING, error, now, job.id),
            )
            if final:
                self._set_processing_status(
                    job.context.email_id, ProcessingStatus.FAILED, now
                )

    def close(self) -> None:
        """Close the database connection."""
        self._connection.close()

    # Internal helpers ---------------------------------------------------------
    def _set_processing_status(
        self, email_id: int, status: ProcessingStatus, now: str | None
    ) -> None:
        self._connection.execute(
            """
            UPDATE email_index
            SET processing_status = ?, analyzed_at = ?, updated_at = ?
            WHERE id = ?
            """,
            (status.value, now, now, email_id),
        )

    @contextmanager
    def _translate_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            LOGGER.error("Database error during %s: %s", action, exc)
            raise PersistenceError(f"Failed to {action}: {exc}") from exc

    def _apply_migrations(self) -> None:
        schema_dir = Path(__file__).resolve().parent / "schema"
        for migration in sorted(schema_dir.glob("*.sql")):
            LOGGER.debug("Applying migration %s", migration.name)
            script = migration.read_text(encoding="utf-8")
            with self._connection:
                self._connection.executescript(script)


def _account_from_row(row: sqlite3.Row) -> MailboxAccount:
    return MailboxAccount(
        id=row["id"],
        user_id=row["user_id"],
        organization_id=row["organization_id"],
        email=row["email"],
        provider_type=row["provider_type"],
        imap_host=row["imap_host"] or "",
        imap_port=row["imap_port"] or 993,
        imap_security=row["imap_security"] or "SSL/TLS",
        username=row["username"],
        password_encrypted=row["password_encrypted"] or "",
        is_active=bool(row["is_active"]),
        last_sync_at=parse_datetime(row["last_sync_at"]),
        sync_error=row["sync_error"],
    )


__all__ = ["SqliteMailStore"]
