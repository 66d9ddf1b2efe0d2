"""Batched writes of admitted messages into the index and content cache."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence

from ..core.errors import PersistenceError
from ..core.interfaces import MailStore
from ..core.models import (
    AdmittedMessage,
    EmailType,
    MailboxAccount,
    MessageContentRecord,
    MessageIndexRecord,
    PersistReport,
    ProcessingStatus,
    ThreadPlaceholder,
)

LOGGER = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


class BatchPersister:
    """Write admitted messages in fixed-size batches.

    Index and content rows are written in separate transactions. When the
    content write fails the batch is left out of the saved count, but its
    index rows stay in place.
    """

    def __init__(self, store: MailStore, batch_size: int = 10) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._store = store
        self._batch_size = batch_size

    def persist(
        self,
        messages: Sequence[AdmittedMessage],
        account: MailboxAccount,
        email_type: EmailType,
        folder_name: str,
    ) -> PersistReport:
        """Persist ``messages`` and report how many were saved."""
        report = PersistReport()
        if not messages:
            return report

        for number, batch in enumerate(_chunked(messages, self._batch_size), start=1):
            report.batches += 1
            self._ensure_threads(batch, account)

            index_records = [
                _index_record(message, account, email_type, folder_name)
                for message in batch
            ]
            try:
                inserted = self._store.insert_index_records(index_records)
            except PersistenceError as exc:
                LOGGER.error(
                    "Failed to insert index batch %s (%s %s emails): %s",
                    number,
                    len(batch),
                    email_type.value,
                    exc,
                )
                report.failed_batches += 1
                continue

            content_records = [
                _content_record(message, account)
                for message in batch
                if message.message_id in inserted
            ]
            try:
                self._store.insert_content_records(content_records)
            except PersistenceError as exc:
                LOGGER.error(
                    "Failed to insert content cache batch %s: %s; "
                    "%s index rows remain without content",
                    number,
                    exc,
                    len(inserted),
                )
                report.failed_batches += 1
                continue

            report.saved += len(inserted)
            report.email_ids.extend(
                inserted[message.message_id]
                for message in batch
                if message.message_id in inserted
            )
            LOGGER.info(
                "Saved batch %s: %s %s emails", number, len(inserted), email_type.value
            )

        return report

    def _ensure_threads(
        self, batch: Sequence[AdmittedMessage], account: MailboxAccount
    ) -> None:
        placeholders: dict[str, ThreadPlaceholder] = {}
        for message in batch:
            placeholders.setdefault(
                message.thread_id,
                ThreadPlaceholder(
                    thread_id=message.thread_id,
                    email_account_id=account.id,
                    user_id=account.user_id,
                    subject=message.parsed.subject,
                ),
            )
        try:
            created = self._store.ensure_threads(list(placeholders.values()))
            LOGGER.debug("Created %s thread placeholders", created)
        except PersistenceError as exc:
            LOGGER.warning("Failed to create thread placeholders: %s", exc)


def _chunked(
    items: Sequence[AdmittedMessage], size: int
) -> Iterator[Sequence[AdmittedMessage]]:
    """Yield successive slices of ``size`` elements."""
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _index_record(
    message: AdmittedMessage,
    account: MailboxAccount,
    email_type: EmailType,
    folder_name: str,
) -> MessageIndexRecord:
    parsed = message.parsed
    return MessageIndexRecord(
        message_id=message.message_id,
        email_account_id=account.id,
        user_id=account.user_id,
        organization_id=account.organization_id,
        thread_id=message.thread_id,
        source_key=message.source_key,
        email_type=email_type,
        folder_name=folder_name,
        subject=parsed.subject,
        sender_email=parsed.sender_email,
        sender_name=parsed.sender_name,
        recipient_email=parsed.recipient_email,
        sent_at=parsed.sent_at if email_type is EmailType.SENT else None,
        received_at=parsed.sent_at,
        has_attachments=parsed.has_attachments,
        attachment_count=len(parsed.attachments),
        is_read=parsed.is_read,
        preview_text=parsed.subject[:PREVIEW_LENGTH] or None,
        processing_status=ProcessingStatus.PENDING,
        ai_analysis=None,
        analyzed_at=None,
    )


def _content_record(
    message: AdmittedMessage, account: MailboxAccount
) -> MessageContentRecord:
    return MessageContentRecord(
        message_id=message.message_id,
        email_account_id=account.id,
        plain_content=message.parsed.text_body,
        html_content=message.parsed.html_body,
    )


__all__ = ["BatchPersister"]
