"""Core domain models used across the sync pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

SEEN_FLAG = "\\Seen"


class EmailType(str, Enum):
    """Direction of a synced message."""

    RECEIVED = "received"
    SENT = "sent"


class ProcessingStatus(str, Enum):
    """Lifecycle of an index record with respect to downstream analysis."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class MailboxAccount:
    """Configured remote mailbox with encrypted credentials."""

    id: str
    user_id: str
    email: str
    imap_host: str
    imap_port: int
    imap_security: str
    username: str | None
    password_encrypted: str
    provider_type: str = "imap"
    organization_id: str | None = None
    is_active: bool = True
    last_sync_at: datetime | None = None
    sync_error: str | None = None

    @property
    def login(self) -> str:
        """Username used for authentication, defaulting to the address."""
        return self.username or self.email


@dataclass(slots=True)
class FolderInfo:
    """Metadata returned when a folder is opened."""

    name: str
    exists: int


@dataclass(slots=True)
class RawMessage:
    """Raw message bytes as fetched from the server."""

    sequence_number: int
    uid: int | None
    source: bytes
    flags: tuple[str, ...] = ()


@dataclass(slots=True)
class AttachmentMeta:
    """Metadata describing an email attachment."""

    filename: str | None
    content_type: str | None
    size: int | None


@dataclass(slots=True)
class ParsedMessage:
    """Structured message derived from a raw message."""

    message_id: str | None
    subject: str
    sender_email: str
    sender_name: str | None
    recipient_email: str | None
    sent_at: datetime
    text_body: str | None
    html_body: str | None
    attachments: tuple[AttachmentMeta, ...]
    is_read: bool
    references: tuple[str, ...] = ()
    uid: int | None = None

    @property
    def has_attachments(self) -> bool:
        """Whether the message carries at least one attachment."""
        return bool(self.attachments)


@dataclass(slots=True)
class AdmittedMessage:
    """Parsed message that passed the deduplication gate."""

    message_id: str
    thread_id: str
    source_key: str | None
    parsed: ParsedMessage


@dataclass(slots=True)
class MessageIndexRecord:
    """Durable metadata row for one ingested message."""

    message_id: str
    email_account_id: str
    user_id: str
    thread_id: str
    email_type: EmailType
    folder_name: str
    subject: str
    sender_email: str
    received_at: datetime
    organization_id: str | None = None
    source_key: str | None = None
    sender_name: str | None = None
    recipient_email: str | None = None
    sent_at: datetime | None = None
    has_attachments: bool = False
    attachment_count: int = 0
    is_read: bool = False
    preview_text: str | None = None
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    ai_analysis: str | None = None
    analyzed_at: datetime | None = None


@dataclass(slots=True)
class MessageContentRecord:
    """Durable body cache row, 1:1 with an index record."""

    message_id: str
    email_account_id: str
    plain_content: str | None
    html_content: str | None


@dataclass(slots=True)
class ThreadPlaceholder:
    """Thread row created ahead of the index records that reference it."""

    thread_id: str
    email_account_id: str
    user_id: str
    subject: str | None = None


@dataclass(slots=True)
class AnalysisContext:
    """Work item handed to the downstream analysis processor."""

    email_id: int
    user_id: str
    organization_id: str | None = None
    priority: str = "normal"
    skip_draft: bool = False
    force_reprocess: bool = False

    def to_payload(self) -> dict[str, object]:
        """Return the camelCase payload understood by the processor."""
        return {
            "emailId": self.email_id,
            "userId": self.user_id,
            "organizationId": self.organization_id,
            "priority": self.priority,
            "skipDraft": self.skip_draft,
            "forceReprocess": self.force_reprocess,
        }


@dataclass(slots=True)
class AnalysisJob:
    """Queued analysis context with delivery bookkeeping."""

    id: int
    context: AnalysisContext
    attempts: int
    status: str


@dataclass(slots=True)
class PersistReport:
    """Outcome of persisting one folder's admitted messages."""

    saved: int = 0
    batches: int = 0
    failed_batches: int = 0
    email_ids: list[int] = field(default_factory=list)


@dataclass(slots=True)
class FolderSyncResult:
    """Per-folder counters for one sync invocation."""

    folder: str
    email_type: EmailType
    fetched: int = 0
    skipped: int = 0
    duplicates: int = 0
    admitted: int = 0
    saved: int = 0
    email_ids: list[int] = field(default_factory=list)


@dataclass(slots=True)
class SyncReport:
    """Summary returned by the orchestrator on success."""

    account_id: str
    inbox: int
    sent: int
    synced_at: datetime
    analysis_enqueued: int = 0

    @property
    def total_saved(self) -> int:
        """Total records saved across folders."""
        return self.inbox + self.sent

    @property
    def message(self) -> str:
        """Human readable summary line."""
        return (
            f"Successfully synced {self.total_saved} emails "
            f"({self.inbox} received + {self.sent} sent)"
        )


__all__ = [
    "AdmittedMessage",
    "AnalysisContext",
    "AnalysisJob",
    "AttachmentMeta",
    "EmailType",
    "FolderInfo",
    "FolderSyncResult",
    "MailboxAccount",
    "MessageContentRecord",
    "MessageIndexRecord",
    "ParsedMessage",
    "PersistReport",
    "ProcessingStatus",
    "RawMessage",
    "SEEN_FLAG",
    "SyncReport",
    "ThreadPlaceholder",
]
