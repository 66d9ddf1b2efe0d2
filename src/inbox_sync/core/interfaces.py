"""Protocol interfaces for decoupling components."""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from datetime import datetime
from typing import Protocol

from .models import (
    AnalysisContext,
    AnalysisJob,
    FolderInfo,
    MailboxAccount,
    MessageContentRecord,
    MessageIndexRecord,
    ParsedMessage,
    RawMessage,
    ThreadPlaceholder,
)


class MailTransport(Protocol):
    """Session against a remote mailbox, owned by one sync invocation."""

    def connect(self) -> None:
        """Open and authenticate the session."""
        raise NotImplementedError

    def open_folder(self, name: str) -> FolderInfo:
        """Select ``name`` and return its metadata."""
        raise NotImplementedError

    def fetch_one(self, sequence_number: int) -> RawMessage | None:
        """Fetch a single message; ``None`` when it could not be retrieved."""
        raise NotImplementedError

    def fetch_recent(self, limit: int) -> Iterator[RawMessage]:
        """Yield up to ``limit`` messages of the open folder, newest first."""
        raise NotImplementedError

    def logout(self) -> None:
        """Release the session. Must not raise."""
        raise NotImplementedError


class MessageParserProtocol(Protocol):
    """Minimal protocol implemented by message parsers."""

    def parse(self, raw: RawMessage) -> ParsedMessage:
        """Convert a raw message into a structured one."""
        raise NotImplementedError


class AnalysisQueue(Protocol):
    """Accepts analysis work for a separate consumer."""

    def publish_analysis(self, contexts: Sequence[AnalysisContext]) -> int:
        """Queue ``contexts`` and return how many were accepted."""
        raise NotImplementedError


class MailStore(AnalysisQueue, Protocol):
    """Storage collaborator for accounts, index and content records."""

    def get_account(self, account_id: str, user_id: str) -> MailboxAccount | None:
        """Return the account owned by ``user_id`` or ``None``."""
        raise NotImplementedError

    def update_sync_metadata(
        self, account_id: str, synced_at: datetime, sync_error: str | None
    ) -> None:
        """Record the outcome of a sync on the account row."""
        raise NotImplementedError

    def record_sync_error(self, account_id: str, message: str) -> None:
        """Record a failure message on the account row."""
        raise NotImplementedError

    def message_exists(
        self, message_id: str, account_id: str, source_key: str | None = None
    ) -> bool:
        """Return whether an index record already exists for the message."""
        raise NotImplementedError

    def ensure_threads(self, placeholders: Sequence[ThreadPlaceholder]) -> int:
        """Insert thread rows that are absent; return how many were created."""
        raise NotImplementedError

    def insert_index_records(
        self, records: Sequence[MessageIndexRecord]
    ) -> Mapping[str, int]:
        """Insert index rows and return row ids keyed by message id."""
        raise NotImplementedError

    def insert_content_records(self, records: Sequence[MessageContentRecord]) -> int:
        """Insert content cache rows and return how many were written."""
        raise NotImplementedError

    def list_active_accounts(self) -> list[MailboxAccount]:
        """Return every active account in a stable order."""
        raise NotImplementedError

    def close(self) -> None:
        """Release database resources."""
        raise NotImplementedError


class AnalysisJobStore(Protocol):
    """Queue operations used by the analysis consumer."""

    def claim_analysis_jobs(self, limit: int) -> list[AnalysisJob]:
        """Mark up to ``limit`` pending jobs as running and return them."""
        raise NotImplementedError

    def complete_analysis_job(self, job: AnalysisJob) -> None:
        """Mark ``job`` done and its index row completed."""
        raise NotImplementedError

    def fail_analysis_job(self, job: AnalysisJob, error: str, *, final: bool) -> None:
        """Record a failed attempt, re-queueing unless ``final``."""
        raise NotImplementedError


class AnalysisProcessor(Protocol):
    """Downstream consumer of analysis contexts."""

    def process(self, context: AnalysisContext) -> None:
        """Analyse the referenced email. Raises on failure."""
        raise NotImplementedError


__all__ = [
    "AnalysisJobStore",
    "AnalysisProcessor",
    "AnalysisQueue",
    "MailStore",
    "MailTransport",
    "MessageParserProtocol",
]
