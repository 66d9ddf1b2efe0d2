"""Ingestion pipeline components."""

from .dedup import DeduplicationGate
from .message_ids import resolve_thread_id, sanitize_message_id
from .orchestrator import (
    AccountSyncOutcome,
    SyncOrchestrator,
    SyncRequest,
    SyncState,
    split_folder_limits,
    sync_all_accounts,
)
from .parser import MessageParser
from .persister import BatchPersister

__all__ = [
    "AccountSyncOutcome",
    "BatchPersister",
    "DeduplicationGate",
    "MessageParser",
    "SyncOrchestrator",
    "SyncRequest",
    "SyncState",
    "resolve_thread_id",
    "sanitize_message_id",
    "split_folder_limits",
    "sync_all_accounts",
]
