"""Top-level control flow for one mailbox sync invocation.

The orchestrator walks a fixed sequence of states::

    IDLE -> AUTHORIZING -> CONNECTING_MAILBOX -> SYNCING_FOLDER (INBOX)
         -> SYNCING_FOLDER (Sent) -> UPDATING_METADATA
         -> ENQUEUEING_ANALYSIS -> DONE

with ``ERROR`` reachable from any state. Transport and authorisation
failures abort the run; message and batch failures only lower the saved
count.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..core.config import AppSettings
from ..core.datetime_utils import utc_now
from ..core.errors import (
    ConfigurationError,
    CredentialError,
    FolderNotFoundError,
    InvalidRequestError,
    NotFoundError,
    ParseError,
    PersistenceError,
    SyncError,
    SyncFailedError,
    TransportError,
    classify_transport_error,
)
from ..core.interfaces import MailStore, MailTransport, MessageParserProtocol
from ..core.models import (
    AdmittedMessage,
    AnalysisContext,
    EmailType,
    FolderSyncResult,
    MailboxAccount,
    SyncReport,
)
from ..security.credentials import decrypt_password
from ..security.sessions import CallerAuthorizer, CallerCredentials, internal_caller
from ..transport.imap_client import TransportFactory
from .dedup import DeduplicationGate
from .message_ids import (
    Clock,
    TokenFactory,
    resolve_thread_id,
    sanitize_message_id,
    source_key,
)
from .parser import MessageParser
from .persister import BatchPersister

LOGGER = logging.getLogger(__name__)

IMAP_PROVIDER = "imap"

StoreFactory = Callable[[], MailStore]


class SyncState(str, Enum):
    """States of a sync invocation."""

    IDLE = "idle"
    AUTHORIZING = "authorizing"
    CONNECTING_MAILBOX = "connecting_mailbox"
    SYNCING_FOLDER = "syncing_folder"
    UPDATING_METADATA = "updating_metadata"
    ENQUEUEING_ANALYSIS = "enqueueing_analysis"
    DONE = "done"
    ERROR = "error"


@dataclass(slots=True)
class AccountSyncOutcome:
    """Result of one account within a multi-account sync."""

    account_id: str
    report: SyncReport | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        """Whether the account synced without a classified failure."""
        return self.report is not None


@dataclass(slots=True)
class SyncRequest:
    """Inbound trigger for one sync invocation."""

    account_id: str | None
    caller: CallerCredentials = field(default_factory=CallerCredentials)
    max_emails: int | None = None
    user_id: str | None = None


class SyncOrchestrator:
    """Drive transport, parser, dedup and persister for one account."""

    # pylint: disable=too-many-arguments
    def __init__(
        self,
        settings: AppSettings,
        *,
        authorizer: CallerAuthorizer,
        store_factory: StoreFactory,
        transport_factory: TransportFactory,
        parser: MessageParserProtocol | None = None,
        clock: Callable[[], datetime] = utc_now,
        id_clock: Clock | None = None,
        id_token_factory: TokenFactory | None = None,
    ) -> None:
        self._settings = settings
        self._authorizer = authorizer
        self._store_factory = store_factory
        self._transport_factory = transport_factory
        self._parser = parser or MessageParser()
        self._clock = clock
        self._id_options: dict[str, Callable[[], object]] = {}
        if id_clock is not None:
            self._id_options["clock"] = id_clock
        if id_token_factory is not None:
            self._id_options["token_factory"] = id_token_factory
        self._history: list[tuple[SyncState, str | None]] = []

    @property
    def state(self) -> SyncState:
        """Current state of the most recent run."""
        return self._history[-1][0] if self._history else SyncState.IDLE

    @property
    def history(self) -> tuple[tuple[SyncState, str | None], ...]:
        """Visited states, each paired with the folder being synced if any."""
        return tuple(self._history)

    def run(self, request: SyncRequest) -> SyncReport:
        """Execute one sync invocation.

        Raises:
            SyncError: a classified failure to report to the caller.
        """
        self._history = []
        self._transition(SyncState.IDLE)
        try:
            self._transition(SyncState.AUTHORIZING)
            user_id = self._authorizer.authorize(request.caller, request.user_id)
            account_id = (request.account_id or "").strip()
            if not account_id:
                raise InvalidRequestError("accountId required")
            max_emails = self._resolve_max_emails(request.max_emails)
        except SyncError:
            self._transition(SyncState.ERROR)
            raise

        store = self._store_factory()
        try:
            return self._run_for_account(store, account_id, user_id, max_emails)
        finally:
            store.close()

    # Internal flow -------------------------------------------------------------
    def _run_for_account(
        self, store: MailStore, account_id: str, user_id: str, max_emails: int
    ) -> SyncReport:
        self._transition(SyncState.CONNECTING_MAILBOX)
        try:
            account = self._load_account(store, account_id, user_id)
            password = self._decrypt(store, account)
        except SyncError:
            self._transition(SyncState.ERROR)
            raise

        inbox_limit, sent_limit = split_folder_limits(max_emails)
        LOGGER.info(
            "Starting sync for account %s (inbox=%s sent=%s)",
            account.id,
            inbox_limit,
            sent_limit,
        )
        transport = self._transport_factory(account, password)
        try:
            transport.connect()
            gate = DeduplicationGate(store)
            persister = BatchPersister(store, self._settings.sync.batch_size)
            inbox = self._sync_folder(
                transport,
                gate,
                persister,
                account,
                self._settings.sync.inbox_folder,
                EmailType.RECEIVED,
                inbox_limit,
            )
            sent = self._sync_sent(transport, gate, persister, account, sent_limit)
        except TransportError as exc:
            message = classify_transport_error(exc)
            LOGGER.error("Sync of account %s failed: %s", account.id, exc)
            self._fail(store, account, message)
            raise TransportError(message) from exc
        except SyncError as exc:
            self._fail(store, account, exc.public_message)
            raise
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.error(
                "Unexpected error syncing account %s: %s",
                account.id,
                exc,
                exc_info=True,
            )
            self._fail(store, account, str(exc) or type(exc).__name__)
            raise SyncFailedError(str(exc) or None) from exc
        finally:
            transport.logout()

        synced_at = self._clock()
        self._update_metadata(store, account, synced_at)
        enqueued = self._enqueue_analysis(store, account, inbox)
        self._transition(SyncState.DONE)

        report = SyncReport(
            account_id=account.id,
            inbox=inbox.saved,
            sent=sent.saved,
            synced_at=synced_at,
            analysis_enqueued=enqueued,
        )
        LOGGER.info("Sync complete for account %s: %s", account.id, report.message)
        return report

    def _load_account(
        self, store: MailStore, account_id: str, user_id: str
    ) -> MailboxAccount:
        try:
            account = store.get_account(account_id, user_id)
        except PersistenceError as exc:
            raise SyncFailedError(f"Failed to load email account: {exc}") from exc
        if account is None:
            LOGGER.info("Account %s not found for user %s", account_id, user_id)
            raise NotFoundError()
        if account.provider_type != IMAP_PROVIDER or not account.is_active:
            LOGGER.info(
                "Account %s is not an active IMAP account (%s, active=%s)",
                account_id,
                account.provider_type,
                account.is_active,
            )
            raise NotFoundError()
        return account

    def _decrypt(self, store: MailStore, account: MailboxAccount) -> str:
        key = self._settings.security.password_encryption_key
        if not key:
            raise ConfigurationError("Password encryption key is not configured")
        try:
            return decrypt_password(account.password_encrypted, key)
        except ConfigurationError:
            raise
        except CredentialError as exc:
            LOGGER.error("Credential decryption failed for %s: %s", account.id, exc)
            error = CredentialError()
            self._fail(store, account, error.public_message)
            raise error from exc

    def _sync_sent(
        self,
        transport: MailTransport,
        gate: DeduplicationGate,
        persister: BatchPersister,
        account: MailboxAccount,
        limit: int,
    ) -> FolderSyncResult:
        for candidate in self._settings.sync.sent_folders:
            try:
                return self._sync_folder(
                    transport,
                    gate,
                    persister,
                    account,
                    candidate,
                    EmailType.SENT,
                    limit,
                )
            except FolderNotFoundError:
                LOGGER.debug("Sent folder candidate %s not present", candidate)
        LOGGER.warning("No sent folder found for account %s", account.id)
        return FolderSyncResult(folder="", email_type=EmailType.SENT)

    # pylint: disable=too-many-arguments
    def _sync_folder(
        self,
        transport: MailTransport,
        gate: DeduplicationGate,
        persister: BatchPersister,
        account: MailboxAccount,
        folder: str,
        email_type: EmailType,
        limit: int,
    ) -> FolderSyncResult:
        info = transport.open_folder(folder)
        self._transition(SyncState.SYNCING_FOLDER, folder)
        result = FolderSyncResult(folder=info.name, email_type=email_type)

        admitted: list[AdmittedMessage] = []
        for raw in transport.fetch_recent(limit):
            result.fetched += 1
            try:
                parsed = self._parser.parse(raw)
            except ParseError as exc:
                LOGGER.warning(
                    "Skipping message %s in %s: %s", raw.sequence_number, folder, exc
                )
                result.skipped += 1
                continue

            message_id = sanitize_message_id(parsed.message_id, **self._id_options)
            key = source_key(parsed, folder)
            if not gate.admit(message_id, account.id, key):
                result.duplicates += 1
                continue
            admitted.append(
                AdmittedMessage(
                    message_id=message_id,
                    thread_id=resolve_thread_id(parsed, message_id),
                    source_key=key,
                    parsed=parsed,
                )
            )

        result.admitted = len(admitted)
        report = persister.persist(admitted, account, email_type, info.name)
        result.saved = report.saved
        result.email_ids = report.email_ids
        LOGGER.info(
            "Folder %s: fetched=%s admitted=%s saved=%s duplicates=%s skipped=%s",
            info.name,
            result.fetched,
            result.admitted,
            result.saved,
            result.duplicates,
            result.skipped,
        )
        return result

    def _update_metadata(
        self, store: MailStore, account: MailboxAccount, synced_at: datetime
    ) -> None:
        self._transition(SyncState.UPDATING_METADATA)
        try:
            store.update_sync_metadata(account.id, synced_at, None)
        except PersistenceError as exc:
            LOGGER.warning("Failed to update sync metadata for %s: %s", account.id, exc)

    def _enqueue_analysis(
        self, store: MailStore, account: MailboxAccount, inbox: FolderSyncResult
    ) -> int:
        limit = self._settings.sync.analysis_batch_limit
        if not self._settings.analysis.enabled or limit <= 0 or not inbox.email_ids:
            return 0

        self._transition(SyncState.ENQUEUEING_ANALYSIS)
        contexts = [
            AnalysisContext(
                email_id=email_id,
                user_id=account.user_id,
                organization_id=account.organization_id,
                priority="normal",
            )
            for email_id in inbox.email_ids[:limit]
        ]
        try:
            accepted = store.publish_analysis(contexts)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.warning("Failed to enqueue analysis for %s: %s", account.id, exc)
            return 0
        LOGGER.info("Queued %s emails for background analysis", accepted)
        return accepted

    def _fail(self, store: MailStore, account: MailboxAccount, message: str) -> None:
        self._transition(SyncState.ERROR)
        try:
            store.record_sync_error(account.id, message)
        except PersistenceError as exc:
            LOGGER.warning("Failed to record sync error for %s: %s", account.id, exc)

    def _resolve_max_emails(self, requested: int | None) -> int:
        if requested is None:
            return self._settings.sync.default_max_emails
        if isinstance(requested, bool) or not isinstance(requested, int):
            raise InvalidRequestError("maxEmails must be a positive integer")
        if requested < 1:
            raise InvalidRequestError("maxEmails must be a positive integer")
        return requested

    def _transition(self, state: SyncState, folder: str | None = None) -> None:
        if self._history and self._history[-1] == (state, folder):
            return
        LOGGER.debug("Sync state -> %s (%s)", state.value, folder or "-")
        self._history.append((state, folder))


def split_folder_limits(max_emails: int) -> tuple[int, int]:
    """Split the run cap into INBOX and Sent limits, INBOX taking the odd one."""
    return (max_emails + 1) // 2, max_emails // 2


def sync_all_accounts(
    settings: AppSettings,
    *,
    store_factory: StoreFactory,
    transport_factory: TransportFactory,
    max_emails: int | None = None,
) -> list[AccountSyncOutcome]:
    """Sync every active IMAP account in turn as the internal caller.

    A failing account is recorded in its outcome and does not stop the
    remaining accounts.
    """
    store = store_factory()
    try:
        accounts = store.list_active_accounts()
    finally:
        store.close()
    LOGGER.info("Syncing %s active account(s)", len(accounts))

    authorizer = CallerAuthorizer(settings.security)
    caller = internal_caller(settings.security)
    outcomes: list[AccountSyncOutcome] = []
    for account in accounts:
        orchestrator = SyncOrchestrator(
            settings,
            authorizer=authorizer,
            store_factory=store_factory,
            transport_factory=transport_factory,
        )
        request = SyncRequest(
            account_id=account.id,
            caller=caller,
            max_emails=max_emails,
            user_id=account.user_id,
        )
        try:
            report = orchestrator.run(request)
        except SyncError as exc:
            LOGGER.warning("Sync of account %s failed: %s", account.id, exc)
            outcomes.append(
                AccountSyncOutcome(account_id=account.id, error=exc.public_message)
            )
            continue
        outcomes.append(AccountSyncOutcome(account_id=account.id, report=report))
    return outcomes


__all__ = [
    "AccountSyncOutcome",
    "StoreFactory",
    "SyncOrchestrator",
    "SyncRequest",
    "SyncState",
    "split_folder_limits",
    "sync_all_accounts",
]
