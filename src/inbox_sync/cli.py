"""Command-line entry point for Inbox Sync."""

from __future__ import annotations

import argparse
import getpass
import uuid
from pathlib import Path

from inbox_sync.analysis import AnalysisWorker, HttpAnalysisProcessor
from inbox_sync.core import AppSettings, SyncError, configure_logging, load_app_settings
from inbox_sync.core.errors import PersistenceError
from inbox_sync.core.models import MailboxAccount
from inbox_sync.ingestion import SyncOrchestrator, SyncRequest, sync_all_accounts
from inbox_sync.security import (
    CallerAuthorizer,
    encrypt_password,
    internal_caller,
    issue_session_token,
)
from inbox_sync.storage import SqliteMailStore
from inbox_sync.transport import imap_transport_factory
from inbox_sync.transport.imap_client import (
    SECURITY_NONE,
    SECURITY_SSL,
    SECURITY_STARTTLS,
)

COMMANDS = (
    "info",
    "add-account",
    "sync",
    "process-analysis",
    "encrypt-password",
    "issue-session",
)
IMAP_SECURITY_MODES = (SECURITY_SSL, SECURITY_STARTTLS, SECURITY_NONE)


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(description="Inbox Sync mailbox ingestion")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file containing configuration overrides.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="info",
        choices=COMMANDS,
        help="Operation to execute.",
    )
    parser.add_argument(
        "--account-id",
        dest="account_id",
        default=None,
        help="Mailbox account to synchronise (sync) or create (add-account).",
    )
    parser.add_argument(
        "--all",
        dest="all_accounts",
        action="store_true",
        help="Synchronise every active account (sync).",
    )
    parser.add_argument(
        "--user-id",
        dest="user_id",
        default=None,
        help="Owner of the account (sync, add-account, issue-session).",
    )
    parser.add_argument(
        "--max-emails",
        dest="max_emails",
        type=int,
        default=None,
        help="Upper bound on messages fetched across both folders (sync).",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Jobs processed in one pass (process-analysis).",
    )
    parser.add_argument(
        "--password",
        default=None,
        help=(
            "Mailbox password; prompted for when omitted "
            "(encrypt-password, add-account)."
        ),
    )
    parser.add_argument("--email", default=None, help="Mailbox address (add-account).")
    parser.add_argument(
        "--imap-host", dest="imap_host", default=None, help="IMAP server (add-account)."
    )
    parser.add_argument(
        "--imap-port",
        dest="imap_port",
        type=int,
        default=993,
        help="IMAP port (add-account).",
    )
    parser.add_argument(
        "--imap-security",
        dest="imap_security",
        default=SECURITY_SSL,
        choices=IMAP_SECURITY_MODES,
        help="Connection security (add-account).",
    )
    parser.add_argument(
        "--username",
        default=None,
        help="Login name when it differs from the address (add-account).",
    )
    return parser


def execute(args: argparse.Namespace, settings: AppSettings) -> int:
    """Execute the requested CLI command and return the exit status."""
    command = args.command
    if command == "info":
        print("Inbox Sync is ready. Register IMAP accounts to start syncing.")
        print(f"Database path: {settings.storage.db_path}")
        print(f"Default max emails: {settings.sync.default_max_emails}")
        print(f"Sent folder candidates: {', '.join(settings.sync.sent_folders)}")
        _print_store_summary(settings)
        return 0
    if command == "add-account":
        return _run_add_account(settings, args)
    if command == "sync":
        if args.all_accounts:
            return _run_sync_all(settings, args.max_emails)
        return _run_sync(settings, args.account_id, args.user_id, args.max_emails)
    if command == "process-analysis":
        limit = args.limit or settings.sync.analysis_batch_limit
        return _run_analysis(settings, limit)
    if command == "encrypt-password":
        return _run_encrypt(settings, args.password)
    if command == "issue-session":
        return _run_issue_session(settings, args.user_id)
    return 2


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    settings = load_app_settings(env_file=args.env_file)
    configure_logging(settings.logging)
    raise SystemExit(execute(args, settings))


def _run_sync(
    settings: AppSettings,
    account_id: str | None,
    user_id: str | None,
    max_emails: int | None,
) -> int:
    """Run one sync as the internal scheduler and report the outcome."""
    orchestrator = SyncOrchestrator(
        settings,
        authorizer=CallerAuthorizer(settings.security),
        store_factory=lambda: SqliteMailStore(settings.storage),
        transport_factory=imap_transport_factory(settings.sync),
    )
    request = SyncRequest(
        account_id=account_id,
        caller=internal_caller(settings.security),
        max_emails=max_emails,
        user_id=user_id,
    )
    try:
        report = orchestrator.run(request)
    except SyncError as exc:
        print(f"Sync failed ({int(exc.status_code)}): {exc.public_message}")
        return 1

    print(report.message)
    if report.analysis_enqueued:
        print(f"Queued {report.analysis_enqueued} email(s) for analysis.")
    return 0


def _run_sync_all(settings: AppSettings, max_emails: int | None) -> int:
    """Sync every active account and report each outcome."""
    outcomes = sync_all_accounts(
        settings,
        store_factory=lambda: SqliteMailStore(settings.storage),
        transport_factory=imap_transport_factory(settings.sync),
        max_emails=max_emails,
    )
    if not outcomes:
        print("No active accounts to sync.")
        return 0
    for outcome in outcomes:
        if outcome.report is not None:
            print(f"{outcome.account_id}: {outcome.report.message}")
        else:
            print(f"{outcome.account_id}: failed ({outcome.error})")
    return 0 if all(outcome.succeeded for outcome in outcomes) else 1


def _run_add_account(settings: AppSettings, args: argparse.Namespace) -> int:
    """Register an IMAP account with an encrypted password."""
    missing = [
        flag
        for flag, value in (
            ("--user-id", args.user_id),
            ("--email", args.email),
            ("--imap-host", args.imap_host),
        )
        if not value
    ]
    if missing:
        print(f"{', '.join(missing)} required for add-account.")
        return 1

    plaintext = args.password or getpass.getpass("Mailbox password: ")
    try:
        encrypted = encrypt_password(
            plaintext, settings.security.password_encryption_key
        )
    except (SyncError, ValueError) as exc:
        print(f"Encryption failed: {exc}")
        return 1

    account = MailboxAccount(
        id=args.account_id or str(uuid.uuid4()),
        user_id=args.user_id,
        email=args.email,
        imap_host=args.imap_host,
        imap_port=args.imap_port,
        imap_security=args.imap_security,
        username=args.username,
        password_encrypted=encrypted,
    )
    try:
        with SqliteMailStore(settings.storage) as store:
            store.create_account(account)
    except PersistenceError as exc:
        print(f"Could not create account: {exc}")
        return 1
    print(f"Created account {account.id} for {account.email}")
    return 0


def _print_store_summary(settings: AppSettings) -> None:
    if not Path(settings.storage.db_path).exists():
        print("Database not created yet.")
        return
    try:
        with SqliteMailStore(settings.storage) as store:
            accounts = len(store.list_active_accounts())
            indexed = store.count_index_records()
    except PersistenceError as exc:
        print(f"Database unavailable: {exc}")
        return
    print(f"Active accounts: {accounts}")
    print(f"Indexed emails: {indexed}")


def _run_analysis(settings: AppSettings, limit: int) -> int:
    """Drain up to ``limit`` queued analysis jobs."""
    if not settings.analysis.endpoint_url:
        print("Analysis endpoint is not configured.")
        return 1

    processor = HttpAnalysisProcessor(settings.analysis)
    with SqliteMailStore(settings.storage) as store:
        worker = AnalysisWorker(
            store, processor, max_attempts=settings.analysis.max_attempts
        )
        report = worker.run_once(limit)

    print(
        f"Claimed {report.claimed} job(s): {report.completed} completed, "
        f"{report.retried} re-queued, {report.failed} failed."
    )
    return 0


def _run_encrypt(settings: AppSettings, password: str | None) -> int:
    """Print the stored form of a mailbox password."""
    plaintext = password or getpass.getpass("Mailbox password: ")
    try:
        print(encrypt_password(plaintext, settings.security.password_encryption_key))
    except (SyncError, ValueError) as exc:
        print(f"Encryption failed: {exc}")
        return 1
    return 0


def _run_issue_session(settings: AppSettings, user_id: str | None) -> int:
    """Print a session token for ``user_id``."""
    if not user_id:
        print("--user-id is required for issue-session.")
        return 1
    try:
        print(issue_session_token(user_id, settings.security))
    except ValueError as exc:
        print(f"Cannot issue session: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    main()
