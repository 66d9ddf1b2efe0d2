"""IMAP transport adapter providing bounded, newest-first mailbox access."""

from __future__ import annotations

import imaplib
import logging
import re
import ssl
from collections.abc import Callable, Iterator
from types import TracebackType

from ..core.config import SyncSettings
from ..core.errors import (
    AuthenticationError,
    ConnectTimeoutError,
    FolderNotFoundError,
    TLSError,
    TransportError,
)
from ..core.interfaces import MailTransport
from ..core.models import FolderInfo, MailboxAccount, RawMessage

LOGGER = logging.getLogger(__name__)

SECURITY_SSL = "SSL/TLS"
SECURITY_STARTTLS = "STARTTLS"
SECURITY_NONE = "None"

_FETCH_QUERY = "(UID FLAGS BODY.PEEK[])"
_UID_PATTERN = re.compile(rb"UID (\d+)")

TransportFactory = Callable[[MailboxAccount, str], MailTransport]


class ImapMailTransport(MailTransport):
    """Thin wrapper around ``imaplib`` owned by a single sync invocation."""

    # pylint: disable=too-many-arguments
    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        *,
        security: str = SECURITY_SSL,
        connect_timeout: float = 30.0,
        allow_invalid_certificates: bool = True,
    ) -> None:
        """Store connection parameters; no network activity happens here."""
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._security = security
        self._connect_timeout = connect_timeout
        self._allow_invalid_certificates = allow_invalid_certificates
        self._connection: imaplib.IMAP4 | imaplib.IMAP4_SSL | None = None
        self._folder: FolderInfo | None = None

    @classmethod
    def for_account(
        cls, account: MailboxAccount, password: str, settings: SyncSettings
    ) -> ImapMailTransport:
        """Build a transport for ``account`` using sync settings."""
        return cls(
            account.imap_host,
            account.imap_port or 993,
            account.login,
            password,
            security=account.imap_security or SECURITY_SSL,
            connect_timeout=settings.connect_timeout_seconds,
            allow_invalid_certificates=settings.allow_invalid_certificates,
        )

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> ImapMailTransport:
        """Connect on entering a context manager scope."""
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure the session is released on context exit."""
        self.logout()

    # Public API ---------------------------------------------------------------
    def connect(self) -> None:
        """Open the connection and authenticate."""
        if self._connection is not None:
            return

        connection: imaplib.IMAP4 | imaplib.IMAP4_SSL | None = None
        try:
            connection = self._open_connection()
            LOGGER.debug("Authenticating as %s", self._username)
            connection.login(self._username, self._password)
        except TimeoutError as exc:
            self._abandon(connection)
            raise ConnectTimeoutError(
                f"Timed out connecting to {self._host}:{self._port}"
            ) from exc
        except ssl.SSLError as exc:
            self._abandon(connection)
            raise TLSError(f"TLS error with {self._host}: {exc}") from exc
        except imaplib.IMAP4.abort as exc:
            self._abandon(connection)
            raise TransportError(f"IMAP connection aborted: {exc}") from exc
        except imaplib.IMAP4.error as exc:
            self._abandon(connection)
            if connection is None or connection.state != "NONAUTH":
                raise TransportError(f"IMAP error: {exc}") from exc
            raise AuthenticationError(f"Authentication failed: {exc}") from exc
        except OSError as exc:
            self._abandon(connection)
            raise TransportError(
                f"Unable to reach {self._host}:{self._port}: {exc}"
            ) from exc

        # The timeout bounds connection establishment only.
        if connection.sock is not None:
            connection.sock.settimeout(None)
        self._connection = connection
        LOGGER.info("Connected to %s:%s", self._host, self._port)

    def open_folder(self, name: str) -> FolderInfo:
        """Select ``name`` read-only and return its message count."""
        connection = self._require_connection()
        try:
            status, data = connection.select(_quote_folder(name), readonly=True)
        except imaplib.IMAP4.abort as exc:
            raise TransportError(f"IMAP connection aborted: {exc}") from exc
        except imaplib.IMAP4.error as exc:
            raise FolderNotFoundError(name) from exc
        if status != "OK":
            raise FolderNotFoundError(name)

        try:
            exists = int(data[0]) if data and data[0] else 0
        except (TypeError, ValueError):
            exists = 0
        self._folder = FolderInfo(name=name, exists=exists)
        LOGGER.debug("Opened folder %s with %s messages", name, exists)
        return self._folder

    def fetch_one(self, sequence_number: int) -> RawMessage | None:
        """Fetch raw bytes and flags for one message in the open folder."""
        connection = self._require_connection()
        try:
            status, data = connection.fetch(str(sequence_number), _FETCH_QUERY)
        except imaplib.IMAP4.abort as exc:
            raise TransportError(f"IMAP connection aborted: {exc}") from exc
        except imaplib.IMAP4.error as exc:
            LOGGER.warning("Failed to fetch message %s: %s", sequence_number, exc)
            return None
        if status != "OK":
            LOGGER.warning(
                "Server refused fetch of message %s (%s)", sequence_number, status
            )
            return None

        raw = _extract_message(sequence_number, data)
        if raw is None:
            LOGGER.warning("No message body returned for sequence %s", sequence_number)
        return raw

    def fetch_recent(self, limit: int) -> Iterator[RawMessage]:
        """Yield up to ``limit`` messages, highest sequence number first."""
        if self._folder is None:
            raise TransportError("No folder has been opened")
        total = self._folder.exists
        count = min(total, max(limit, 0))
        LOGGER.debug(
            "Fetching %s of %s messages from %s", count, total, self._folder.name
        )
        for sequence_number in range(total, total - count, -1):
            raw = self.fetch_one(sequence_number)
            if raw is not None:
                yield raw

    def logout(self) -> None:
        """Terminate the session, suppressing shutdown errors."""
        if self._connection is None:
            return
        try:
            LOGGER.debug("Logging out of %s", self._host)
            self._connection.logout()
        except (imaplib.IMAP4.error, OSError):  # pragma: no cover - server state
            LOGGER.debug("IMAP logout raised; suppressing during shutdown")
        finally:
            self._connection = None
            self._folder = None

    # Internal helpers ---------------------------------------------------------
    def _open_connection(self) -> imaplib.IMAP4 | imaplib.IMAP4_SSL:
        context = self._ssl_context()
        if self._security == SECURITY_SSL:
            LOGGER.debug("Connecting to %s:%s via SSL", self._host, self._port)
            return imaplib.IMAP4_SSL(
                self._host,
                self._port,
                ssl_context=context,
                timeout=self._connect_timeout,
            )

        LOGGER.debug("Connecting to %s:%s without SSL", self._host, self._port)
        connection = imaplib.IMAP4(
            self._host, self._port, timeout=self._connect_timeout
        )
        if self._security == SECURITY_STARTTLS:
            LOGGER.debug("Upgrading connection with STARTTLS")
            try:
                connection.starttls(ssl_context=context)
            except imaplib.IMAP4.error as exc:
                self._abandon(connection)
                raise TLSError(f"STARTTLS negotiation failed: {exc}") from exc
        return connection

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if self._allow_invalid_certificates:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _require_connection(self) -> imaplib.IMAP4 | imaplib.IMAP4_SSL:
        if self._connection is None:
            raise TransportError("IMAP connection has not been established")
        return self._connection

    @staticmethod
    def _abandon(connection: imaplib.IMAP4 | imaplib.IMAP4_SSL | None) -> None:
        if connection is None:
            return
        try:
            connection.shutdown()
        except OSError:  # pragma: no cover - socket already gone
            LOGGER.debug("Socket shutdown raised after failed connect")


def imap_transport_factory(settings: SyncSettings) -> TransportFactory:
    """Return a factory building IMAP transports with ``settings``."""

    def factory(account: MailboxAccount, password: str) -> MailTransport:
        return ImapMailTransport.for_account(account, password, settings)

    return factory


def _quote_folder(name: str) -> str:
    if name.startswith('"') and name.endswith('"'):
        return name
    if any(char in name for char in ' ()[]{}%*"\\'):
        escaped = name.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return name


def _extract_message(
    sequence_number: int, fetch_data: list[tuple[bytes, bytes] | bytes | None]
) -> RawMessage | None:
    """Extract the literal payload, UID and flags from a FETCH response."""
    source: bytes | None = None
    metadata = b""
    for entry in fetch_data:
        if isinstance(entry, tuple) and len(entry) == 2:
            metadata += entry[0]
            source = entry[1]
        elif isinstance(entry, bytes):
            metadata += entry
    if not source:
        return None

    uid_match = _UID_PATTERN.search(metadata)
    flags = tuple(
        flag.decode("ascii", errors="replace") for flag in imaplib.ParseFlags(metadata)
    )
    return RawMessage(
        sequence_number=sequence_number,
        uid=int(uid_match.group(1)) if uid_match else None,
        source=source,
        flags=flags,
    )


__all__ = [
    "ImapMailTransport",
    "SECURITY_NONE",
    "SECURITY_SSL",
    "SECURITY_STARTTLS",
    "TransportFactory",
    "imap_transport_factory",
]
