"""Transport adapters for remote mailboxes."""

from .imap_client import ImapMailTransport, TransportFactory, imap_transport_factory

__all__ = ["ImapMailTransport", "TransportFactory", "imap_transport_factory"]
