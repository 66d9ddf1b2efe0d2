"""Read-before-write duplicate filter for the ingestion path."""

from __future__ import annotations

import logging

from ..core.errors import PersistenceError
from ..core.interfaces import MailStore

LOGGER = logging.getLogger(__name__)


class DeduplicationGate:
    """Admit a message only if no index record exists for it yet.

    The check is not transactional; the storage layer's unique constraint on
    ``(message_id, email_account_id)`` catches writes that race past it.
    """

    def __init__(self, store: MailStore) -> None:
        self._store = store
        self._seen: set[tuple[str, str]] = set()

    def admit(
        self, message_id: str, account_id: str, source_key: str | None = None
    ) -> bool:
        """Return ``True`` when the message should be written."""
        keys = {(account_id, message_id)}
        if source_key:
            keys.add((account_id, f"source:{source_key}"))
        if keys & self._seen:
            LOGGER.debug("Message %s repeated within this sync, skipping", message_id)
            return False

        try:
            exists = self._store.message_exists(message_id, account_id, source_key)
        except PersistenceError as exc:
            # Dropped for this run; the next sync sees it again.
            LOGGER.warning("Duplicate check failed for %s: %s", message_id, exc)
            return False
        if exists:
            LOGGER.debug("Message %s already stored, skipping", message_id)
            return False

        self._seen.update(keys)
        return True


__all__ = ["DeduplicationGate"]
