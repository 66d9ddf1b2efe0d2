"""Tests for the read-before-write deduplication gate."""

from __future__ import annotations

from inbox_sync.core.errors import PersistenceError
from inbox_sync.ingestion import DeduplicationGate


class LookupStore:
    """Store stub answering duplicate checks from a fixed set."""

    def __init__(self, existing: set[str], fail: bool = False) -> None:
        self.existing = existing
        self.fail = fail
        self.lookups: list[tuple[str, str, str | None]] = []

    def message_exists(
        self, message_id: str, account_id: str, source_key: str | None = None
    ) -> bool:
        self.lookups.append((message_id, account_id, source_key))
        if self.fail:
            raise PersistenceError("database is locked")
        return message_id in self.existing or source_key in self.existing


def test_new_message_is_admitted() -> None:
    store = LookupStore(existing=set())
    gate = DeduplicationGate(store)  # type: ignore[arg-type]

    assert gate.admit("abc", "acc-1") is True
    assert store.lookups == [("abc", "acc-1", None)]


def test_stored_message_is_rejected() -> None:
    gate = DeduplicationGate(LookupStore(existing={"abc"}))  # type: ignore[arg-type]

    assert gate.admit("abc", "acc-1") is False


def test_surrogate_id_is_matched_through_source_key() -> None:
    store = LookupStore(existing={"1234@example.com"})
    gate = DeduplicationGate(store)  # type: ignore[arg-type]

    assert gate.admit("gen-1-aa", "acc-1", "1234@example.com") is False


def test_repeat_within_run_skips_store_lookup() -> None:
    store = LookupStore(existing=set())
    gate = DeduplicationGate(store)  # type: ignore[arg-type]

    assert gate.admit("gen-1-aa", "acc-1", "key") is True
    assert gate.admit("gen-2-bb", "acc-1", "key") is False
    assert len(store.lookups) == 1


def test_lookup_failure_drops_message() -> None:
    gate = DeduplicationGate(LookupStore(set(), fail=True))  # type: ignore[arg-type]

    assert gate.admit("abc", "acc-1") is False
