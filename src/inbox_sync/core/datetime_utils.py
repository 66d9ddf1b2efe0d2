"""Datetime helpers shared across the application."""

from __future__ import annotations

from datetime import UTC, datetime

__all__ = [
    "ensure_utc",
    "parse_datetime",
    "serialize_datetime",
    "utc_now",
]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` in UTC, treating naive values as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def serialize_datetime(value: datetime | None) -> str | None:
    """Serialise ``value`` to an ISO 8601 UTC string."""
    normalized = ensure_utc(value)
    if normalized is None:
        return None
    return normalized.isoformat()


def parse_datetime(value: str | None) -> datetime | None:
    """Parse an ISO 8601 string into an aware ``datetime`` instance."""
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))
