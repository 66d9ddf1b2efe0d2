"""Persistence adapters."""

from .sqlite import SqliteMailStore

__all__ = ["SqliteMailStore"]
