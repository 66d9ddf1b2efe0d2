"""Core utilities for configuration, logging, errors and domain models."""

from .config import AppSettings, SyncSettings, load_app_settings
from .errors import SyncError
from .logging import configure_logging

__all__ = [
    "AppSettings",
    "SyncError",
    "SyncSettings",
    "configure_logging",
    "load_app_settings",
]
