"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from dotenv import dotenv_values
from pydantic import BaseModel, Field


class SecuritySettings(BaseModel):
    """Secrets used for credential decryption and caller authorisation."""

    password_encryption_key: str | None = Field(
        default=None, description="Hex key used to decrypt stored mailbox passwords"
    )
    internal_service_secret: str | None = Field(
        default=None, description="Shared secret identifying internal callers"
    )
    internal_user_agents: list[str] = Field(
        default_factory=lambda: ["inbox-sync-worker", "inbox-sync-scheduler"],
        description="User-Agent substrings accepted for internal callers",
    )
    session_secret: str | None = Field(
        default=None, description="HMAC secret for signing session tokens"
    )
    session_ttl_minutes: int = Field(
        default=720, ge=1, description="Lifetime of issued session tokens"
    )


class SyncSettings(BaseModel):
    """Settings bounding a single sync invocation."""

    default_max_emails: int = Field(
        default=100, ge=1, description="Messages requested when maxEmails is absent"
    )
    batch_size: int = Field(
        default=10, ge=1, description="Messages written per persistence batch"
    )
    connect_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Timeout for establishing the IMAP session"
    )
    allow_invalid_certificates: bool = Field(
        default=True,
        description="Accept self-signed or mismatched server certificates",
    )
    inbox_folder: str = Field(default="INBOX", description="Received mail folder")
    sent_folders: list[str] = Field(
        default_factory=lambda: [
            "Sent",
            "Sent Items",
            "Sent Messages",
            "INBOX.Sent",
            "[Gmail]/Sent Mail",
        ],
        description="Candidate names for the sent folder, tried in order",
    )
    analysis_batch_limit: int = Field(
        default=10,
        ge=0,
        description="Most recent admitted inbox messages handed to analysis",
    )


class StorageSettings(BaseModel):
    """Settings for local persistence."""

    db_path: Path = Field(
        default=Path("./inbox_sync.db"), description="SQLite database path"
    )


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle JSON structured logging"
    )


class AnalysisSettings(BaseModel):
    """Settings for the downstream analysis hand-off and consumer."""

    enabled: bool = Field(
        default=True, description="Publish admitted messages for analysis"
    )
    endpoint_url: str | None = Field(
        default=None, description="HTTP endpoint of the analysis processor"
    )
    timeout_seconds: int = Field(
        default=30, ge=1, description="Request timeout for analysis calls"
    )
    max_attempts: int = Field(
        default=3, ge=1, description="Attempts before a job is marked failed"
    )


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    security: SecuritySettings = Field(default_factory=SecuritySettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)


ENV_PREFIX = "INBOX_SYNC_"
_LIST_FIELDS = frozenset({"internal_user_agents", "sent_folders"})


def _normalize_key(raw_key: str) -> list[str]:
    """Convert an environment variable key into a nested attribute path."""
    trimmed = raw_key.removeprefix(ENV_PREFIX)
    return [segment.lower() for segment in trimmed.split("__") if segment]


def _merge_into_tree(tree: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a value to a nested dictionary given a path."""
    cursor = tree
    for segment in path[:-1]:
        next_node = cursor.setdefault(segment, {})
        cursor = cast(dict[str, Any], next_node)
    cursor[path[-1]] = value


def _coerce_value(field_name: str, value: Any) -> Any:
    if not isinstance(value, str):
        return value
    if value == "":
        return None
    if field_name in _LIST_FIELDS:
        return [item.strip() for item in value.split(",") if item.strip()]
    lowercase_value = value.lower()
    if lowercase_value == "true":
        return True
    if lowercase_value == "false":
        return False
    return value


def _collect_env_values(
    env_file: Path | str | None, include_environment: bool = True
) -> dict[str, Any]:
    """Load configuration values from environment variables and optional file."""
    collected: dict[str, Any] = {}

    file_values = {}
    if env_file:
        env_path = Path(env_file)
        if env_path.is_file():
            file_values = {
                key: value
                for key, value in dotenv_values(env_path).items()
                if key and key.startswith(ENV_PREFIX)
            }

    env_values = {}
    if include_environment:
        env_values = {
            key: value
            for key, value in os.environ.items()
            if key.startswith(ENV_PREFIX)
        }

    combined: dict[str, Any] = {**file_values, **env_values}

    for key, value in combined.items():
        path = _normalize_key(key)
        if not path:
            continue
        _merge_into_tree(collected, path, _coerce_value(path[-1], value))

    return collected


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Load application settings, applying env files and overrides."""
    collected = _collect_env_values(env_file, include_environment)
    if overrides:
        collected.update(overrides)
    return AppSettings.model_validate(collected)


__all__ = [
    "AnalysisSettings",
    "AppSettings",
    "LoggingSettings",
    "SecuritySettings",
    "StorageSettings",
    "SyncSettings",
    "load_app_settings",
]
