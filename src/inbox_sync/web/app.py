"""FastAPI application exposing the sync trigger."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from inbox_sync.core import AppSettings, load_app_settings
from inbox_sync.core.datetime_utils import serialize_datetime
from inbox_sync.core.errors import InvalidRequestError, SyncError, SyncFailedError
from inbox_sync.core.models import SyncReport
from inbox_sync.ingestion import SyncOrchestrator, SyncRequest
from inbox_sync.ingestion.orchestrator import StoreFactory
from inbox_sync.security.sessions import (
    INTERNAL_SECRET_HEADER,
    SESSION_COOKIE_NAME,
    CallerAuthorizer,
    CallerCredentials,
)
from inbox_sync.storage import SqliteMailStore
from inbox_sync.transport import TransportFactory, imap_transport_factory

LOGGER = logging.getLogger(__name__)

SYNC_ROUTE = "/api/emails/sync-to-database"

_ENV_FILE_OVERRIDE_VAR = "INBOX_SYNC_ENV_FILE"
_DEFAULT_ENV_FILE = Path(".env")


class SyncRequestBody(BaseModel):
    """JSON body accepted by the sync trigger."""

    model_config = ConfigDict(populate_by_name=True)

    account_id: str | None = Field(default=None, alias="accountId")
    max_emails: int | None = Field(default=None, alias="maxEmails")
    user_id: str | None = Field(default=None, alias="userId")


def create_app(
    settings: AppSettings | None = None,
    *,
    store_factory: StoreFactory | None = None,
    transport_factory: TransportFactory | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app_settings = settings or load_app_settings(env_file=_resolve_env_file())
    app = FastAPI(title="Inbox Sync")

    authorizer = CallerAuthorizer(app_settings.security)
    resolved_store_factory: StoreFactory = store_factory or (
        lambda: SqliteMailStore(app_settings.storage)
    )
    resolved_transport_factory = transport_factory or imap_transport_factory(
        app_settings.sync
    )

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post(SYNC_ROUTE)
    async def sync_to_database(request: Request) -> JSONResponse:
        caller = _caller_from_request(request)
        payload = await _read_json(request)

        try:
            body = SyncRequestBody.model_validate(payload)
        except ValidationError:
            # Unauthenticated callers get 401 even when the body is malformed.
            try:
                authorizer.authorize(caller, _raw_user_id(payload))
            except SyncError as exc:
                return _error_response(exc)
            return _error_response(InvalidRequestError("Invalid request body"))

        orchestrator = SyncOrchestrator(
            app_settings,
            authorizer=authorizer,
            store_factory=resolved_store_factory,
            transport_factory=resolved_transport_factory,
        )
        sync_request = SyncRequest(
            account_id=body.account_id,
            caller=caller,
            max_emails=body.max_emails,
            user_id=body.user_id,
        )
        try:
            report = await asyncio.to_thread(orchestrator.run, sync_request)
        except SyncError as exc:
            LOGGER.info(
                "Sync request for account %s failed with %s: %s",
                body.account_id,
                int(exc.status_code),
                exc.public_message,
            )
            return _error_response(exc)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.error("Unexpected sync failure: %s", exc, exc_info=True)
            return _error_response(SyncFailedError(str(exc) or None))

        return JSONResponse(_success_payload(report))

    return app


def _caller_from_request(request: Request) -> CallerCredentials:
    return CallerCredentials(
        session_token=request.cookies.get(SESSION_COOKIE_NAME),
        service_key=request.headers.get(INTERNAL_SECRET_HEADER),
        user_agent=request.headers.get("user-agent"),
    )


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


def _raw_user_id(payload: Any) -> str | None:
    if isinstance(payload, Mapping):
        value = payload.get("userId")
        return value if isinstance(value, str) else None
    return None


def _success_payload(report: SyncReport) -> dict[str, Any]:
    return {
        "success": True,
        "message": report.message,
        "totalSaved": report.total_saved,
        "breakdown": {"inbox": report.inbox, "sent": report.sent},
        "syncedAt": serialize_datetime(report.synced_at),
    }


def _error_response(exc: SyncError) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": exc.public_message},
        status_code=int(exc.status_code),
    )


def _resolve_env_file() -> Path:
    override = os.getenv(_ENV_FILE_OVERRIDE_VAR)
    if override:
        return Path(override)
    return _DEFAULT_ENV_FILE


__all__ = ["SYNC_ROUTE", "SyncRequestBody", "create_app"]
