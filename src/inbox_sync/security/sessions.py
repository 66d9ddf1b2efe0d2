"""Session tokens and caller authorisation for the sync trigger."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

from jose import JWTError, jwt

from ..core.config import SecuritySettings
from ..core.datetime_utils import utc_now
from ..core.errors import UnauthorizedError

LOGGER = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "inbox_sync_session"
INTERNAL_SECRET_HEADER = "X-Internal-Service-Key"
_ALGORITHM = "HS256"


@dataclass(slots=True)
class CallerCredentials:
    """Authentication material presented with a sync request."""

    session_token: str | None = None
    service_key: str | None = None
    user_agent: str | None = None


def issue_session_token(user_id: str, settings: SecuritySettings) -> str:
    """Create a signed session token for ``user_id``."""
    if not settings.session_secret:
        raise ValueError("Session secret is not configured")
    issued_at = utc_now()
    payload = {
        "sub": user_id,
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=settings.session_ttl_minutes),
    }
    return jwt.encode(payload, settings.session_secret, algorithm=_ALGORITHM)


def internal_caller(settings: SecuritySettings) -> CallerCredentials:
    """Credentials this process presents when it triggers syncs itself."""
    agents = [agent for agent in settings.internal_user_agents if agent]
    return CallerCredentials(
        service_key=settings.internal_service_secret,
        user_agent=agents[0] if agents else None,
    )


def verify_session_token(token: str, settings: SecuritySettings) -> str | None:
    """Return the user id carried by ``token`` or ``None`` when invalid."""
    if not token or not settings.session_secret:
        return None
    try:
        payload = jwt.decode(token, settings.session_secret, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    subject = payload.get("sub")
    return subject if isinstance(subject, str) and subject else None


class CallerAuthorizer:
    """Resolve the acting user from a session or an internal service caller."""

    def __init__(self, settings: SecuritySettings) -> None:
        self._settings = settings

    def authorize(
        self, caller: CallerCredentials, requested_user_id: str | None
    ) -> str:
        """Return the user id the sync runs as.

        Raises:
            UnauthorizedError: neither path yields a user.
        """
        if caller.session_token:
            user_id = verify_session_token(caller.session_token, self._settings)
            if user_id:
                return user_id
            LOGGER.debug("Session token rejected")

        if self._is_internal_caller(caller):
            if requested_user_id:
                LOGGER.info("Internal caller acting for user %s", requested_user_id)
                return requested_user_id
            LOGGER.warning("Internal caller omitted userId")

        raise UnauthorizedError()

    def _is_internal_caller(self, caller: CallerCredentials) -> bool:
        expected = self._settings.internal_service_secret
        if not expected or not caller.service_key:
            return False
        if not secrets.compare_digest(
            caller.service_key.encode("utf-8"), expected.encode("utf-8")
        ):
            LOGGER.warning("Internal service key mismatch")
            return False
        user_agent = (caller.user_agent or "").lower()
        return any(
            marker.lower() in user_agent
            for marker in self._settings.internal_user_agents
            if marker
        )


__all__ = [
    "CallerAuthorizer",
    "CallerCredentials",
    "INTERNAL_SECRET_HEADER",
    "SESSION_COOKIE_NAME",
    "internal_caller",
    "issue_session_token",
    "verify_session_token",
]
