"""HTTP client delivering analysis contexts to the processing service."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx

from ..core.config import AnalysisSettings
from ..core.models import AnalysisContext

LOGGER = logging.getLogger(__name__)


class AnalysisError(RuntimeError):
    """Raised when the analysis service rejects or fails a request."""


@dataclass(slots=True)
class HttpAnalysisProcessor:
    """Thin synchronous client for the analysis service endpoint."""

    settings: AnalysisSettings
    attempts: int = 3
    sleep: Callable[[float], None] = field(default=time.sleep)
    transport: httpx.BaseTransport | None = None

    def process(self, context: AnalysisContext) -> None:
        """Submit ``context`` and wait for the service to accept it."""
        endpoint = self.settings.endpoint_url
        if not endpoint:
            raise AnalysisError("Analysis endpoint is not configured")

        last_error: Exception | None = None
        with httpx.Client(
            timeout=self.settings.timeout_seconds, transport=self.transport
        ) as client:
            for attempt in range(1, self.attempts + 1):
                try:
                    response = client.post(endpoint, json=context.to_payload())
                    response.raise_for_status()
                    body = response.json() if response.content else {}
                except httpx.HTTPStatusError as exc:
                    if exc.response.status_code < 500:
                        raise AnalysisError(
                            f"Analysis service rejected email {context.email_id}: "
                            f"{exc.response.status_code}"
                        ) from exc
                    last_error = exc
                except httpx.HTTPError as exc:  # pragma: no cover - network dependent
                    last_error = exc
                except json.JSONDecodeError as exc:
                    raise AnalysisError(
                        "Analysis service returned invalid JSON"
                    ) from exc
                else:
                    if isinstance(body, dict) and body.get("success") is False:
                        message = body.get("error") or "Analysis service failed"
                        raise AnalysisError(str(message))
                    LOGGER.debug("Analysis accepted for email %s", context.email_id)
                    return

                if attempt < self.attempts:
                    delay = min(2**attempt, 8)
                    LOGGER.debug(
                        "Analysis attempt %s for email %s failed; retrying in %ss",
                        attempt,
                        context.email_id,
                        delay,
                    )
                    self.sleep(delay)

        raise AnalysisError("Analysis request failed after retries") from last_error


__all__ = ["AnalysisError", "HttpAnalysisProcessor"]
