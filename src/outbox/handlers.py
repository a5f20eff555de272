"""Downstream delivery handlers for outbox entries."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from config import settings
from outbox.dispatcher import OutboxHandler
from outbox.errors import PermanentHandlerError
from outbox.store import OutboxMessage
from services.http_client import HttpClient, RetryConfig

logger = logging.getLogger(__name__)

AUTOFILL_COMPLETED = "autofill.completed"

# Client errors that a later attempt may still clear.
_RETRYABLE_CLIENT_STATUSES = {408, 409, 425, 429}


class WebhookHandler:
    """POST each entry to a webhook, keyed for idempotency by ``log_id``.

    The receiver sees the same ``Idempotency-Key`` on every redelivery of an
    entry and is expected to deduplicate on it.
    """

    def __init__(self, url: str, http_client: HttpClient | None = None) -> None:
        if not url:
            raise ValueError("webhook url is required.")
        self.url = url
        self._http = http_client or HttpClient(retry_config=RetryConfig(max_attempts=2))

    def __call__(self, entry: OutboxMessage) -> None:
        body: dict[str, Any] = {
            "log_id": entry.log_id,
            "kind": entry.kind,
            "owner_key": entry.owner_key,
            "attempt": entry.attempts,
            "payload": entry.payload,
        }
        try:
            response = self._http.post(
                self.url,
                json=body,
                headers={"Idempotency-Key": entry.log_id},
            )
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if 400 <= status < 500 and status not in _RETRYABLE_CLIENT_STATUSES:
                raise PermanentHandlerError(
                    f"webhook rejected entry {entry.log_id} with status {status}"
                ) from exc
            raise
        logger.debug(
            "Webhook delivered: log_id=%s status=%s", entry.log_id, response.status_code
        )


def build_handlers(
    *,
    webhook_url: str | None = None,
    http_client: HttpClient | None = None,
) -> dict[str, OutboxHandler]:
    """Return the kind-to-handler map for the configured downstreams."""
    url = webhook_url if webhook_url is not None else settings.outbox.webhook_url
    handlers: dict[str, OutboxHandler] = {}
    if url:
        handlers[AUTOFILL_COMPLETED] = WebhookHandler(url, http_client=http_client)
    else:
        logger.warning("No webhook configured; %s entries will fail as unroutable", AUTOFILL_COMPLETED)
    return handlers
