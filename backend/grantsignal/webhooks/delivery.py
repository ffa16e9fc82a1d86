"""
Webhook Delivery — one signed POST per task run

Attempt accounting lives in webhook_deliveries, not in Celery: each run
makes exactly one HTTP attempt and, on failure with attempts remaining,
re-enqueues itself with a countdown of

    backoff(n) = min(30 · 2^n, 480) seconds      (n = attempts so far)

i.e. 60 s, 2 min, 4 min, 8 min, 8 min. A webhook that fails 10 times in a
row is paused by the repository.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from grantsignal.db.repositories import WebhookRepository
from grantsignal.webhooks.emitter import DeliveryPublisher
from grantsignal.webhooks.signing import (
    DELIVERY_HEADER,
    EVENT_HEADER,
    SIGNATURE_HEADER,
    USER_AGENT,
    canonical_json,
    sign,
)

logger = logging.getLogger(__name__)

BACKOFF_BASE_SECONDS = 30
BACKOFF_MAX_SECONDS  = 480
MAX_RESPONSE_BODY    = 4096


def backoff_seconds(attempt: int) -> int:
    return min(BACKOFF_BASE_SECONDS * (2 ** attempt), BACKOFF_MAX_SECONDS)


class DeliveryNotFoundError(LookupError):
    pass


class WebhookDeliverer:

    def __init__(
        self,
        repo:      WebhookRepository,
        http:      httpx.AsyncClient,
        publisher: DeliveryPublisher,
        timeout_s: float = 30.0,
    ) -> None:
        self._repo      = repo
        self._http      = http
        self._publisher = publisher
        self._timeout   = timeout_s

    async def deliver(self, delivery_id: str) -> dict[str, Any]:
        found = await self._repo.get_delivery(delivery_id)
        if found is None:
            raise DeliveryNotFoundError(f"Delivery not found: {delivery_id}")
        delivery, webhook = found

        now = datetime.now(timezone.utc)
        if not webhook.is_active or webhook.is_paused:
            await self._repo.update_delivery(
                delivery_id,
                status="failed",
                error_message="Webhook is inactive or paused",
                completed_at=now,
            )
            return {"success": False, "reason": "webhook_inactive"}

        body = canonical_json(delivery.payload)
        attempt = delivery.attempts + 1
        await self._repo.update_delivery(
            delivery_id, attempts=attempt, last_attempt_at=now, status="retrying",
        )

        http_status: int | None = None
        response_body: str | None = None
        try:
            resp = await self._http.post(
                webhook.url,
                content=body.encode("utf-8"),
                headers={
                    "Content-Type":   "application/json",
                    SIGNATURE_HEADER: sign(body, webhook.signing_secret),
                    EVENT_HEADER:     delivery.event_type,
                    DELIVERY_HEADER:  delivery.id,
                    "User-Agent":     USER_AGENT,
                },
                timeout=self._timeout,
            )
            http_status = resp.status_code
            response_body = resp.text[:MAX_RESPONSE_BODY]
            error = None if resp.is_success else f"HTTP {resp.status_code}: {resp.reason_phrase}"
        except httpx.HTTPError as exc:
            error = str(exc) or type(exc).__name__

        if error is None:
            await self._repo.update_delivery(
                delivery_id,
                status="success",
                http_status=http_status,
                response_body=response_body,
                completed_at=datetime.now(timezone.utc),
            )
            if webhook.failure_count > 0:
                await self._repo.record_webhook_result(webhook.id, success=True)
            logger.info("Webhook delivered | delivery=%s status=%s", delivery_id, http_status)
            return {"success": True, "httpStatus": http_status}

        should_retry = attempt < delivery.max_attempts
        await self._repo.update_delivery(
            delivery_id,
            status="pending" if should_retry else "failed",
            http_status=http_status,
            response_body=response_body,
            error_message=error,
            completed_at=None if should_retry else datetime.now(timezone.utc),
        )
        await self._repo.record_webhook_result(webhook.id, success=False, reason=error)

        if should_retry:
            await self._publisher.publish_webhook_delivery(
                delivery_id, webhook.id, countdown=backoff_seconds(attempt),
            )

        return {
            "success": False,
            "shouldRetry": should_retry,
            "httpStatus": http_status,
            "error": error,
        }
