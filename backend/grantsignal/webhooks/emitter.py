"""
Webhook Emitter — fan a domain event out to subscribed endpoints

For each active, unpaused webhook of the organization subscribed to the
event type, one WebhookDelivery row is created (status=pending,
max_attempts=5) and a deliver_webhook task is enqueued for it. The HTTP
call itself happens in the worker (grantsignal.webhooks.delivery).

Envelope:
    {
      "id": "<uuid4>",
      "type": "document.processed",
      "timestamp": "<ISO-8601 UTC>",
      "organizationId": "...",
      "data": { ... event specific ... }
    }
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Protocol

from grantsignal.db.repositories import DocumentSummary, WebhookRepository

logger = logging.getLogger(__name__)

DOCUMENT_PROCESSED_EVENT = "document.processed"
MAX_DELIVERY_ATTEMPTS = 5


class DeliveryPublisher(Protocol):
    async def publish_webhook_delivery(
        self, delivery_id: str, webhook_id: str, countdown: int = 0,
    ) -> None: ...


def build_envelope(event_type: str, organization_id: str, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "id":             str(uuid.uuid4()),
        "type":           event_type,
        "timestamp":      datetime.now(timezone.utc).isoformat(),
        "organizationId": organization_id,
        "data":           data,
    }


class WebhookEmitter:

    def __init__(self, repo: WebhookRepository, publisher: DeliveryPublisher) -> None:
        self._repo = repo
        self._publisher = publisher

    async def emit(self, event_type: str, organization_id: str, data: dict[str, Any]) -> int:
        """Create and enqueue deliveries; returns how many were created."""
        envelope = build_envelope(event_type, organization_id, data)
        pairs = await self._repo.create_deliveries(
            organization_id, event_type, envelope, max_attempts=MAX_DELIVERY_ATTEMPTS,
        )
        if not pairs:
            logger.debug("No webhooks subscribed | event=%s org=%s", event_type, organization_id)
            return 0

        for delivery_id, webhook_id in pairs:
            await self._publisher.publish_webhook_delivery(delivery_id, webhook_id)

        logger.info(
            "Webhook deliveries created | event=%s org=%s count=%d",
            event_type, organization_id, len(pairs),
        )
        return len(pairs)

    async def emit_document_processed(
        self,
        organization_id: str,
        document:        DocumentSummary,
        status:          str,
        confidence:      int | None,
        has_warnings:    bool,
    ) -> int:
        return await self.emit(
            DOCUMENT_PROCESSED_EVENT,
            organization_id,
            {
                "documentId":      document.id,
                "status":          status,
                "confidenceScore": confidence,
                "hasWarnings":     has_warnings,
                "document": {
                    "id":      document.id,
                    "name":    document.name,
                    "type":    document.type,
                    "size":    document.size,
                    "grantId": document.grant_id,
                },
            },
        )
