"""
Stage 6 — fan out notification intents to opted-in users.

A user receives an intent only when they HAVE a preferences row AND its
document_processed_enabled flag is set. Users without preferences get
nothing. The consumer task sends the email and logs it.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from grantsignal.db.repositories import NotificationRepository
from grantsignal.pipeline.results import Completed, Skipped, StageOutcome

logger = logging.getLogger(__name__)


class NotificationPublisher(Protocol):
    async def publish_notification(self, intent: dict[str, Any]) -> None: ...


class NotificationDispatcher:

    def __init__(self, repo: NotificationRepository, publisher: NotificationPublisher) -> None:
        self._repo = repo
        self._publisher = publisher

    async def run(self, document_id: str, organization_id: str, status: str) -> StageOutcome:
        try:
            recipients = await self._repo.list_recipients(organization_id)
            sent = 0
            for user in recipients:
                if not user.document_processed_enabled:
                    continue
                await self._publisher.publish_notification({
                    "documentId": document_id,
                    "userId":     user.user_id,
                    "email":      user.email,
                    "status":     status,
                })
                sent += 1
        except Exception as exc:
            logger.exception("Notification dispatch failed | doc=%s org=%s", document_id, organization_id)
            return Skipped("Notification dispatch error", error=str(exc) or type(exc).__name__)

        logger.info(
            "Notifications dispatched | doc=%s org=%s sent=%d users=%d",
            document_id, organization_id, sent, len(recipients),
        )
        return Completed({"notificationsSent": sent})
