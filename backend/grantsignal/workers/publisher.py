"""
Task Publisher — enqueue Celery tasks from async code.

Tasks are addressed by name (send_task), so publishing never imports the
task module and the API process needs no worker-side dependencies.
Broker calls are synchronous and run in the default executor.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any

from celery import Celery

logger = logging.getLogger(__name__)

PROCESS_DOCUMENT_TASK = "grantsignal.workers.tasks.process_document"
SEND_NOTIFICATION_TASK = "grantsignal.workers.tasks.send_document_processed_notification"
DELIVER_WEBHOOK_TASK = "grantsignal.workers.tasks.deliver_webhook"


class TaskPublisher:

    def __init__(self, celery_app: Celery) -> None:
        self._celery = celery_app

    async def _send(self, name: str, kwargs: dict[str, Any], **options: Any) -> str:
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(
            None,
            functools.partial(self._celery.send_task, name, kwargs=kwargs, **options),
        )
        return result.id

    async def publish_document_uploaded(self, event: dict[str, str]) -> str:
        task_id = await self._send(PROCESS_DOCUMENT_TASK, {"event": event})
        logger.info(
            "Processing task published | doc=%s org=%s task_id=%s",
            event["documentId"], event["organizationId"], task_id,
        )
        return task_id

    async def publish_notification(self, intent: dict[str, Any]) -> None:
        await self._send(SEND_NOTIFICATION_TASK, {"intent": intent})
        logger.debug("Notification intent published | doc=%s user=%s", intent["documentId"], intent["userId"])

    async def publish_webhook_delivery(
        self, delivery_id: str, webhook_id: str, countdown: int = 0,
    ) -> None:
        await self._send(
            DELIVER_WEBHOOK_TASK,
            {"delivery_id": delivery_id, "webhook_id": webhook_id},
            countdown=countdown,
        )
