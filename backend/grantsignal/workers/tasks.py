"""
Celery Tasks

Task: process_document
  Runs the six-stage DocumentPipeline for one `document.uploaded` event.
  Load-bearing failures (download, parse, DB write) raise
  PipelineStageError and are retried up to 3 times with backoff; the
  document has already been marked FAILED by then. Completed steps are
  replayed from the step cache on retry.
  A run that finds the job lock held (a concurrent duplicate, or a
  redelivery after a worker crash) retries every minute until the lock
  is released or expires.

Task: send_document_processed_notification
  Emails one opted-in user and writes the NotificationLog row.

Task: deliver_webhook
  One signed POST attempt; the deliverer reschedules itself on failure,
  so Celery-level retries are disabled.

Task: cleanup_stuck_documents
  Hourly (beat): PENDING > 2 h and PROCESSING > 1 h → FAILED.

Every task opens its own Container (clients bound to the task's loop).
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from typing import Any

from celery import Task

from grantsignal.core.bootstrap import open_container
from grantsignal.core.config import get_settings
from grantsignal.notifications.email import EmailSendError
from grantsignal.pipeline.cleanup import StuckDocumentSweeper
from grantsignal.pipeline.orchestrator import (
    DocumentUploadedEvent,
    JobInFlightError,
    PipelineStageError,
)
from grantsignal.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    # called from inside a running loop (eventlet/gevent pools, tests)
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


def retry_countdown(retries: int) -> int:
    """30 s, 60 s, 120 s."""
    return 30 * (2 ** retries)


LOCK_WAIT_COUNTDOWN = 60


def lock_wait_retries(lock_ttl_seconds: int) -> int:
    """Enough waits to outlast a lock left behind by a crashed worker."""
    return lock_ttl_seconds // LOCK_WAIT_COUNTDOWN + 1


# ---------------------------------------------------------------------------
# Document pipeline
# ---------------------------------------------------------------------------

@celery_app.task(
    name="grantsignal.workers.tasks.process_document",
    bind=True,
    max_retries=3,
    acks_late=True,
    reject_on_worker_lost=True,
    soft_time_limit=570,
    time_limit=630,
)
def process_document(self: Task, *, event: dict[str, str]) -> dict[str, Any]:
    try:
        return run_async(_process_document_async(event))
    except PipelineStageError as exc:
        logger.warning(
            "Pipeline stage failed | doc=%s stage=%s attempt=%d error=%s",
            event.get("documentId"), exc.stage, self.request.retries + 1, exc.cause,
        )
        raise self.retry(exc=exc, countdown=retry_countdown(self.request.retries))
    except JobInFlightError as exc:
        logger.info(
            "Waiting for in-flight run | doc=%s attempt=%d",
            event.get("documentId"), self.request.retries + 1,
        )
        raise self.retry(
            exc=exc,
            countdown=LOCK_WAIT_COUNTDOWN,
            max_retries=lock_wait_retries(get_settings().job_lock_ttl_seconds),
        )


async def _process_document_async(payload: dict[str, str]) -> dict[str, Any]:
    event = DocumentUploadedEvent.from_payload(payload)
    async with open_container() as container:
        result = await container.pipeline().run(event)
    return result.to_dict()


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

@celery_app.task(
    name="grantsignal.workers.tasks.send_document_processed_notification",
    bind=True,
    max_retries=3,
    acks_late=True,
)
def send_document_processed_notification(self: Task, *, intent: dict[str, Any]) -> dict[str, Any]:
    try:
        return run_async(_send_notification_async(intent))
    except EmailSendError as exc:
        raise self.retry(exc=exc, countdown=retry_countdown(self.request.retries))


async def _send_notification_async(intent: dict[str, Any]) -> dict[str, Any]:
    async with open_container() as container:
        return await container.notifier().handle(intent)


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

@celery_app.task(
    name="grantsignal.workers.tasks.deliver_webhook",
    max_retries=0,
    acks_late=True,
)
def deliver_webhook(*, delivery_id: str, webhook_id: str) -> dict[str, Any]:
    return run_async(_deliver_webhook_async(delivery_id))


async def _deliver_webhook_async(delivery_id: str) -> dict[str, Any]:
    async with open_container() as container:
        return await container.webhook_deliverer().deliver(delivery_id)


# ---------------------------------------------------------------------------
# Scheduled cleanup
# ---------------------------------------------------------------------------

@celery_app.task(
    name="grantsignal.workers.tasks.cleanup_stuck_documents",
    acks_late=True,
    soft_time_limit=240,
    time_limit=300,
)
def cleanup_stuck_documents() -> dict[str, Any]:
    return run_async(_cleanup_async())


async def _cleanup_async() -> dict[str, Any]:
    async with open_container() as container:
        return await StuckDocumentSweeper(container.documents).sweep()


# ---------------------------------------------------------------------------
# Health check task
# ---------------------------------------------------------------------------

@celery_app.task(name="grantsignal.workers.tasks.health_check")
def health_check() -> dict[str, str]:
    return {"status": "ok", "worker": "healthy"}
