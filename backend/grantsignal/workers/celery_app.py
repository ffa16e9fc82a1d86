"""
Celery Application Factory

Broker: Redis (redis://) by default; any kombu transport URL works.
Result backend: Redis. Pipeline state lives in PostgreSQL and the step
cache, so results are kept only briefly for debugging.

Queue topology:
  documents.ingest     — one process_document task per upload event
  notifications.send   — document-processed emails
  webhooks.deliver     — outbound webhook POSTs (self-rescheduling)
  system.health        — health checks + hourly stuck-document cleanup

Task payloads carry ids and storage keys only, never file bytes.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.schedules import crontab
from celery.signals import (
    celeryd_after_setup,
    task_failure,
    task_postrun,
    task_prerun,
    worker_process_init,
)
from kombu import Exchange, Queue

from grantsignal.core.bootstrap import configure_logging
from grantsignal.core.config import get_settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

DOCUMENTS_EXCHANGE = Exchange("documents", type="direct", durable=True)
NOTIFY_EXCHANGE    = Exchange("notifications", type="direct", durable=True)
WEBHOOK_EXCHANGE   = Exchange("webhooks", type="direct", durable=True)
SYSTEM_EXCHANGE    = Exchange("system", type="direct", durable=True)

TASK_QUEUES = (
    Queue("documents.ingest", exchange=DOCUMENTS_EXCHANGE, routing_key="documents.ingest", durable=True),
    Queue("notifications.send", exchange=NOTIFY_EXCHANGE, routing_key="notifications.send", durable=True),
    Queue("webhooks.deliver", exchange=WEBHOOK_EXCHANGE, routing_key="webhooks.deliver", durable=True),
    Queue("system.health", exchange=SYSTEM_EXCHANGE, routing_key="system.health", durable=True),
)

TASK_ROUTES = {
    "grantsignal.workers.tasks.process_document":                    {"queue": "documents.ingest"},
    "grantsignal.workers.tasks.send_document_processed_notification": {"queue": "notifications.send"},
    "grantsignal.workers.tasks.deliver_webhook":                     {"queue": "webhooks.deliver"},
    "grantsignal.workers.tasks.cleanup_stuck_documents":             {"queue": "system.health"},
    "grantsignal.workers.tasks.health_check":                        {"queue": "system.health"},
}


def create_celery_app() -> Celery:
    settings = get_settings()
    app = Celery("grantsignal")

    app.conf.update(
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,

        # --- Serialization (reject non-JSON messages) ---
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        # --- Queues ---
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue="documents.ingest",
        task_default_exchange="documents",
        task_default_routing_key="documents.ingest",

        # --- Reliability ---
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,

        # --- Retries ---
        task_max_retries=3,
        task_default_retry_delay=30,

        # --- Timeouts ---
        task_soft_time_limit=600,
        task_time_limit=660,

        result_expires=3600,

        timezone="UTC",
        enable_utc=True,

        beat_schedule={
            "cleanup-stuck-documents-hourly": {
                "task":     "grantsignal.workers.tasks.cleanup_stuck_documents",
                "schedule": crontab(minute=0),
                "options":  {"queue": "system.health"},
            },
        },

        worker_max_tasks_per_child=200,
    )

    app.autodiscover_tasks(["grantsignal.workers"])
    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals: logging setup and task lifecycle
# ---------------------------------------------------------------------------

@celeryd_after_setup.connect
def on_worker_setup(sender, instance, **_):
    configure_logging(get_settings())


@worker_process_init.connect
def on_worker_process_init(**_):
    configure_logging(get_settings())


def _doc_id(kwargs: dict | None) -> str:
    kwargs = kwargs or {}
    payload = kwargs.get("event") or kwargs.get("intent") or {}
    return payload.get("documentId") or kwargs.get("delivery_id") or "?"


@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info("Task start | task_id=%s task=%s ref=%s", task_id, task.name, _doc_id(kwargs))


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s ref=%s",
        task_id, task.name, state, _doc_id(kwargs),
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s ref=%s error=%s",
        task_id, _doc_id(kwargs), exception,
        exc_info=True,
    )
