"""
Stuck-document sweep (scheduled hourly by Celery beat).

    PENDING    created more than 2 h ago   → FAILED  (upload never confirmed
                                                      or the event was lost)
    PROCESSING untouched for more than 1 h → FAILED  (a worker died mid-job)

Each swept document gets explanatory warnings and processed_at = now.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from grantsignal.db.repositories import DocumentRepository
from grantsignal.models.documents import ProcessingStatus

logger = logging.getLogger(__name__)

PENDING_MAX_AGE    = timedelta(hours=2)
PROCESSING_MAX_AGE = timedelta(hours=1)


def pending_warnings(now: datetime) -> list[str]:
    return [
        "Document stuck in PENDING status for over 2 hours.",
        "File upload may have failed or the upload was never confirmed.",
        "Please try uploading the document again.",
        f"Marked as failed by cleanup job at: {now.isoformat()}",
    ]


def processing_warnings(now: datetime) -> list[str]:
    return [
        "Document stuck in PROCESSING status for over 1 hour.",
        "Background job may have crashed or timed out.",
        "Please try reprocessing the document or contact support.",
        f"Marked as failed by cleanup job at: {now.isoformat()}",
    ]


class StuckDocumentSweeper:

    def __init__(self, repo: DocumentRepository) -> None:
        self._repo = repo

    async def sweep(self, now: datetime | None = None) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)

        stuck_pending = await self._repo.fail_stuck(
            ProcessingStatus.PENDING, now - PENDING_MAX_AGE, pending_warnings(now), now,
        )
        stuck_processing = await self._repo.fail_stuck(
            ProcessingStatus.PROCESSING, now - PROCESSING_MAX_AGE, processing_warnings(now), now,
        )

        logger.info(
            "Stuck document cleanup | pending=%d processing=%d",
            stuck_pending, stuck_processing,
        )
        return {
            "stuckPending":    stuck_pending,
            "stuckProcessing": stuck_processing,
            "totalFixed":      stuck_pending + stuck_processing,
            "timestamp":       now.isoformat(),
        }
