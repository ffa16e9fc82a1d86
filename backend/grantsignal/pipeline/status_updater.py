"""
Stage 3 — persist the parse result.

One atomic UPDATE scoped by (document_id, organization_id) sets text,
rounded confidence, metadata, warnings (NULL when there are none), the
terminal status and processed_at together. The status is decided on the
unrounded score, so 69.6 is stored as 70 but still NEEDS_REVIEW. This
is the only write that moves a document out of PENDING.

On success a `document.processed` webhook event is emitted; the emitter
is fire-and-forget and its failure is logged, never raised.

On failure a fallback write marks the document FAILED with
"Database update failed: <error>". If that also fails it is logged and
dropped, and the ORIGINAL error is re-raised.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from grantsignal.db.repositories import DocumentRepository, DocumentSummary
from grantsignal.models.documents import ProcessingStatus
from grantsignal.pipeline.status import Transition, next_status
from grantsignal.processing.parser import ParseResult
from grantsignal.webhooks.emitter import WebhookEmitter

logger = logging.getLogger(__name__)

DB_FAILURE_PREFIX = "Database update failed: "


@dataclass(frozen=True)
class StatusUpdate:
    document:     DocumentSummary
    status:       ProcessingStatus
    confidence:   int
    has_warnings: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "document":    asdict(self.document),
            "status":      self.status.value,
            "confidence":  self.confidence,
            "hasWarnings": self.has_warnings,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatusUpdate":
        return cls(
            document=DocumentSummary(**data["document"]),
            status=ProcessingStatus(data["status"]),
            confidence=data["confidence"],
            has_warnings=data["hasWarnings"],
        )


async def mark_failed_quietly(
    repo:            DocumentRepository,
    document_id:     str,
    organization_id: str,
    warning:         str,
) -> None:
    """Best-effort FAILED write; never raises."""
    try:
        await repo.mark_failed(document_id, organization_id, warning)
    except Exception:
        logger.exception("Fallback FAILED write did not persist | doc=%s", document_id)


class StatusUpdater:

    def __init__(
        self,
        repo:      DocumentRepository,
        emitter:   WebhookEmitter | None = None,
        timeout_s: float = 30.0,
    ) -> None:
        self._repo    = repo
        self._emitter = emitter
        self._timeout = timeout_s

    async def update(
        self,
        document_id:     str,
        organization_id: str,
        parsed:          ParseResult,
        current:         ProcessingStatus = ProcessingStatus.PENDING,
    ) -> StatusUpdate:
        confidence = int(round(parsed.confidence))
        status = next_status(current, Transition.parsed(parsed.confidence))
        warnings = list(parsed.warnings) or None

        try:
            summary = await asyncio.wait_for(
                self._repo.update_after_parse(
                    document_id,
                    organization_id,
                    extracted_text=parsed.text,
                    confidence=confidence,
                    metadata=dict(parsed.metadata),
                    warnings=warnings,
                    status=status,
                    processed_at=datetime.now(timezone.utc),
                ),
                timeout=self._timeout,
            )
        except Exception as exc:
            logger.error("Document update failed | doc=%s org=%s error=%s", document_id, organization_id, exc)
            await mark_failed_quietly(
                self._repo, document_id, organization_id, f"{DB_FAILURE_PREFIX}{exc}",
            )
            raise

        logger.info(
            "Document updated | doc=%s org=%s status=%s confidence=%d",
            document_id, organization_id, status.value, confidence,
        )

        result = StatusUpdate(
            document=summary,
            status=status,
            confidence=confidence,
            has_warnings=bool(warnings),
        )
        await self._emit(organization_id, result)
        return result

    async def _emit(self, organization_id: str, result: StatusUpdate) -> None:
        if self._emitter is None:
            return
        try:
            await self._emitter.emit_document_processed(
                organization_id,
                result.document,
                status=result.status.value,
                confidence=result.confidence,
                has_warnings=result.has_warnings,
            )
        except Exception:
            logger.exception("Webhook emission failed | doc=%s", result.document.id)
