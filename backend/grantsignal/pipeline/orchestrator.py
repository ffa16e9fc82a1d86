"""
Document Pipeline — one `document.uploaded` event, six ordered stages
═════════════════════════════════════════════════════════════════════

  ┌──────────────────────────────────────────────────────────────────┐
  │  1. download         blob store fetch            ─┐              │
  │  2. parse            bytes + MIME → ParseResult   ├─ load-bearing │
  │  3. update-document  single atomic DB write      ─┘  (raise)      │
  │  4. vectorize        chunk → embed → upsert      ─┐              │
  │  5. commitments      gated LLM extraction         ├─ best-effort  │
  │  6. notify           opted-in user fan-out       ─┘  (absorb)     │
  └──────────────────────────────────────────────────────────────────┘

Load-bearing failures mark the document FAILED (best-effort write) and
surface as PipelineStageError so the Celery task retries the job.
Best-effort stages return Completed | Skipped and never raise.

Every stage result after the download is checkpointed through the step
cache; a retried job replays finished stages instead of redoing their
side effects. A job lock keyed by (documentId, storageKey) turns a
concurrent duplicate of the same upload event into JobInFlightError,
which the task retries until the holder finishes or its lock expires.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from grantsignal.db.repositories import DocumentRepository
from grantsignal.pipeline.commitments import CommitmentStage
from grantsignal.pipeline.notifier import NotificationDispatcher
from grantsignal.pipeline.results import StageOutcome, outcome_from_dict
from grantsignal.pipeline.status_updater import (
    StatusUpdate,
    StatusUpdater,
    mark_failed_quietly,
)
from grantsignal.pipeline.steps import (
    InMemoryStepCache,
    JobLock,
    StepCache,
    StepRunner,
    idempotency_key,
)
from grantsignal.pipeline.vectorizer import Vectorizer
from grantsignal.processing.parser import DocumentParser, ParseResult
from grantsignal.storage.s3 import BlobStore

logger = logging.getLogger(__name__)

DOWNLOAD_FAILURE_PREFIX = "Failed to download document from storage: "
PARSE_FAILURE_PREFIX    = "Failed to parse document: "


class PipelineStageError(Exception):
    """A load-bearing stage failed; the job should be retried."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"{stage} failed: {cause}")
        self.stage = stage
        self.cause = cause


class JobInFlightError(Exception):
    """Another run holds the lock for this (documentId, storageKey); try again later."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Upload event already in flight for document {document_id}")
        self.document_id = document_id


@dataclass(frozen=True)
class DocumentUploadedEvent:
    document_id:     str
    organization_id: str
    storage_key:     str
    mime_type:       str

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "DocumentUploadedEvent":
        """Accepts the camelCase wire payload (`s3Key` as an alias of `storageKey`)."""
        return cls(
            document_id=data["documentId"],
            organization_id=data["organizationId"],
            storage_key=data.get("storageKey") or data["s3Key"],
            mime_type=data["mimeType"],
        )

    def to_payload(self) -> dict[str, str]:
        return {
            "documentId":     self.document_id,
            "organizationId": self.organization_id,
            "storageKey":     self.storage_key,
            "mimeType":       self.mime_type,
        }


@dataclass
class PipelineResult:
    document_id:   str
    status:        str
    confidence:    int | None = None
    stages:        dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "documentId": self.document_id,
            "status":     self.status,
            "confidence": self.confidence,
            **self.stages,
        }


class DocumentPipeline:
    """
    All collaborators are injected (see grantsignal.core.bootstrap).

    Usage:
        pipeline = DocumentPipeline(blob_store=..., parser=..., ...)
        result   = await pipeline.run(DocumentUploadedEvent(...))
    """

    def __init__(
        self,
        *,
        repo:            DocumentRepository,
        blob_store:      BlobStore,
        parser:          DocumentParser,
        status_updater:  StatusUpdater,
        vectorizer:      Vectorizer,
        commitments:     CommitmentStage,
        notifier:        NotificationDispatcher,
        step_cache:      StepCache | None = None,
        job_lock:        JobLock | None = None,
        parse_timeout_s: float = 120.0,
    ) -> None:
        self._repo           = repo
        self._blob_store     = blob_store
        self._parser         = parser
        self._status_updater = status_updater
        self._vectorizer     = vectorizer
        self._commitments    = commitments
        self._notifier       = notifier
        self._cache          = step_cache or InMemoryStepCache()
        self._lock           = job_lock
        self._parse_timeout  = parse_timeout_s

    async def run(self, event: DocumentUploadedEvent) -> PipelineResult:
        key = idempotency_key(event.document_id, event.storage_key)

        token = None
        if self._lock is not None:
            token = await self._lock.acquire(key)
            if token is None:
                logger.warning(
                    "Upload event already in flight | doc=%s org=%s",
                    event.document_id, event.organization_id,
                )
                raise JobInFlightError(event.document_id)

        try:
            return await self._run(event, StepRunner(self._cache, key))
        finally:
            if self._lock is not None and token is not None:
                await self._lock.release(key, token)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _run(self, event: DocumentUploadedEvent, steps: StepRunner) -> PipelineResult:
        doc_id, org_id = event.document_id, event.organization_id
        logger.info("Processing | doc=%s org=%s mime=%s", doc_id, org_id, event.mime_type)

        # ── 1 + 2: download and parse (download skipped when parse is cached)
        parsed = await steps.run(
            "parse",
            lambda: self._download_and_parse(event),
            encode=ParseResult.to_dict,
            decode=ParseResult.from_dict,
        )

        # ── 3: single atomic write ───────────────────────────────────────
        try:
            update: StatusUpdate = await steps.run(
                "update-document",
                lambda: self._status_updater.update(doc_id, org_id, parsed),
                encode=StatusUpdate.to_dict,
                decode=StatusUpdate.from_dict,
            )
        except Exception as exc:
            raise PipelineStageError("update-document", exc) from exc

        # ── 4–6: best-effort ─────────────────────────────────────────────
        vectorization = await self._best_effort(
            steps, "vectorize",
            lambda: self._vectorizer.run(
                doc_id, org_id, update.document.name, update.document.type, parsed.text,
            ),
        )
        commitments = await self._best_effort(
            steps, "extract-commitments",
            lambda: self._commitments.run(doc_id, org_id),
        )
        notifications = await self._best_effort(
            steps, "notify",
            lambda: self._notifier.run(doc_id, org_id, update.status.value),
        )

        logger.info(
            "Processing complete | doc=%s org=%s status=%s confidence=%d",
            doc_id, org_id, update.status.value, update.confidence,
        )
        return PipelineResult(
            document_id=doc_id,
            status=update.status.value,
            confidence=update.confidence,
            stages={
                "vectorization": vectorization.to_dict(),
                "commitments":   commitments.to_dict(),
                "notifications": notifications.to_dict(),
            },
        )

    async def _download_and_parse(self, event: DocumentUploadedEvent) -> ParseResult:
        doc_id, org_id = event.document_id, event.organization_id

        try:
            data = await self._blob_store.fetch(event.storage_key)
        except Exception as exc:
            logger.error("Download failed | doc=%s key=%s error=%s", doc_id, event.storage_key, exc)
            await mark_failed_quietly(self._repo, doc_id, org_id, f"{DOWNLOAD_FAILURE_PREFIX}{exc}")
            raise PipelineStageError("download", exc) from exc

        try:
            return await asyncio.wait_for(
                self._parser.parse(data, event.mime_type),
                timeout=self._parse_timeout,
            )
        except Exception as exc:
            reason = str(exc) or f"timed out after {self._parse_timeout:.0f}s"
            logger.error("Parse failed | doc=%s mime=%s error=%s", doc_id, event.mime_type, reason)
            await mark_failed_quietly(self._repo, doc_id, org_id, f"{PARSE_FAILURE_PREFIX}{reason}")
            raise PipelineStageError("parse", exc) from exc

    @staticmethod
    async def _best_effort(steps: StepRunner, name: str, fn) -> StageOutcome:
        return await steps.run(
            name,
            fn,
            encode=lambda outcome: outcome.to_dict(),
            decode=outcome_from_dict,
        )
