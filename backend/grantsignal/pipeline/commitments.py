"""
Stage 5 — commitment extraction for awarded grant documents.

Gates (in order):
    1. document type is AWARD_LETTER or AGREEMENT
    2. the document has a grant and the grant is AWARDED
    3. no AI-extracted commitments exist yet for (document, grant)

Passing all three runs the extractor (when one is configured) and
appends one ComplianceAudit (COMMITMENT_EXTRACTED, performed_by=SYSTEM).
Best-effort: any exception becomes Skipped("Commitment extraction error", error).
"""

from __future__ import annotations

import asyncio
import logging

from grantsignal.compliance.extractor import CommitmentExtractor
from grantsignal.db.repositories import DocumentRepository
from grantsignal.models.compliance import SYSTEM_ACTOR, ComplianceActionType
from grantsignal.models.documents import DocumentType, GrantStatus
from grantsignal.pipeline.results import Completed, Skipped, StageOutcome

logger = logging.getLogger(__name__)

EXTRACTABLE_TYPES = frozenset({DocumentType.AWARD_LETTER.value, DocumentType.AGREEMENT.value})


class CommitmentStage:

    def __init__(
        self,
        repo:      DocumentRepository,
        extractor: CommitmentExtractor | None,
        timeout_s: float = 180.0,
    ) -> None:
        self._repo      = repo
        self._extractor = extractor
        self._timeout   = timeout_s

    async def run(self, document_id: str, organization_id: str) -> StageOutcome:
        try:
            context = await self._repo.get_context(document_id, organization_id)

            if context.type not in EXTRACTABLE_TYPES:
                return Skipped("Document type not eligible")

            if context.grant_id is None or context.grant_status != GrantStatus.AWARDED.value:
                return Skipped("Grant not awarded")

            existing = await self._repo.count_ai_commitments(document_id, context.grant_id)
            if existing:
                logger.info(
                    "Commitments already extracted | doc=%s grant=%s count=%d",
                    document_id, context.grant_id, existing,
                )
                return Skipped("Commitments already extracted")

            if self._extractor is None:
                return Skipped("Commitment extraction not configured")

            commitments = await asyncio.wait_for(
                self._extractor.extract(document_id, organization_id, context.grant_id),
                timeout=self._timeout,
            )

            await self._repo.add_compliance_audit(
                organization_id=organization_id,
                action_type=ComplianceActionType.COMMITMENT_EXTRACTED.value,
                description=(
                    f"Extracted {len(commitments)} commitments from {context.name}"
                ),
                performed_by=SYSTEM_ACTOR,
                metadata={"documentId": document_id, "commitmentCount": len(commitments)},
            )
        except Exception as exc:
            logger.exception("Commitment extraction failed | doc=%s org=%s", document_id, organization_id)
            return Skipped("Commitment extraction error", error=str(exc) or type(exc).__name__)

        return Completed({"commitmentCount": len(commitments), "grantId": context.grant_id})
