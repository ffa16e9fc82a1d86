"""
Commitment Extractor — LLM scan of award documents

Reads a document's extracted text, asks the chat model for every explicit
commitment (deliverables, outcome metrics, report due dates, budget
spend, staffing, timeline) as a JSON array, validates each item, and
persists the valid ones as Commitment rows with extracted_by=AI and
status=PENDING.

Only the first MAX_INPUT_CHARS characters are sent; award letters put
their obligations up front and the cap keeps the prompt inside the
model's context window.

Invalid items are dropped individually (logged), never the whole batch.
A response with no JSON array yields zero commitments.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import date, datetime, timezone
from typing import Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from grantsignal.db.repositories import DocumentRepository
from grantsignal.models.compliance import (
    Commitment,
    CommitmentStatus,
    CommitmentType,
    ExtractedBy,
)

logger = logging.getLogger(__name__)

MAX_INPUT_CHARS = 50_000

_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")

SYSTEM_PROMPT = (
    "You are a grant compliance analyst. You read award letters and grant "
    "agreements and list the obligations the grantee has accepted. "
    "Respond with a JSON array only."
)

USER_PROMPT = """Analyze this grant document and extract ALL commitments and promises made.

For each commitment, identify:
1. type: DELIVERABLE, OUTCOME_METRIC, REPORT_DUE, BUDGET_SPEND, STAFFING, TIMELINE
2. description: clear statement of what was promised
3. metricName (if applicable): e.g. "youth served", "meals provided"
4. metricValue (if applicable): e.g. "500", "1,000"
5. dueDate (if specified): ISO 8601 date
6. sourceText: the EXACT quote from the document containing this commitment
7. confidence: 0-100, how certain you are this is a real commitment

Return a JSON array:
[
  {{
    "type": "OUTCOME_METRIC",
    "description": "Serve 500 youth annually through after-school programs",
    "metricName": "youth served",
    "metricValue": "500",
    "dueDate": "2025-12-31",
    "sourceText": "We commit to serving 500 youth annually through our after-school programs by the end of the grant period.",
    "confidence": 95
  }}
]

Rules:
- Only extract explicit commitments, not general statements
- Include the exact source text so users can verify
- Be conservative: if unsure, lower the confidence score
- Look for numbers, deadlines, deliverables, outcomes, staffing promises, budget allocations

Document text:
{text}"""


class ExtractedCommitment(BaseModel):
    """One commitment as returned by the model (camelCase keys)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type:         CommitmentType
    description:  str = Field(min_length=1)
    metric_name:  Optional[str]  = Field(default=None, alias="metricName")
    metric_value: Optional[str]  = Field(default=None, alias="metricValue")
    due_date:     Optional[date] = Field(default=None, alias="dueDate")
    source_text:  str            = Field(default="", alias="sourceText")
    confidence:   int            = Field(default=50)

    @field_validator("metric_value", mode="before")
    @classmethod
    def _stringify_metric(cls, v):
        if v is None or v == "":
            return None
        return str(v)

    @field_validator("metric_name", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        return v or None

    @field_validator("due_date", mode="before")
    @classmethod
    def _lenient_date(cls, v):
        if not v:
            return None
        if isinstance(v, str):
            try:
                return date.fromisoformat(v[:10])
            except ValueError:
                return None
        return v

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):
        try:
            return max(0, min(100, round(float(v))))
        except (TypeError, ValueError):
            return 50


def parse_commitments(raw: str) -> list[ExtractedCommitment]:
    """Pull the first JSON array out of `raw` and validate item by item."""
    match = _JSON_ARRAY_RE.search(raw or "")
    if not match:
        logger.warning("Commitment response contained no JSON array")
        return []

    try:
        items = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        logger.warning("Commitment response is not valid JSON: %s", exc)
        return []

    commitments: list[ExtractedCommitment] = []
    for i, item in enumerate(items if isinstance(items, list) else []):
        try:
            commitments.append(ExtractedCommitment.model_validate(item))
        except ValidationError as exc:
            logger.warning("Dropping invalid commitment #%d: %s", i, exc.errors()[:1])
    return commitments


class CommitmentExtractor:
    """
    Usage:
        extractor = CommitmentExtractor(ChatOpenAI(model="gpt-4o"), repo)
        created   = await extractor.extract(document_id, organization_id, grant_id)
    """

    def __init__(self, llm: BaseChatModel, repo: DocumentRepository) -> None:
        self._llm  = llm
        self._repo = repo

    async def extract(
        self,
        document_id:     str,
        organization_id: str,
        grant_id:        str,
    ) -> list[ExtractedCommitment]:
        """
        Run the model over the document's text and persist what it finds.

        Raises:
            ValueError: the document has no extracted text.
        """
        context = await self._repo.get_context(document_id, organization_id)
        if not context.extracted_text:
            raise ValueError("Document has no extracted text")

        messages = [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=USER_PROMPT.format(text=context.extracted_text[:MAX_INPUT_CHARS])),
        ]
        response = await self._llm.ainvoke(messages)
        extracted = parse_commitments(_content_text(response.content))

        rows = [
            Commitment(
                organization_id=organization_id,
                grant_id=grant_id,
                source_document_id=document_id,
                type=c.type.value,
                description=c.description,
                metric_name=c.metric_name,
                metric_value=c.metric_value,
                due_date=(
                    datetime.combine(c.due_date, datetime.min.time(), tzinfo=timezone.utc)
                    if c.due_date else None
                ),
                source_text=c.source_text,
                confidence=c.confidence,
                extracted_by=ExtractedBy.AI.value,
                status=CommitmentStatus.PENDING.value,
            )
            for c in extracted
        ]
        await self._repo.add_commitments(rows)

        logger.info(
            "Commitments extracted | doc=%s grant=%s count=%d",
            document_id, grant_id, len(rows),
        )
        return extracted


def _content_text(content) -> str:
    # chat models return either a string or a list of content blocks
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)
