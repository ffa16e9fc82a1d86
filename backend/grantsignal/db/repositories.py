"""
Repositories — the only place the pipeline touches SQL.

Every method opens its own unit of work through session_scope(), so a
repository call is atomic and a failed call leaves nothing half-written.
Methods return plain dataclass snapshots (never live ORM objects) so the
results can be checkpointed as JSON between pipeline steps.

Tenant isolation: document reads and writes are filtered by BOTH id and
organization_id. A mismatch is reported as DocumentNotFoundError, the same
error a genuinely missing row produces, so callers cannot probe for
another organization's documents.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from grantsignal.db.session import session_scope
from grantsignal.models.compliance import (
    Commitment,
    ComplianceAudit,
    ExtractedBy,
)
from grantsignal.models.documents import Document, Grant, ProcessingStatus
from grantsignal.models.notifications import (
    NotificationLog,
    NotificationPreferences,
    User,
    Webhook,
    WebhookDelivery,
)

logger = logging.getLogger(__name__)


class DocumentNotFoundError(LookupError):
    """Document does not exist within the caller's organization."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DocumentSummary:
    """Denormalized view returned after the post-parse write."""
    id:        str
    name:      str
    type:      str
    size:      int
    grant_id:  str | None


@dataclass(frozen=True)
class DocumentContext:
    """Document + grant fields consumed by commitment extraction."""
    id:              str
    organization_id: str
    name:            str
    type:            str
    extracted_text:  str | None
    grant_id:        str | None
    grant_status:    str | None


@dataclass(frozen=True)
class NotificationRecipient:
    user_id: str
    email:   str
    # None when the user has no preferences row at all
    document_processed_enabled: bool | None


@dataclass(frozen=True)
class NotificationDocument:
    id:                    str
    name:                  str
    type:                  str
    status:                str
    confidence_score:      int | None
    parse_warnings:        list[str]
    grant_title:           str | None
    extracted_commitments: int


@dataclass(frozen=True)
class WebhookTarget:
    id:             str
    url:            str
    signing_secret: str
    is_active:      bool
    is_paused:      bool
    failure_count:  int


@dataclass(frozen=True)
class DeliverySnapshot:
    id:           str
    webhook_id:   str
    event_type:   str
    payload:      dict
    attempts:     int
    max_attempts: int


# ---------------------------------------------------------------------------
# Documents, grants, commitments, compliance audits
# ---------------------------------------------------------------------------

class DocumentRepository:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory

    async def update_after_parse(
        self,
        document_id:     str,
        organization_id: str,
        *,
        extracted_text:  str,
        confidence:      int,
        metadata:        dict[str, Any],
        warnings:        list[str] | None,
        status:          ProcessingStatus,
        processed_at:    datetime,
    ) -> DocumentSummary:
        """
        Single atomic write of a parse result.
        Raises DocumentNotFoundError when (id, organization_id) matches no row.
        """
        stmt = (
            update(Document)
            .where(
                Document.id == document_id,
                Document.organization_id == organization_id,
            )
            .values(
                extracted_text=extracted_text,
                confidence_score=confidence,
                doc_metadata=metadata,
                parse_warnings=warnings,
                status=status.value,
                processed_at=processed_at,
            )
            .returning(
                Document.id, Document.name, Document.type,
                Document.size, Document.grant_id,
            )
        )
        async with session_scope(self._factory) as db:
            row = (await db.execute(stmt)).first()

        if row is None:
            raise DocumentNotFoundError(document_id)

        return DocumentSummary(
            id=row.id, name=row.name, type=row.type,
            size=row.size, grant_id=row.grant_id,
        )

    async def mark_failed(
        self,
        document_id:     str,
        organization_id: str,
        warning:         str,
    ) -> bool:
        """Set status=FAILED with a single explanatory warning. Returns True if a row changed."""
        stmt = (
            update(Document)
            .where(
                Document.id == document_id,
                Document.organization_id == organization_id,
            )
            .values(
                status=ProcessingStatus.FAILED.value,
                parse_warnings=[warning],
                processed_at=datetime.now(timezone.utc),
            )
        )
        async with session_scope(self._factory) as db:
            result = await db.execute(stmt)
        return bool(result.rowcount)

    async def merge_metadata(
        self,
        document_id:     str,
        organization_id: str,
        extra:           dict[str, Any],
    ) -> dict[str, Any]:
        """Merge `extra` into the stored metadata (row locked for the read-modify-write)."""
        async with session_scope(self._factory) as db:
            current = (
                await db.execute(
                    select(Document.doc_metadata)
                    .where(
                        Document.id == document_id,
                        Document.organization_id == organization_id,
                    )
                    .with_for_update()
                )
            ).first()
            if current is None:
                raise DocumentNotFoundError(document_id)

            merged = {**(current[0] or {}), **extra}
            await db.execute(
                update(Document)
                .where(
                    Document.id == document_id,
                    Document.organization_id == organization_id,
                )
                .values(doc_metadata=merged)
            )
        return merged

    async def get_context(
        self,
        document_id:     str,
        organization_id: str,
    ) -> DocumentContext:
        stmt = (
            select(Document, Grant.status)
            .outerjoin(Grant, Grant.id == Document.grant_id)
            .where(
                Document.id == document_id,
                Document.organization_id == organization_id,
            )
        )
        async with session_scope(self._factory) as db:
            row = (await db.execute(stmt)).first()

        if row is None:
            raise DocumentNotFoundError(document_id)

        doc, grant_status = row
        return DocumentContext(
            id=doc.id,
            organization_id=doc.organization_id,
            name=doc.name,
            type=doc.type,
            extracted_text=doc.extracted_text,
            grant_id=doc.grant_id,
            grant_status=grant_status,
        )

    async def count_ai_commitments(self, document_id: str, grant_id: str) -> int:
        stmt = select(func.count(Commitment.id)).where(
            Commitment.source_document_id == document_id,
            Commitment.grant_id == grant_id,
            Commitment.extracted_by == ExtractedBy.AI.value,
        )
        async with session_scope(self._factory) as db:
            return int((await db.execute(stmt)).scalar_one())

    async def add_commitments(self, commitments: list[Commitment]) -> list[str]:
        if not commitments:
            return []
        async with session_scope(self._factory) as db:
            db.add_all(commitments)
            await db.flush()   # assigns ids
            return [c.id for c in commitments]

    async def add_compliance_audit(
        self,
        *,
        organization_id: str,
        action_type:     str,
        description:     str,
        performed_by:    str,
        metadata:        dict[str, Any],
    ) -> None:
        async with session_scope(self._factory) as db:
            db.add(ComplianceAudit(
                organization_id=organization_id,
                action_type=action_type,
                description=description,
                performed_by=performed_by,
                audit_metadata=metadata,
            ))

    async def fail_stuck(
        self,
        status:    ProcessingStatus,
        cutoff:    datetime,
        warnings:  list[str],
        now:       datetime,
    ) -> int:
        """Mark every document in `status` last touched before `cutoff` as FAILED."""
        column = Document.created_at if status is ProcessingStatus.PENDING else Document.updated_at
        stmt = (
            update(Document)
            .where(and_(Document.status == status.value, column < cutoff))
            .values(
                status=ProcessingStatus.FAILED.value,
                parse_warnings=warnings,
                processed_at=now,
            )
        )
        async with session_scope(self._factory) as db:
            result = await db.execute(stmt)
        return int(result.rowcount or 0)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class NotificationRepository:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory

    async def list_recipients(self, organization_id: str) -> list[NotificationRecipient]:
        """Every organization user with their (optional) preferences row."""
        stmt = (
            select(
                User.id,
                User.email,
                NotificationPreferences.document_processed_enabled,
                NotificationPreferences.email_override,
                NotificationPreferences.user_id.label("prefs_user_id"),
            )
            .outerjoin(NotificationPreferences, NotificationPreferences.user_id == User.id)
            .where(User.organization_id == organization_id)
        )
        async with session_scope(self._factory) as db:
            rows = (await db.execute(stmt)).all()

        return [
            NotificationRecipient(
                user_id=row.id,
                email=row.email_override or row.email,
                document_processed_enabled=(
                    None if row.prefs_user_id is None else bool(row.document_processed_enabled)
                ),
            )
            for row in rows
        ]

    async def get_document(self, document_id: str) -> NotificationDocument | None:
        async with session_scope(self._factory) as db:
            row = (
                await db.execute(
                    select(Document, Grant.title)
                    .outerjoin(Grant, Grant.id == Document.grant_id)
                    .where(Document.id == document_id)
                )
            ).first()
            if row is None:
                return None
            doc, grant_title = row
            commitments = (
                await db.execute(
                    select(func.count(Commitment.id))
                    .where(Commitment.source_document_id == document_id)
                )
            ).scalar_one()

        warnings = doc.parse_warnings if isinstance(doc.parse_warnings, list) else []
        return NotificationDocument(
            id=doc.id,
            name=doc.name,
            type=doc.type,
            status=doc.status,
            confidence_score=doc.confidence_score,
            parse_warnings=[str(w) for w in warnings],
            grant_title=grant_title,
            extracted_commitments=int(commitments),
        )

    async def add_log(
        self,
        *,
        user_id:       str,
        type:          str,
        subject:       str,
        success:       bool,
        metadata:      dict[str, Any],
        error_message: str | None = None,
    ) -> None:
        async with session_scope(self._factory) as db:
            db.add(NotificationLog(
                user_id=user_id,
                type=type,
                subject=subject,
                success=success,
                error_message=error_message,
                log_metadata=metadata,
            ))


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

class WebhookRepository:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory

    async def create_deliveries(
        self,
        organization_id: str,
        event_type:      str,
        payload:         dict,
        max_attempts:    int = 5,
    ) -> list[tuple[str, str]]:
        """
        Create one pending delivery per active, unpaused webhook subscribed
        to `event_type`. Returns (delivery_id, webhook_id) pairs.
        """
        async with session_scope(self._factory) as db:
            hooks = (
                await db.execute(
                    select(Webhook.id).where(
                        Webhook.organization_id == organization_id,
                        Webhook.is_active.is_(True),
                        Webhook.is_paused.is_(False),
                        Webhook.subscribed_events.any(event_type),
                    )
                )
            ).scalars().all()

            deliveries = [
                WebhookDelivery(
                    webhook_id=hook_id,
                    event_type=event_type,
                    payload=payload,
                    status="pending",
                    attempts=0,
                    max_attempts=max_attempts,
                )
                for hook_id in hooks
            ]
            db.add_all(deliveries)
            await db.flush()
            return [(d.id, d.webhook_id) for d in deliveries]

    async def get_delivery(
        self, delivery_id: str,
    ) -> tuple[DeliverySnapshot, WebhookTarget] | None:
        async with session_scope(self._factory) as db:
            row = (
                await db.execute(
                    select(WebhookDelivery, Webhook)
                    .join(Webhook, Webhook.id == WebhookDelivery.webhook_id)
                    .where(WebhookDelivery.id == delivery_id)
                )
            ).first()
        if row is None:
            return None
        delivery, hook = row
        return (
            DeliverySnapshot(
                id=delivery.id,
                webhook_id=delivery.webhook_id,
                event_type=delivery.event_type,
                payload=delivery.payload,
                attempts=delivery.attempts,
                max_attempts=delivery.max_attempts,
            ),
            WebhookTarget(
                id=hook.id,
                url=hook.url,
                signing_secret=hook.signing_secret,
                is_active=hook.is_active,
                is_paused=hook.is_paused,
                failure_count=hook.failure_count,
            ),
        )

    async def update_delivery(self, delivery_id: str, **values: Any) -> None:
        async with session_scope(self._factory) as db:
            await db.execute(
                update(WebhookDelivery)
                .where(WebhookDelivery.id == delivery_id)
                .values(**values)
            )

    async def record_webhook_result(
        self,
        webhook_id: str,
        *,
        success:    bool,
        reason:     str | None = None,
        pause_after: int = 10,
    ) -> None:
        """Reset or bump the consecutive failure counter; pause after `pause_after` failures."""
        async with session_scope(self._factory) as db:
            if success:
                await db.execute(
                    update(Webhook)
                    .where(Webhook.id == webhook_id)
                    .values(failure_count=0, last_failure_at=None, last_failure_reason=None)
                )
                return

            await db.execute(
                update(Webhook)
                .where(Webhook.id == webhook_id)
                .values(
                    failure_count=Webhook.failure_count + 1,
                    last_failure_at=datetime.now(timezone.utc),
                    last_failure_reason=reason,
                )
            )
            await db.execute(
                update(Webhook)
                .where(Webhook.id == webhook_id, Webhook.failure_count >= pause_after)
                .values(is_paused=True)
            )
            logger.warning("Webhook delivery failure | webhook=%s reason=%s", webhook_id, reason)
