"""
Document-processed notification consumer.

Handles one `notification/document-processed` intent
({documentId, userId, email, status}): loads the document with its grant
and commitment count, sends the email, and appends a NotificationLog row
whether the send succeeded or not. A failed send is re-raised after
logging so the Celery task can retry it.
"""

from __future__ import annotations

import logging
from typing import Any

from grantsignal.db.repositories import NotificationRepository
from grantsignal.models.notifications import DOCUMENT_PROCESSED
from grantsignal.notifications.email import (
    FAILED_EMOJI,
    STATUS_EMOJI,
    EmailMessage,
    EmailSendError,
    ResendEmailSender,
    render_document_processed,
)

logger = logging.getLogger(__name__)


class NotificationDocumentNotFound(LookupError):
    pass


class DocumentProcessedNotifier:

    def __init__(
        self,
        repo:    NotificationRepository,
        sender:  ResendEmailSender,
        app_url: str,
    ) -> None:
        self._repo    = repo
        self._sender  = sender
        self._app_url = app_url.rstrip("/")

    async def handle(self, intent: dict[str, Any]) -> dict[str, Any]:
        document_id = intent["documentId"]
        user_id     = intent["userId"]
        email       = intent["email"]

        document = await self._repo.get_document(document_id)
        if document is None:
            raise NotificationDocumentNotFound(f"Document {document_id} not found")

        subject = f"Document Processed: {document.name}"
        emoji   = STATUS_EMOJI.get(document.status, FAILED_EMOJI)
        log_metadata = {"documentId": document_id, "status": document.status}

        message = EmailMessage(
            to=email,
            subject=f"{emoji} {subject}",
            html=render_document_processed(
                document_name=document.name,
                document_type=document.type,
                status=document.status,
                confidence_score=document.confidence_score,
                extracted_commitments=document.extracted_commitments,
                warnings=document.parse_warnings,
                grant_title=document.grant_title,
                documents_url=f"{self._app_url}/documents",
            ),
        )

        try:
            await self._sender.send(message)
        except EmailSendError as exc:
            logger.error("Notification failed | doc=%s user=%s error=%s", document_id, user_id, exc)
            await self._repo.add_log(
                user_id=user_id,
                type=DOCUMENT_PROCESSED,
                subject=subject,
                success=False,
                error_message=str(exc),
                metadata=log_metadata,
            )
            raise

        await self._repo.add_log(
            user_id=user_id,
            type=DOCUMENT_PROCESSED,
            subject=subject,
            success=True,
            metadata=log_metadata,
        )
        return {"documentId": document_id, "sent": True}
