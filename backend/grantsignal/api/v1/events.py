"""
Event Ingress API Router
POST /api/v1/events/document-uploaded

The upload service calls this once the file is in S3. The body is the
`document.uploaded` event; the router only authenticates, validates and
enqueues. All processing happens in the Celery worker.

Request lifecycle:
  ┌─────────────────────────────────────────────────────────┐
  │ 1. HMAC-SHA256 of the raw body vs X-GrantSignal-Signature│
  │    (401 on mismatch, before the body is parsed)          │
  │ 2. Payload validation (422 on malformed event)           │
  │ 3. process_document task published → returns 202         │
  └─────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import logging
import uuid
from typing import Annotated, Any, Protocol

from fastapi import APIRouter, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from grantsignal.core.config import Settings, get_settings
from grantsignal.schemas.events import (
    DocumentUploadedPayload,
    ErrorResponse,
    EventAccepted,
    EventErrors,
)
from grantsignal.webhooks.signing import SIGNATURE_HEADER, verify

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/events",
    tags=["Event Ingress"],
)


class UploadEventPublisher(Protocol):
    async def publish_document_uploaded(self, event: dict[str, str]) -> str: ...


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_publisher(request: Request) -> UploadEventPublisher:
    return request.app.state.publisher


AppSettings    = Annotated[Settings, Depends(get_settings)]
EventPublisher = Annotated[UploadEventPublisher, Depends(get_publisher)]


# ---------------------------------------------------------------------------
# POST /events/document-uploaded
# ---------------------------------------------------------------------------

@router.post(
    "/document-uploaded",
    response_model=EventAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Accept a document.uploaded event",
    responses={
        202: {"model": EventAccepted, "description": "Event queued for processing"},
        401: {"model": ErrorResponse, "description": "Missing or invalid signature"},
        422: {"model": ErrorResponse, "description": "Malformed event payload"},
        503: {"model": ErrorResponse, "description": "Message broker unavailable"},
    },
)
async def document_uploaded(
    request:   Request,
    settings:  AppSettings,
    publisher: EventPublisher,
) -> Any:
    body = await request.body()
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

    signature = request.headers.get(SIGNATURE_HEADER, "")
    if not verify(body, signature, settings.event_signing_key):
        logger.warning("Rejected event with invalid signature | request_id=%s", request_id)
        error = EventErrors.invalid_signature()
        error.request_id = request_id
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content=error.model_dump(mode="json"),
        )

    try:
        payload = DocumentUploadedPayload.model_validate_json(body)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc

    event = payload.to_event()
    try:
        task_id = await publisher.publish_document_uploaded(event.to_payload())
    except Exception:
        logger.exception(
            "Failed to queue document event | doc=%s org=%s",
            event.document_id, event.organization_id,
        )
        error = EventErrors.queue_error()
        error.request_id = request_id
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=error.model_dump(mode="json"),
        )

    return EventAccepted(document_id=event.document_id, task_id=task_id)
