"""
Event ingress — Pydantic request/response schemas

Covers POST /api/v1/events/document-uploaded:
  - `document.uploaded` payload validation (camelCase wire format)
  - 202 Accepted response
  - Structured error bodies (401, 422, 500)

Design decisions:
  - `s3Key` is accepted as an alias of `storageKey` for older publishers.
  - The payload carries ids and the storage key only, never file bytes.
"""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from grantsignal.pipeline.orchestrator import DocumentUploadedEvent


# ---------------------------------------------------------------------------
# Inbound event
# ---------------------------------------------------------------------------

class DocumentUploadedPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    document_id:     str = Field(..., min_length=1, alias="documentId")
    organization_id: str = Field(..., min_length=1, alias="organizationId")
    storage_key:     str = Field(
        ...,
        min_length=1,
        alias="storageKey",
        validation_alias=AliasChoices("storageKey", "s3Key"),
    )
    mime_type:       str = Field(..., min_length=1, alias="mimeType")

    def to_event(self) -> DocumentUploadedEvent:
        return DocumentUploadedEvent(
            document_id=self.document_id,
            organization_id=self.organization_id,
            storage_key=self.storage_key,
            mime_type=self.mime_type,
        )


# ---------------------------------------------------------------------------
# 202 Accepted
# ---------------------------------------------------------------------------

class EventAccepted(BaseModel):
    """Returned once the processing task is on the broker."""
    document_id: str
    task_id:     str
    status:      str = Field("queued", description="Pipeline runs asynchronously")


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str


class ErrorResponse(BaseModel):
    """Uniform error envelope for all 4xx/5xx responses."""
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None        = Field(None, description="Trace ID for log correlation")


class EventErrors:
    """Factories for every documented error case."""

    @staticmethod
    def invalid_signature() -> ErrorResponse:
        return ErrorResponse(
            error_code="INVALID_SIGNATURE",
            message="Event signature is missing or does not match.",
            details=[
                ErrorDetail(
                    field="X-GrantSignal-Signature",
                    message="Sign the raw request body with HMAC-SHA256 using the shared event key.",
                    code="INVALID_SIGNATURE",
                )
            ],
        )

    @staticmethod
    def queue_error() -> ErrorResponse:
        return ErrorResponse(
            error_code="QUEUE_ERROR",
            message="Event was valid but could not be queued for processing.",
            details=[
                ErrorDetail(
                    field=None,
                    message="The message broker may be temporarily unavailable. Retry the event.",
                    code="QUEUE_ERROR",
                )
            ],
        )
