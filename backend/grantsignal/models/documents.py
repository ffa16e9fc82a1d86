"""
SQLAlchemy ORM Models — Documents & Grants

These models map to the tables owned by the GrantSignal web application.
The pipeline only reads grants and mutates one document row per upload
event; creation of both happens elsewhere.

Tenant scoping: every query issued by the pipeline carries an explicit
organization_id predicate next to the primary key. A document id that
belongs to another organization behaves exactly like a missing row.

Identifiers are opaque strings (the web tier generates cuid-style ids).
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Declarative base: shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return uuid.uuid4().hex


def _in_check(column: str, values: type[enum.Enum], name: str) -> CheckConstraint:
    allowed = ", ".join(f"'{v.value}'" for v in values)
    return CheckConstraint(f"{column} IN ({allowed})", name=name)


# ---------------------------------------------------------------------------
# Enumerations (stored as TEXT + CHECK constraint)
# ---------------------------------------------------------------------------

class DocumentType(str, enum.Enum):
    GRANT_APPLICATION = "GRANT_APPLICATION"
    AWARD_LETTER      = "AWARD_LETTER"
    REPORT            = "REPORT"
    AGREEMENT         = "AGREEMENT"
    BUDGET            = "BUDGET"
    ANNUAL_REPORT     = "ANNUAL_REPORT"
    STRATEGIC_PLAN    = "STRATEGIC_PLAN"
    EVALUATION        = "EVALUATION"
    OTHER             = "OTHER"


class ProcessingStatus(str, enum.Enum):
    """
    Document.status state machine:
        PENDING      — upload registered, job not finished
        PROCESSING   — reserved for external writers; the pipeline never persists it
        COMPLETED    — parsed with confidence >= 70
        NEEDS_REVIEW — parsed with confidence < 70
        FAILED       — fetch / parse / write failed (see parse_warnings)
    """
    PENDING      = "PENDING"
    PROCESSING   = "PROCESSING"
    COMPLETED    = "COMPLETED"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    FAILED       = "FAILED"


class GrantStatus(str, enum.Enum):
    PROSPECT  = "PROSPECT"
    RESEARCHING = "RESEARCHING"
    WRITING   = "WRITING"
    REVIEW    = "REVIEW"
    SUBMITTED = "SUBMITTED"
    PENDING   = "PENDING"
    AWARDED   = "AWARDED"
    DECLINED  = "DECLINED"
    ACTIVE    = "ACTIVE"
    CLOSEOUT  = "CLOSEOUT"
    COMPLETED = "COMPLETED"


# ---------------------------------------------------------------------------
# Grant model: grants
# ---------------------------------------------------------------------------

class Grant(Base):
    """Funding relationship a document may belong to. Only id/status are consumed."""

    __tablename__ = "grants"
    __table_args__ = (
        _in_check("status", GrantStatus, "grants_status_check"),
        Index("idx_grants_organization_id", "organization_id"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=GrantStatus.PROSPECT.value,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(),
    )

    documents: Mapped[list["Document"]] = relationship(back_populates="grant")

    def __repr__(self) -> str:
        return f"<Grant id={self.id} org={self.organization_id} status={self.status}>"


# ---------------------------------------------------------------------------
# Document model: documents
# ---------------------------------------------------------------------------

class Document(Base):
    """
    One uploaded file, from upload registration to a terminal processing status.

    extracted_text and confidence_score are only ever written together by
    the pipeline's status-update stage.
    """

    __tablename__ = "documents"
    __table_args__ = (
        _in_check("status", ProcessingStatus, "documents_status_check"),
        _in_check("type", DocumentType, "documents_type_check"),
        CheckConstraint(
            "confidence_score IS NULL OR (confidence_score BETWEEN 0 AND 100)",
            name="documents_confidence_range",
        ),
        Index("idx_documents_organization_id", "organization_id"),
        Index("idx_documents_status", "organization_id", "status"),
        Index("idx_documents_grant_id", "grant_id"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_new_id)

    # Tenant scope
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)

    grant_id: Mapped[Optional[str]] = mapped_column(
        Text,
        ForeignKey("grants.id", ondelete="SET NULL"),
        nullable=True,
    )

    name: Mapped[str] = mapped_column(Text, nullable=False, comment="Display name")
    type: Mapped[str] = mapped_column(
        Text, nullable=False, default=DocumentType.OTHER.value,
    )
    mime_type: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    s3_key: Mapped[str] = mapped_column(Text, nullable=False)

    # Processing outcome
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=ProcessingStatus.PENDING.value,
        server_default=ProcessingStatus.PENDING.value,
    )
    confidence_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    extracted_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    doc_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata",                 # PostgreSQL column name stays 'metadata'
        JSONB,
        nullable=True,
        comment="wordCount, detectedType, and pineconeIds/vectorized/chunkCount once indexed",
    )
    parse_warnings: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    grant: Mapped[Optional[Grant]] = relationship(back_populates="documents")

    def __repr__(self) -> str:
        return (
            f"<Document id={self.id} org={self.organization_id} "
            f"status={self.status} name={self.name!r}>"
        )
