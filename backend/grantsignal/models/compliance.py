"""
ORM Models — Commitments and the Compliance Audit Trail

  commitments
    Obligations extracted from award letters and agreements (deliverables,
    report due dates, budget spend ...). Rows created by the pipeline carry
    extracted_by='AI' and start in status PENDING.

  compliance_audits
    Append-only log of automated and manual compliance actions. The
    pipeline writes one COMMITMENT_EXTRACTED row per successful extraction,
    attributed to performed_by='SYSTEM'.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from grantsignal.models.documents import Base, _in_check, _new_id

SYSTEM_ACTOR = "SYSTEM"


class CommitmentType(str, enum.Enum):
    DELIVERABLE    = "DELIVERABLE"
    OUTCOME_METRIC = "OUTCOME_METRIC"
    REPORT_DUE     = "REPORT_DUE"
    BUDGET_SPEND   = "BUDGET_SPEND"
    STAFFING       = "STAFFING"
    TIMELINE       = "TIMELINE"


class CommitmentStatus(str, enum.Enum):
    PENDING     = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED   = "COMPLETED"
    AT_RISK     = "AT_RISK"
    MISSED      = "MISSED"


class ExtractedBy(str, enum.Enum):
    AI    = "AI"
    HUMAN = "HUMAN"


class ComplianceActionType(str, enum.Enum):
    COMMITMENT_EXTRACTED = "COMMITMENT_EXTRACTED"
    SCAN_COMPLETED       = "SCAN_COMPLETED"


# ---------------------------------------------------------------------------
# Commitment: commitments
# ---------------------------------------------------------------------------

class Commitment(Base):
    __tablename__ = "commitments"
    __table_args__ = (
        _in_check("type", CommitmentType, "commitments_type_check"),
        _in_check("status", CommitmentStatus, "commitments_status_check"),
        _in_check("extracted_by", ExtractedBy, "commitments_extracted_by_check"),
        Index("idx_commitments_organization_id", "organization_id"),
        Index("idx_commitments_grant_id", "grant_id"),
        Index("idx_commitments_source", "source_document_id", "grant_id"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    grant_id: Mapped[str] = mapped_column(
        Text, ForeignKey("grants.id", ondelete="CASCADE"), nullable=False,
    )
    source_document_id: Mapped[Optional[str]] = mapped_column(
        Text, ForeignKey("documents.id", ondelete="SET NULL"), nullable=True,
    )

    type: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    metric_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metric_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    source_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confidence: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    extracted_by: Mapped[str] = mapped_column(
        Text, nullable=False, default=ExtractedBy.HUMAN.value,
    )
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=CommitmentStatus.PENDING.value,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Commitment id={self.id} grant={self.grant_id} type={self.type}>"


# ---------------------------------------------------------------------------
# ComplianceAudit: compliance_audits (append-only)
# ---------------------------------------------------------------------------

class ComplianceAudit(Base):
    __tablename__ = "compliance_audits"
    __table_args__ = (
        _in_check("action_type", ComplianceActionType, "compliance_audits_action_check"),
        Index("idx_compliance_audits_organization_id", "organization_id"),
        Index("idx_compliance_audits_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    action_type: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    performed_by: Mapped[str] = mapped_column(
        Text, nullable=False, comment="User id, or SYSTEM for automated runs",
    )
    audit_metadata: Mapped[dict] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict, server_default="{}",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<ComplianceAudit id={self.id} org={self.organization_id} "
            f"action={self.action_type!r}>"
        )
