"""
Batch Models.

A batch groups a facility's claims for one TPA. It moves along the TPA track
(draft -> ready_for_submission -> submitted -> closed, or rejected) and, once
closed, along the administrative track driven by the oversight body.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from nhis_claims.core.enums import (
    BatchAdminStatus,
    BatchStatus,
    BatchType,
    ClosureReportStatus,
    PaymentMethod,
)
from nhis_claims.models.base import Base, JSONType, TimeStampedModel, UUIDModel, utcnow


class Batch(Base, UUIDModel, TimeStampedModel):
    """Batch of claims submitted by a facility to a TPA."""

    __tablename__ = "batches"

    batch_number: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="e.g. GH001-2025-W07 or BATCH-2025-000001",
    )
    tpa_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    facility_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    batch_type: Mapped[BatchType] = mapped_column(
        Enum(BatchType), default=BatchType.WEEKLY, nullable=False
    )
    week_start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    week_end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Aggregates (recomputed, never hand-edited)
    total_claims: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), default=Decimal("0"), nullable=False
    )
    approved_claims: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rejected_claims: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    approved_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), default=Decimal("0"), nullable=False
    )
    committed_claims: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Claim count frozen at submission",
    )

    # Financials (reconciliation engine or closure only)
    admin_fee_percentage: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True
    )
    admin_fee_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(14, 2), nullable=True
    )
    net_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)

    # Submission documents
    requires_cover_letter: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    cover_letter_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    cover_letter_filename: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    submission_emails: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    submission_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Tracks
    status: Mapped[BatchStatus] = mapped_column(
        Enum(BatchStatus),
        default=BatchStatus.DRAFT,
        nullable=False,
        index=True,
    )
    admin_status: Mapped[Optional[BatchAdminStatus]] = mapped_column(
        Enum(BatchAdminStatus),
        nullable=True,
        comment="Administrative track; set only once closed",
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Reimbursement link (set = attached)
    reimbursement_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("reimbursements.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    submitted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    closed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    admin_updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Optimistic lock counter
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_attached(self) -> bool:
        return self.reimbursement_id is not None

    def __repr__(self) -> str:
        return f"<Batch {self.batch_number} status={self.status}>"


class BatchStatusHistory(Base, UUIDModel):
    """Transition history for both batch tracks."""

    __tablename__ = "batch_status_history"

    batch_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("batches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    track: Mapped[str] = mapped_column(
        String(10),
        default="tpa",
        nullable=False,
        comment="tpa or admin",
    )
    previous_status: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    new_status: Mapped[str] = mapped_column(String(40), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    changed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    actor_role: Mapped[str] = mapped_column(String(20), default="system", nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)


class BatchClosureReport(Base, UUIDModel, TimeStampedModel):
    """
    Closure report created exactly once when a batch is closed.

    Captures the TPA's review, the payment evidence and a snapshot of claim
    statistics at closure time. An oversight reviewer may later annotate it.
    """

    __tablename__ = "batch_closure_reports"

    batch_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("batches.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    tpa_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Review
    review_summary: Mapped[str] = mapped_column(Text, nullable=False)
    payment_justification: Mapped[str] = mapped_column(Text, nullable=False)
    rejection_reasons: Mapped[list] = mapped_column(
        JSONType,
        default=list,
        nullable=False,
        comment="[{reason, count, amount}]",
    )
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Statistics snapshot
    total_claims: Mapped[int] = mapped_column(Integer, nullable=False)
    approved_claims: Mapped[int] = mapped_column(Integer, nullable=False)
    rejected_claims: Mapped[int] = mapped_column(Integer, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    approved_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    rejected_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    # Payment evidence
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    paid_claims: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    beneficiaries_paid: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        Enum(PaymentMethod), nullable=True
    )
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Forwarding letter
    forwarding_letter_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    forwarding_letter_filename: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )

    # TPA signature
    tpa_signature: Mapped[str] = mapped_column(Text, nullable=False)
    tpa_signed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    tpa_signed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    consent_given: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Oversight review
    status: Mapped[ClosureReportStatus] = mapped_column(
        Enum(ClosureReportStatus),
        default=ClosureReportStatus.SUBMITTED,
        nullable=False,
    )
    admin_signature: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_signed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    admin_signed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
