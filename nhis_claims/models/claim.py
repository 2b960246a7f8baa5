"""
Claim Model for NHIS Claims Administration.

A claim is submitted by a healthcare facility, decided by its TPA and
verified/paid by the oversight body. Claims are never physically deleted;
every status or decision change is written to ``claim_status_history``.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import (
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from nhis_claims.core.enums import ClaimDecision, ClaimStatus
from nhis_claims.models.base import Base, JSONType, TimeStampedModel, UUIDModel, utcnow


class Claim(Base, UUIDModel, TimeStampedModel):
    """Insurance claim for a single episode of care."""

    __tablename__ = "claims"

    # Claim Identification
    unique_claim_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        index=True,
        comment="Globally unique, immutable claim identifier",
    )
    hospital_number: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Facility's own patient/hospital number",
    )

    # Parties
    beneficiary_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Enrollee identifier",
    )
    beneficiary_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Enrollee full name",
    )
    facility_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Submitting healthcare facility",
    )
    tpa_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Third-Party Administrator responsible for the claim",
    )

    # Clinical Labels
    primary_diagnosis: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        comment="Primary diagnosis (free text label)",
    )
    secondary_diagnosis: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
    )
    treatment_procedure: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        comment="Procedure label used for cost standard matching",
    )
    date_of_admission: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    date_of_discharge: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    date_of_treatment: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Costs
    cost_of_investigation: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), default=Decimal("0"), nullable=False
    )
    cost_of_procedure: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), default=Decimal("0"), nullable=False
    )
    cost_of_medication: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), default=Decimal("0"), nullable=False
    )
    cost_of_other_services: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), default=Decimal("0"), nullable=False
    )
    total_cost: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        comment="Sum of the four cost categories",
    )
    approved_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(14, 2),
        nullable=True,
        comment="Amount approved by the TPA (decision = approved only)",
    )

    # Lifecycle
    status: Mapped[ClaimStatus] = mapped_column(
        Enum(ClaimStatus),
        default=ClaimStatus.SUBMITTED,
        nullable=False,
        index=True,
    )
    decision: Mapped[Optional[ClaimDecision]] = mapped_column(
        Enum(ClaimDecision),
        nullable=True,
        index=True,
        comment="TPA decision; null until recorded",
    )
    reason_for_rejection: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tpa_remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    decided_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    decided_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Batch association (null = unassigned)
    batch_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("batches.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    __table_args__ = (
        Index("ix_claims_beneficiary_procedure", "beneficiary_id", "treatment_procedure"),
    )

    def __repr__(self) -> str:
        return f"<Claim {self.unique_claim_id} status={self.status} decision={self.decision}>"


class ClaimStatusHistory(Base, UUIDModel):
    """
    Status/decision change history for a claim.

    Provides complete audit trail of claim lifecycle changes.
    """

    __tablename__ = "claim_status_history"

    claim_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    previous_status: Mapped[Optional[ClaimStatus]] = mapped_column(
        Enum(ClaimStatus), nullable=True
    )
    new_status: Mapped[ClaimStatus] = mapped_column(Enum(ClaimStatus), nullable=False)
    previous_decision: Mapped[Optional[ClaimDecision]] = mapped_column(
        Enum(ClaimDecision), nullable=True
    )
    new_decision: Mapped[Optional[ClaimDecision]] = mapped_column(
        Enum(ClaimDecision), nullable=True
    )
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    # Actor
    changed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    actor_role: Mapped[str] = mapped_column(
        String(20),
        default="system",
        nullable=False,
        comment="Caller role, or 'system' for cascaded changes",
    )

    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
