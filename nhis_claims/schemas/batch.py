"""
Pydantic Schemas for Batches and Closure Reports.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from nhis_claims.core.enums import (
    BatchAdminStatus,
    BatchStatus,
    BatchType,
    ClosureReportStatus,
    PaymentMethod,
)
from nhis_claims.schemas.caller import DocumentReference


# =============================================================================
# Input Schemas
# =============================================================================


class BatchCreate(BaseModel):
    """Schema for creating a draft batch."""

    tpa_id: str = Field(..., min_length=1, max_length=100)
    facility_id: str = Field(..., min_length=1, max_length=100)
    facility_code: Optional[str] = Field(
        None, max_length=20, description="Short code used in weekly batch numbers"
    )
    batch_type: BatchType = BatchType.WEEKLY
    week_start_date: Optional[date] = None
    week_end_date: Optional[date] = None
    admin_fee_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    description: Optional[str] = None


class BatchSubmitInput(BaseModel):
    """Schema for submitting a batch to the oversight body."""

    emails: list[EmailStr] = Field(default_factory=list)
    notes: Optional[str] = None


class ClosureInput(BaseModel):
    """
    Everything the TPA provides to close a batch.

    Four groups: forwarding letter, review, payment totals, signature.
    Completeness is checked by the batch service so that every missing item
    is reported at once.
    """

    # Forwarding letter (falls back to the batch's cover letter)
    forwarding_letter: Optional[DocumentReference] = None

    # Review
    review_summary: str = ""
    payment_justification: str = ""
    remarks: Optional[str] = None

    # Payment totals
    paid_amount: Decimal = Decimal("0")
    paid_claims: int = Field(default=0, ge=0)
    beneficiaries_paid: int = 0
    payment_date: Optional[date] = None
    payment_method: Optional[PaymentMethod] = None
    payment_reference: Optional[str] = None

    # Signature
    signature: str = ""
    consent: bool = False


class ClosureReview(BaseModel):
    """Oversight annotation of a closure report."""

    signature: str = Field(..., min_length=1)
    notes: Optional[str] = None


# =============================================================================
# Response Schemas
# =============================================================================


class RejectionReasonSummary(BaseModel):
    """One row of the rejection breakdown."""

    reason: str
    count: int
    amount: Decimal


class ClaimStatistics(BaseModel):
    """Claim statistics snapshot for a batch."""

    total_claims: int = 0
    approved_claims: int = 0
    rejected_claims: int = 0
    pending_claims: int = 0
    total_amount: Decimal = Decimal("0")
    approved_amount: Decimal = Decimal("0")
    rejected_amount: Decimal = Decimal("0")


class ClosurePreview(BaseModel):
    """Closure figures computed without persisting anything."""

    batch_id: UUID
    statistics: ClaimStatistics
    rejection_reasons: list[RejectionReasonSummary]
    has_forwarding_letter: bool


class BatchResponse(BaseModel):
    """Schema for batch response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    batch_number: str
    tpa_id: str
    facility_id: str
    batch_type: BatchType
    status: BatchStatus
    admin_status: Optional[BatchAdminStatus] = None
    total_claims: int
    total_amount: Decimal
    approved_claims: int
    rejected_claims: int
    approved_amount: Decimal
    committed_claims: Optional[int] = None
    admin_fee_percentage: Optional[Decimal] = None
    admin_fee_amount: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None
    reimbursement_id: Optional[UUID] = None
    submitted_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    version: int


class ClosureReportResponse(BaseModel):
    """Schema for closure report response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    batch_id: UUID
    review_summary: str
    payment_justification: str
    rejection_reasons: list[RejectionReasonSummary]
    total_claims: int
    approved_claims: int
    rejected_claims: int
    total_amount: Decimal
    approved_amount: Decimal
    rejected_amount: Decimal
    paid_amount: Decimal
    beneficiaries_paid: int
    forwarding_letter_url: str
    status: ClosureReportStatus
    tpa_signed_at: datetime
    admin_signed_by: Optional[str] = None
    admin_signed_at: Optional[datetime] = None
