"""
Pydantic Schemas for Financial Reconciliation.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from nhis_claims.core.enums import (
    AdvancePaymentStatus,
    PaymentMethod,
    ReimbursementStatus,
)


class BatchFinancials(BaseModel):
    """Admin fee split for one batch."""

    approved_amount: Decimal
    admin_fee_percentage: Decimal
    admin_fee_amount: Decimal
    net_amount: Decimal


class ReimbursementCreate(BaseModel):
    """Schema for bundling closed batches into a reimbursement."""

    tpa_id: str = Field(..., min_length=1)
    batch_ids: list[UUID]
    admin_fee_percentage: Optional[Decimal] = Field(
        None, description="Override applied to every batch"
    )
    purpose: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = None


class ReimbursementResponse(BaseModel):
    """Schema for reimbursement response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    reference: str
    tpa_id: str
    batch_ids: list[str]
    total_claims_amount: Decimal
    admin_fee_percentage: Optional[Decimal] = None
    admin_fee_amount: Decimal
    net_reimbursement_amount: Decimal
    status: ReimbursementStatus
    receipt_reference: Optional[str] = None
    created_at: datetime


class AdvancePaymentCreate(BaseModel):
    """Schema for recording an advance payment to a TPA."""

    tpa_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    payment_reference: str = Field(..., min_length=1, max_length=100)
    payment_date: date
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    purpose: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None

    @field_validator("payment_reference")
    @classmethod
    def strip_reference(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("payment_reference must not be blank")
        return v


class AdvancePaymentResponse(BaseModel):
    """Schema for advance payment response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    payment_reference: str
    tpa_id: str
    amount: Decimal
    payment_date: date
    payment_method: PaymentMethod
    status: AdvancePaymentStatus
    is_reconciled: bool
