"""
Financial Models.

Reimbursements bundle closed batches for one TPA; advance payments are a
separate ledger of money paid to a TPA ahead of reconciliation.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from nhis_claims.core.enums import (
    AdvancePaymentStatus,
    PaymentMethod,
    ReimbursementStatus,
)
from nhis_claims.models.base import Base, JSONType, TimeStampedModel, UUIDModel


class Reimbursement(Base, UUIDModel, TimeStampedModel):
    """Payment bundle of one or more closed batches for a TPA."""

    __tablename__ = "reimbursements"

    reference: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="e.g. RMB-2025-000001",
    )
    tpa_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    batch_ids: Mapped[list] = mapped_column(
        JSONType,
        nullable=False,
        comment="Batch ids included at creation (historical)",
    )

    total_claims_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    admin_fee_percentage: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
        comment="Override or common batch rate; null when batches differ",
    )
    admin_fee_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    net_reimbursement_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False
    )

    status: Mapped[ReimbursementStatus] = mapped_column(
        Enum(ReimbursementStatus),
        default=ReimbursementStatus.PENDING,
        nullable=False,
        index=True,
    )
    purpose: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    receipt_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    dispute_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class AdvancePayment(Base, UUIDModel, TimeStampedModel):
    """Advance paid to a TPA; tracked independently of reimbursements."""

    __tablename__ = "advance_payments"

    payment_reference: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        index=True,
    )
    tpa_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod),
        default=PaymentMethod.BANK_TRANSFER,
        nullable=False,
    )
    purpose: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[AdvancePaymentStatus] = mapped_column(
        Enum(AdvancePaymentStatus),
        default=AdvancePaymentStatus.PENDING,
        nullable=False,
        index=True,
    )
    is_reconciled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    approved_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    disbursed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    disbursed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    reconciled_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    reconciled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
