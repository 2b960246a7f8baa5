"""
Error Record Models.

Error records are findings produced by the validation engine. They are data,
not exceptions, and move through the escalation workflow.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import (
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

from nhis_claims.core.enums import (
    ErrorCategory,
    ErrorRecordStatus,
    ErrorSeverity,
    ErrorType,
)
from nhis_claims.models.base import Base, JSONType, TimeStampedModel, UUIDModel, utcnow


class ErrorRecord(Base, UUIDModel, TimeStampedModel):
    """Persisted validation finding for a claim or batch."""

    __tablename__ = "error_records"

    # Scope
    claim_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    batch_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("batches.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    tpa_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)

    # Classification
    error_code: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    error_type: Mapped[ErrorType] = mapped_column(Enum(ErrorType), nullable=False)
    category: Mapped[ErrorCategory] = mapped_column(Enum(ErrorCategory), nullable=False)
    severity: Mapped[ErrorSeverity] = mapped_column(
        Enum(ErrorSeverity),
        nullable=False,
        index=True,
        comment="Fixed at creation",
    )

    # Evidence
    field_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    expected_value: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    actual_value: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    expected_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(14, 2), nullable=True
    )
    actual_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(14, 2), nullable=True
    )
    amount_deviation: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(14, 2), nullable=True
    )
    deviation_percentage: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(8, 2), nullable=True
    )
    evidence: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # Workflow
    status: Mapped[ErrorRecordStatus] = mapped_column(
        Enum(ErrorRecordStatus),
        default=ErrorRecordStatus.OPEN,
        nullable=False,
        index=True,
    )
    resolution: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    escalation_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        Index("ix_error_records_scope_code", "claim_id", "batch_id", "error_code"),
    )


class ErrorRecordTransition(Base, UUIDModel):
    """Audit row for every escalation workflow transition."""

    __tablename__ = "error_record_transitions"

    error_record_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("error_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_status: Mapped[ErrorRecordStatus] = mapped_column(
        Enum(ErrorRecordStatus), nullable=False
    )
    to_status: Mapped[ErrorRecordStatus] = mapped_column(
        Enum(ErrorRecordStatus), nullable=False
    )
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(20), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
