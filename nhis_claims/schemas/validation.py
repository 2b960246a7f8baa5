"""
Pydantic Schemas for validation findings and error records.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from nhis_claims.core.enums import (
    ErrorCategory,
    ErrorRecordStatus,
    ErrorSeverity,
    ErrorType,
)


class ValidationFinding(BaseModel):
    """A single rule firing; persisted as an error record."""

    error_code: str
    title: str
    description: str
    category: ErrorCategory
    error_type: ErrorType
    severity: ErrorSeverity
    claim_id: Optional[UUID] = None
    batch_id: Optional[UUID] = None
    tpa_id: Optional[str] = None
    field_name: Optional[str] = None
    expected_value: Optional[str] = None
    actual_value: Optional[str] = None
    expected_amount: Optional[Decimal] = None
    actual_amount: Optional[Decimal] = None
    amount_deviation: Optional[Decimal] = None
    deviation_percentage: Optional[Decimal] = None
    evidence: dict = Field(default_factory=dict)


class ValidationSummary(BaseModel):
    """Counts of findings by severity."""

    total: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    is_valid: bool = True


class ErrorRecordFilter(BaseModel):
    """Filters for listing error records."""

    claim_id: Optional[UUID] = None
    batch_id: Optional[UUID] = None
    tpa_id: Optional[str] = None
    status: Optional[ErrorRecordStatus] = None
    severity: Optional[ErrorSeverity] = None
    category: Optional[ErrorCategory] = None


class ErrorRecordResponse(BaseModel):
    """Schema for error record response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    claim_id: Optional[UUID] = None
    batch_id: Optional[UUID] = None
    error_code: str
    title: str
    description: str
    error_type: ErrorType
    category: ErrorCategory
    severity: ErrorSeverity
    status: ErrorRecordStatus
    resolution: Optional[str] = None
    escalation_note: Optional[str] = None
    created_at: datetime


class ErrorStatistics(BaseModel):
    """Aggregate error record counts."""

    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_severity: dict[str, int] = Field(default_factory=dict)
    by_category: dict[str, int] = Field(default_factory=dict)
    by_type: dict[str, int] = Field(default_factory=dict)
