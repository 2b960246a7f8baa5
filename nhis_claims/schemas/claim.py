"""
Pydantic Schemas for Claims.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from nhis_claims.core.enums import ClaimDecision, ClaimStatus
from nhis_claims.schemas.variance import CostBreakdown


# =============================================================================
# Input Schemas
# =============================================================================


class ClaimSubmit(BaseModel):
    """Schema for submitting a new claim."""

    unique_claim_id: str = Field(..., min_length=1, max_length=100)
    beneficiary_id: str = Field(..., min_length=1, max_length=100)
    beneficiary_name: str = Field(..., max_length=255, description="Enrollee full name")
    facility_id: str = Field(..., max_length=100)
    tpa_id: str = Field(..., min_length=1, max_length=100)
    hospital_number: Optional[str] = Field(None, max_length=100)

    primary_diagnosis: Optional[str] = Field(None, max_length=500)
    secondary_diagnosis: Optional[str] = Field(None, max_length=500)
    treatment_procedure: Optional[str] = Field(None, max_length=500)
    date_of_admission: Optional[date] = None
    date_of_discharge: Optional[date] = None
    date_of_treatment: Optional[date] = None

    cost_of_investigation: Decimal = Field(default=Decimal("0"), ge=0)
    cost_of_procedure: Decimal = Field(default=Decimal("0"), ge=0)
    cost_of_medication: Decimal = Field(default=Decimal("0"), ge=0)
    cost_of_other_services: Decimal = Field(default=Decimal("0"), ge=0)
    total_cost: Optional[Decimal] = Field(
        None, description="Optional; must equal the sum of the categories if given"
    )

    batch_id: Optional[UUID] = Field(None, description="Draft batch to join on submit")

    @property
    def costs(self) -> CostBreakdown:
        return CostBreakdown(
            investigation=self.cost_of_investigation,
            procedure=self.cost_of_procedure,
            medication=self.cost_of_medication,
            other_services=self.cost_of_other_services,
        )


class ClaimDecisionInput(BaseModel):
    """TPA decision payload."""

    decision: ClaimDecision
    approved_amount: Optional[Decimal] = None
    rejection_reason: Optional[str] = None
    remarks: Optional[str] = None


class ClaimFilter(BaseModel):
    """Filters for listing claims."""

    batch_id: Optional[UUID] = None
    tpa_id: Optional[str] = None
    facility_id: Optional[str] = None
    status: Optional[ClaimStatus] = None
    decision: Optional[ClaimDecision] = None
    unassigned_only: bool = False


# =============================================================================
# Response Schemas
# =============================================================================


class ClaimResponse(BaseModel):
    """Schema for claim response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    unique_claim_id: str
    beneficiary_id: str
    beneficiary_name: str
    facility_id: str
    tpa_id: str
    primary_diagnosis: Optional[str] = None
    treatment_procedure: Optional[str] = None
    cost_of_investigation: Decimal
    cost_of_procedure: Decimal
    cost_of_medication: Decimal
    cost_of_other_services: Decimal
    total_cost: Decimal
    approved_amount: Optional[Decimal] = None
    status: ClaimStatus
    decision: Optional[ClaimDecision] = None
    reason_for_rejection: Optional[str] = None
    payment_date: Optional[date] = None
    batch_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime


class ClaimStatusHistoryResponse(BaseModel):
    """Schema for a claim history row."""

    model_config = ConfigDict(from_attributes=True)

    previous_status: Optional[ClaimStatus] = None
    new_status: ClaimStatus
    previous_decision: Optional[ClaimDecision] = None
    new_decision: Optional[ClaimDecision] = None
    changed_at: datetime
    changed_by: Optional[str] = None
    actor_role: str
    reason: Optional[str] = None
