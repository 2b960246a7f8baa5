"""
Pydantic Schemas for the NHIS Claims Core.
"""

from nhis_claims.schemas.caller import Caller, DocumentReference
from nhis_claims.schemas.claim import (
    ClaimDecisionInput,
    ClaimFilter,
    ClaimResponse,
    ClaimStatusHistoryResponse,
    ClaimSubmit,
)
from nhis_claims.schemas.batch import (
    BatchCreate,
    BatchResponse,
    BatchSubmitInput,
    ClaimStatistics,
    ClosureInput,
    ClosurePreview,
    ClosureReportResponse,
    ClosureReview,
    RejectionReasonSummary,
)
from nhis_claims.schemas.financial import (
    AdvancePaymentCreate,
    AdvancePaymentResponse,
    BatchFinancials,
    ReimbursementCreate,
    ReimbursementResponse,
)
from nhis_claims.schemas.variance import (
    CategoryVariance,
    CostBreakdown,
    CostStandard,
    VarianceReport,
)
from nhis_claims.schemas.validation import (
    ErrorRecordFilter,
    ErrorRecordResponse,
    ErrorStatistics,
    ValidationFinding,
    ValidationSummary,
)

__all__ = [
    "Caller",
    "DocumentReference",
    "ClaimDecisionInput",
    "ClaimFilter",
    "ClaimResponse",
    "ClaimStatusHistoryResponse",
    "ClaimSubmit",
    "BatchCreate",
    "BatchResponse",
    "BatchSubmitInput",
    "ClaimStatistics",
    "ClosureInput",
    "ClosurePreview",
    "ClosureReportResponse",
    "ClosureReview",
    "RejectionReasonSummary",
    "AdvancePaymentCreate",
    "AdvancePaymentResponse",
    "BatchFinancials",
    "ReimbursementCreate",
    "ReimbursementResponse",
    "CategoryVariance",
    "CostBreakdown",
    "CostStandard",
    "VarianceReport",
    "ErrorRecordFilter",
    "ErrorRecordResponse",
    "ErrorStatistics",
    "ValidationFinding",
    "ValidationSummary",
]
