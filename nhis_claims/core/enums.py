"""
Core Enumerations for the NHIS Claims Core.

Provides:
- Claim status and TPA decision enums
- Batch status (TPA track) and administrative status enums
- Error record classification enums
- Reimbursement and advance payment status enums
- Caller roles
"""

from enum import Enum


# =============================================================================
# Actor Enums
# =============================================================================


class CallerRole(str, Enum):
    """Roles issued by the identity provider."""

    FACILITY = "facility"
    TPA = "tpa"
    NHIS_ADMIN = "nhis_admin"


# =============================================================================
# Claim Enums
# =============================================================================


class ClaimStatus(str, Enum):
    """Claim lifecycle status."""

    SUBMITTED = "submitted"
    AWAITING_VERIFICATION = "awaiting_verification"
    NOT_VERIFIED = "not_verified"
    VERIFIED = "verified"
    VERIFIED_AWAITING_PAYMENT = "verified_awaiting_payment"
    VERIFIED_PAID = "verified_paid"


class ClaimDecision(str, Enum):
    """TPA decision on a claim (independent of status)."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# =============================================================================
# Batch Enums
# =============================================================================


class BatchStatus(str, Enum):
    """Batch status on the TPA track."""

    DRAFT = "draft"
    READY_FOR_SUBMISSION = "ready_for_submission"
    SUBMITTED = "submitted"
    CLOSED = "closed"
    REJECTED = "rejected"


class BatchAdminStatus(str, Enum):
    """Administrative track driven by the oversight body after closure."""

    UNDER_REVIEW = "under_review"
    VERIFIED = "verified"
    VERIFIED_AWAITING_PAYMENT = "verified_awaiting_payment"
    VERIFIED_PAID = "verified_paid"


class BatchType(str, Enum):
    """Batch grouping window."""

    WEEKLY = "weekly"
    AD_HOC = "ad_hoc"


class ClosureReportStatus(str, Enum):
    """Closure report review status."""

    SUBMITTED = "submitted"
    REVIEWED = "reviewed"


# =============================================================================
# Variance / Error Enums
# =============================================================================


class RiskLevel(str, Enum):
    """Cost variance risk band."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ErrorSeverity(str, Enum):
    """Severity of an error record."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorType(str, Enum):
    """Nature of an error record."""

    VALIDATION = "validation"
    DISCREPANCY = "discrepancy"
    FRAUD = "fraud"
    QUALITY = "quality"


class ErrorCategory(str, Enum):
    """Category of rule that produced an error record."""

    MISSING_DATA = "missing_data"
    DUPLICATE = "duplicate"
    COST_ANOMALY = "cost_anomaly"
    DECISION_MISMATCH = "decision_mismatch"


class ErrorRecordStatus(str, Enum):
    """Escalation workflow status."""

    OPEN = "open"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    ESCALATED = "escalated"
    IGNORED = "ignored"


# =============================================================================
# Financial Enums
# =============================================================================


class ReimbursementStatus(str, Enum):
    """Reimbursement lifecycle status."""

    PENDING = "pending"
    PROCESSED = "processed"
    COMPLETED = "completed"
    DISPUTED = "disputed"


class AdvancePaymentStatus(str, Enum):
    """Advance payment ledger status."""

    PENDING = "pending"
    APPROVED = "approved"
    DISBURSED = "disbursed"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    """How money was moved to the TPA."""

    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    ELECTRONIC = "electronic"
    CASH = "cash"
