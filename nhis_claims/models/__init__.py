"""
SQLAlchemy Models for the NHIS Claims Core.

This module exports all database models so that ``Base.metadata`` is complete
once the package is imported.
"""

from nhis_claims.models.base import Base, JSONType, TimeStampedModel, UUIDModel
from nhis_claims.models.claim import Claim, ClaimStatusHistory
from nhis_claims.models.batch import Batch, BatchClosureReport, BatchStatusHistory
from nhis_claims.models.financial import AdvancePayment, Reimbursement
from nhis_claims.models.error_record import ErrorRecord, ErrorRecordTransition

__all__ = [
    "Base",
    "JSONType",
    "TimeStampedModel",
    "UUIDModel",
    # Claims
    "Claim",
    "ClaimStatusHistory",
    # Batches
    "Batch",
    "BatchClosureReport",
    "BatchStatusHistory",
    # Financial
    "AdvancePayment",
    "Reimbursement",
    # Errors
    "ErrorRecord",
    "ErrorRecordTransition",
]
