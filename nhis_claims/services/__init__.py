"""
Services Layer for NHIS Claims Administration.

Exports the pure engines (state machines, variance, validation, escalation,
financials) and the session-bound services that persist their results.
"""

from nhis_claims.services.claim_state_machine import (
    ClaimStateMachine,
    TransitionEvent,
    get_claim_state_machine,
    validate_decision,
)
from nhis_claims.services.batch_state_machine import (
    BatchEvent,
    BatchStateMachine,
    get_batch_state_machine,
)
from nhis_claims.services.variance_engine import VarianceEngine, get_variance_engine
from nhis_claims.services.validation_engine import ValidationEngine, get_validation_engine
from nhis_claims.services.escalation import EscalationWorkflow, get_escalation_workflow
from nhis_claims.services.financial_engine import FinancialEngine, get_financial_engine
from nhis_claims.services.notifications import (
    InMemoryNotificationSink,
    LoggingNotificationSink,
    NotificationDispatcher,
    NotificationEvent,
    NotificationSink,
)
from nhis_claims.services.claims_service import ClaimsService, get_claims_service
from nhis_claims.services.batch_service import BatchService, get_batch_service
from nhis_claims.services.error_workflow_service import ErrorWorkflowService
from nhis_claims.services.reconciliation_service import (
    ReconciliationService,
    get_reconciliation_service,
)

__all__ = [
    # State machines
    "ClaimStateMachine",
    "TransitionEvent",
    "get_claim_state_machine",
    "validate_decision",
    "BatchEvent",
    "BatchStateMachine",
    "get_batch_state_machine",
    # Engines
    "VarianceEngine",
    "get_variance_engine",
    "ValidationEngine",
    "get_validation_engine",
    "EscalationWorkflow",
    "get_escalation_workflow",
    "FinancialEngine",
    "get_financial_engine",
    # Notifications
    "InMemoryNotificationSink",
    "LoggingNotificationSink",
    "NotificationDispatcher",
    "NotificationEvent",
    "NotificationSink",
    # Services
    "ClaimsService",
    "get_claims_service",
    "BatchService",
    "get_batch_service",
    "ErrorWorkflowService",
    "ReconciliationService",
    "get_reconciliation_service",
]
