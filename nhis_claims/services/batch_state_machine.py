"""
Batch Status State Machine.

Provides:
- TPA track transitions (draft -> ready_for_submission -> submitted -> closed)
- Rejection from any pre-closure state
- Administrative track for closed batches
- Role requirements per transition

State Diagram (TPA track):
    DRAFT -> READY_FOR_SUBMISSION -> SUBMITTED -> CLOSED
    DRAFT | READY_FOR_SUBMISSION | SUBMITTED -> REJECTED

Administrative track (closed batches only, oversight role only):
    (none) -> UNDER_REVIEW -> VERIFIED -> VERIFIED_AWAITING_PAYMENT -> VERIFIED_PAID
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from nhis_claims.core.enums import BatchAdminStatus, BatchStatus, CallerRole

logger = logging.getLogger(__name__)


class BatchEvent(str, Enum):
    """Events that trigger batch transitions."""

    PREPARE = "prepare"
    SUBMIT = "submit"
    CLOSE = "close"
    REJECT = "reject"


@dataclass(frozen=True)
class BatchTransition:
    """Represents a valid TPA-track transition."""

    from_status: BatchStatus
    to_status: BatchStatus
    event: BatchEvent
    allowed_roles: frozenset[CallerRole]
    requires_reason: bool = False


@dataclass
class BatchTransitionResult:
    """Result of a batch transition check."""

    success: bool
    from_status: str
    to_status: Optional[str] = None
    error: Optional[str] = None
    role_denied: bool = False
    reason_missing: bool = False


_OWNERS = frozenset({CallerRole.FACILITY, CallerRole.TPA})
_TPA = frozenset({CallerRole.TPA})
_REJECTORS = frozenset({CallerRole.TPA, CallerRole.NHIS_ADMIN})
_ADMIN = frozenset({CallerRole.NHIS_ADMIN})

PRE_CLOSURE_STATUSES: tuple[BatchStatus, ...] = (
    BatchStatus.DRAFT,
    BatchStatus.READY_FOR_SUBMISSION,
    BatchStatus.SUBMITTED,
)


# =============================================================================
# Valid Transitions Definition
# =============================================================================


VALID_BATCH_TRANSITIONS: list[BatchTransition] = [
    BatchTransition(
        BatchStatus.DRAFT,
        BatchStatus.READY_FOR_SUBMISSION,
        BatchEvent.PREPARE,
        allowed_roles=_OWNERS,
    ),
    BatchTransition(
        BatchStatus.READY_FOR_SUBMISSION,
        BatchStatus.SUBMITTED,
        BatchEvent.SUBMIT,
        allowed_roles=_OWNERS,
    ),
    BatchTransition(
        BatchStatus.SUBMITTED,
        BatchStatus.CLOSED,
        BatchEvent.CLOSE,
        allowed_roles=_TPA,
    ),
    *[
        BatchTransition(
            status,
            BatchStatus.REJECTED,
            BatchEvent.REJECT,
            allowed_roles=_REJECTORS,
            requires_reason=True,
        )
        for status in PRE_CLOSURE_STATUSES
    ],
]

# Strict successor on the administrative track
NEXT_ADMIN_STATUS: dict[Optional[BatchAdminStatus], BatchAdminStatus] = {
    None: BatchAdminStatus.UNDER_REVIEW,
    BatchAdminStatus.UNDER_REVIEW: BatchAdminStatus.VERIFIED,
    BatchAdminStatus.VERIFIED: BatchAdminStatus.VERIFIED_AWAITING_PAYMENT,
    BatchAdminStatus.VERIFIED_AWAITING_PAYMENT: BatchAdminStatus.VERIFIED_PAID,
}


# =============================================================================
# State Machine
# =============================================================================


class BatchStateMachine:
    """State machine for both batch tracks."""

    def __init__(self):
        self._transitions: dict[tuple[BatchStatus, BatchEvent], BatchTransition] = {
            (t.from_status, t.event): t for t in VALID_BATCH_TRANSITIONS
        }

    def get_transition(
        self,
        from_status: BatchStatus,
        event: BatchEvent,
    ) -> Optional[BatchTransition]:
        """Get transition for a status and event combination."""
        return self._transitions.get((from_status, event))

    def get_valid_events(self, status: BatchStatus) -> list[BatchEvent]:
        """Get all valid events for a given status."""
        return [event for (from_status, event) in self._transitions if from_status == status]

    def validate_transition(
        self,
        batch_id: str,
        current_status: BatchStatus,
        event: BatchEvent,
        role: Optional[CallerRole],
        reason: Optional[str] = None,
    ) -> BatchTransitionResult:
        """Validate a TPA-track transition."""
        transition = self.get_transition(current_status, event)

        if not transition:
            result = BatchTransitionResult(
                success=False,
                from_status=current_status.value,
                error=f"Invalid transition: {current_status.value} + {event.value}",
            )
        elif role not in transition.allowed_roles:
            result = BatchTransitionResult(
                success=False,
                from_status=current_status.value,
                error=f"Role {role.value if role else 'none'} may not {event.value} a batch",
                role_denied=True,
            )
        elif transition.requires_reason and not (reason or "").strip():
            result = BatchTransitionResult(
                success=False,
                from_status=current_status.value,
                error="Reason is required for this transition",
                reason_missing=True,
            )
        else:
            result = BatchTransitionResult(
                success=True,
                from_status=current_status.value,
                to_status=transition.to_status.value,
            )

        if not result.success:
            logger.warning(f"Transition failed for batch {batch_id}: {result.error}")
        return result

    def validate_admin_transition(
        self,
        batch_id: str,
        status: BatchStatus,
        current_admin_status: Optional[BatchAdminStatus],
        target: BatchAdminStatus,
        role: Optional[CallerRole],
    ) -> BatchTransitionResult:
        """Validate an administrative-track step."""
        current = current_admin_status.value if current_admin_status else "none"

        if role not in _ADMIN:
            result = BatchTransitionResult(
                success=False,
                from_status=current,
                error="Only the oversight body drives the administrative track",
                role_denied=True,
            )
        elif status != BatchStatus.CLOSED:
            result = BatchTransitionResult(
                success=False,
                from_status=current,
                error=f"Administrative track requires a closed batch, current: {status.value}",
            )
        elif NEXT_ADMIN_STATUS.get(current_admin_status) != target:
            result = BatchTransitionResult(
                success=False,
                from_status=current,
                error=f"Invalid administrative transition: {current} -> {target.value}",
            )
        else:
            result = BatchTransitionResult(
                success=True,
                from_status=current,
                to_status=target.value,
            )

        if not result.success:
            logger.warning(f"Admin transition failed for batch {batch_id}: {result.error}")
        return result


def is_pre_closure(status: BatchStatus) -> bool:
    """Check if batch may still be rejected."""
    return status in PRE_CLOSURE_STATUSES


def is_editable(status: BatchStatus) -> bool:
    """Check if batch membership may change."""
    return status == BatchStatus.DRAFT


# =============================================================================
# Singleton Instance
# =============================================================================


_batch_state_machine: Optional[BatchStateMachine] = None


def get_batch_state_machine() -> BatchStateMachine:
    """Get singleton batch state machine instance."""
    global _batch_state_machine
    if _batch_state_machine is None:
        _batch_state_machine = BatchStateMachine()
    return _batch_state_machine
