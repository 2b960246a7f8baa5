"""
Claim Status State Machine.

Provides:
- Valid status transitions
- Status/decision guard table
- TPA decision validation
- Event-driven state changes

State Diagram:
    SUBMITTED -> AWAITING_VERIFICATION           (batch submitted)
    AWAITING_VERIFICATION -> SUBMITTED           (batch rejected, claim released)
    AWAITING_VERIFICATION -> VERIFIED | NOT_VERIFIED
    VERIFIED -> VERIFIED_AWAITING_PAYMENT        (decision must be approved)
    VERIFIED_AWAITING_PAYMENT -> VERIFIED_PAID

The TPA decision (pending / approved / rejected) is tracked independently of
status and may be recorded in any status up to VERIFIED.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from nhis_claims.core.enums import CallerRole, ClaimDecision, ClaimStatus
from nhis_claims.utils.errors import InvalidDecisionError

logger = logging.getLogger(__name__)


class TransitionEvent(str, Enum):
    """Events that trigger claim status transitions."""

    REQUEST_VERIFICATION = "request_verification"
    VERIFY = "verify"
    FAIL_VERIFICATION = "fail_verification"
    QUEUE_FOR_PAYMENT = "queue_for_payment"
    MARK_PAID = "mark_paid"
    RELEASE = "release"


@dataclass
class Transition:
    """Represents a valid state transition."""

    from_status: ClaimStatus
    to_status: ClaimStatus
    event: TransitionEvent
    requires_role: Optional[CallerRole] = None
    requires_decision: Optional[ClaimDecision] = None
    requires_reason: bool = False
    auto_transition: bool = False  # Triggered by a batch transition


@dataclass
class TransitionContext:
    """Context for a transition attempt."""

    claim_id: str
    current_status: ClaimStatus
    target_status: ClaimStatus
    event: TransitionEvent
    decision: Optional[ClaimDecision] = None
    triggered_by: Optional[str] = None
    role: Optional[CallerRole] = None
    reason: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class TransitionResult:
    """Result of a transition attempt."""

    success: bool
    from_status: ClaimStatus
    to_status: Optional[ClaimStatus] = None
    error: Optional[str] = None
    transition: Optional[Transition] = None
    missing_role: Optional[CallerRole] = None


# =============================================================================
# Valid Transitions Definition
# =============================================================================


VALID_TRANSITIONS: list[Transition] = [
    Transition(
        from_status=ClaimStatus.SUBMITTED,
        to_status=ClaimStatus.AWAITING_VERIFICATION,
        event=TransitionEvent.REQUEST_VERIFICATION,
        auto_transition=True,
    ),
    Transition(
        from_status=ClaimStatus.AWAITING_VERIFICATION,
        to_status=ClaimStatus.SUBMITTED,
        event=TransitionEvent.RELEASE,
        auto_transition=True,
    ),
    Transition(
        from_status=ClaimStatus.AWAITING_VERIFICATION,
        to_status=ClaimStatus.VERIFIED,
        event=TransitionEvent.VERIFY,
        requires_role=CallerRole.NHIS_ADMIN,
    ),
    Transition(
        from_status=ClaimStatus.AWAITING_VERIFICATION,
        to_status=ClaimStatus.NOT_VERIFIED,
        event=TransitionEvent.FAIL_VERIFICATION,
        requires_role=CallerRole.NHIS_ADMIN,
    ),
    Transition(
        from_status=ClaimStatus.VERIFIED,
        to_status=ClaimStatus.VERIFIED_AWAITING_PAYMENT,
        event=TransitionEvent.QUEUE_FOR_PAYMENT,
        requires_role=CallerRole.NHIS_ADMIN,
        requires_decision=ClaimDecision.APPROVED,
    ),
    Transition(
        from_status=ClaimStatus.VERIFIED_AWAITING_PAYMENT,
        to_status=ClaimStatus.VERIFIED_PAID,
        event=TransitionEvent.MARK_PAID,
        requires_role=CallerRole.NHIS_ADMIN,
        requires_decision=ClaimDecision.APPROVED,
    ),
]


_ANY_DECISION: frozenset[Optional[ClaimDecision]] = frozenset(
    {None, ClaimDecision.PENDING, ClaimDecision.APPROVED, ClaimDecision.REJECTED}
)

# Which (status, decision) pairs may coexist
VALID_STATUS_DECISIONS: dict[ClaimStatus, frozenset[Optional[ClaimDecision]]] = {
    ClaimStatus.SUBMITTED: _ANY_DECISION,
    ClaimStatus.AWAITING_VERIFICATION: _ANY_DECISION,
    ClaimStatus.NOT_VERIFIED: _ANY_DECISION,
    ClaimStatus.VERIFIED: _ANY_DECISION,
    ClaimStatus.VERIFIED_AWAITING_PAYMENT: frozenset({ClaimDecision.APPROVED}),
    ClaimStatus.VERIFIED_PAID: frozenset({ClaimDecision.APPROVED}),
}

# Statuses in which the TPA may still record or change a decision
DECISION_MUTABLE_STATUSES: frozenset[ClaimStatus] = frozenset(
    {
        ClaimStatus.SUBMITTED,
        ClaimStatus.AWAITING_VERIFICATION,
        ClaimStatus.NOT_VERIFIED,
        ClaimStatus.VERIFIED,
    }
)


def is_valid_combination(status: ClaimStatus, decision: Optional[ClaimDecision]) -> bool:
    """Check whether a status/decision pair is allowed."""
    return decision in VALID_STATUS_DECISIONS.get(status, frozenset())


# =============================================================================
# Decision Validation
# =============================================================================


@dataclass(frozen=True)
class DecisionOutcome:
    """Normalized decision fields to write onto a claim."""

    decision: ClaimDecision
    approved_amount: Optional[Decimal]
    reason_for_rejection: Optional[str]


def validate_decision(
    total_cost: Decimal,
    decision: ClaimDecision,
    approved_amount: Optional[Decimal] = None,
    rejection_reason: Optional[str] = None,
    claim_id: Optional[str] = None,
) -> DecisionOutcome:
    """
    Validate a TPA decision against the claim total.

    Approved requires 0 <= approved_amount <= total_cost. Rejected requires a
    non-empty reason and clears any approved amount.

    Raises:
        InvalidDecisionError: if the decision payload is inconsistent
    """
    if decision == ClaimDecision.APPROVED:
        if approved_amount is None:
            raise InvalidDecisionError(
                "Approved decision requires an approved amount",
                field="approved_amount",
                entity_id=claim_id,
            )
        if approved_amount < 0:
            raise InvalidDecisionError(
                "Approved amount cannot be negative",
                field="approved_amount",
                entity_id=claim_id,
            )
        if approved_amount > total_cost:
            raise InvalidDecisionError(
                f"Approved amount {approved_amount} exceeds claim total {total_cost}",
                field="approved_amount",
                entity_id=claim_id,
            )
        return DecisionOutcome(decision, approved_amount, None)

    if decision == ClaimDecision.REJECTED:
        reason = (rejection_reason or "").strip()
        if not reason:
            raise InvalidDecisionError(
                "Rejected decision requires a rejection reason",
                field="rejection_reason",
                entity_id=claim_id,
            )
        return DecisionOutcome(decision, None, reason)

    raise InvalidDecisionError(
        f"Decision must be approved or rejected, got {decision.value}",
        field="decision",
        entity_id=claim_id,
    )


# =============================================================================
# State Machine
# =============================================================================


class ClaimStateMachine:
    """
    Claim lifecycle state machine.

    Guards each status change by event, caller role and the claim's
    decision, and notifies registered callbacks after a change.
    """

    def __init__(self):
        self._transitions: dict[tuple[ClaimStatus, TransitionEvent], Transition] = {}
        self._from_status_map: dict[ClaimStatus, list[Transition]] = {}
        self._callbacks: dict[TransitionEvent, list[Callable]] = {}

        self._build_transition_maps()

    def _build_transition_maps(self) -> None:
        """Build lookup maps for transitions."""
        for transition in VALID_TRANSITIONS:
            self._transitions[(transition.from_status, transition.event)] = transition
            self._from_status_map.setdefault(transition.from_status, []).append(transition)

    def get_valid_transitions(self, status: ClaimStatus) -> list[Transition]:
        """Get all valid transitions from a given status."""
        return self._from_status_map.get(status, [])

    def get_next_statuses(self, status: ClaimStatus) -> list[ClaimStatus]:
        """Get all possible next statuses from current status."""
        return [t.to_status for t in self.get_valid_transitions(status)]

    def can_transition(self, from_status: ClaimStatus, to_status: ClaimStatus) -> bool:
        """Check if transition from one status to another is valid."""
        return to_status in self.get_next_statuses(from_status)

    def get_transition(
        self,
        from_status: ClaimStatus,
        event: TransitionEvent,
    ) -> Optional[Transition]:
        """Get transition for a status and event combination."""
        return self._transitions.get((from_status, event))

    def validate_transition(self, context: TransitionContext) -> TransitionResult:
        """
        Validate a transition attempt.

        Args:
            context: Transition context with all details

        Returns:
            TransitionResult indicating success/failure
        """
        transition = self.get_transition(context.current_status, context.event)

        if not transition:
            return TransitionResult(
                success=False,
                from_status=context.current_status,
                error=f"Invalid transition: {context.current_status.value} + {context.event.value}",
            )

        if context.target_status != transition.to_status:
            return TransitionResult(
                success=False,
                from_status=context.current_status,
                error=f"Target status mismatch. Expected {transition.to_status.value}, got {context.target_status.value}",
            )

        if transition.requires_role and context.role != transition.requires_role:
            return TransitionResult(
                success=False,
                from_status=context.current_status,
                error=f"Role {transition.requires_role.value} required",
                missing_role=transition.requires_role,
            )

        if transition.requires_decision and context.decision != transition.requires_decision:
            current = context.decision.value if context.decision else "none"
            return TransitionResult(
                success=False,
                from_status=context.current_status,
                error=f"Decision must be {transition.requires_decision.value}, current: {current}",
            )

        if not is_valid_combination(transition.to_status, context.decision):
            return TransitionResult(
                success=False,
                from_status=context.current_status,
                error=f"Status {transition.to_status.value} not allowed with decision {context.decision}",
            )

        if transition.requires_reason and not context.reason:
            return TransitionResult(
                success=False,
                from_status=context.current_status,
                error="Reason is required for this transition",
            )

        return TransitionResult(
            success=True,
            from_status=context.current_status,
            to_status=transition.to_status,
            transition=transition,
        )

    def execute_transition(self, context: TransitionContext) -> TransitionResult:
        """
        Execute a state transition.

        Validates the transition and triggers callbacks.
        """
        result = self.validate_transition(context)
        if not result.success:
            logger.warning(f"Transition failed for claim {context.claim_id}: {result.error}")
            return result

        for callback in self._callbacks.get(context.event, []):
            try:
                callback(context, result)
            except Exception as e:
                logger.error(f"Transition callback error: {e}")

        logger.info(
            f"Claim {context.claim_id} transitioned: "
            f"{context.current_status.value} -> {result.to_status.value} "
            f"(event: {context.event.value})"
        )

        return result

    def register_callback(
        self,
        event: TransitionEvent,
        callback: Callable[[TransitionContext, TransitionResult], None],
    ) -> None:
        """Register a callback for a transition event."""
        self._callbacks.setdefault(event, []).append(callback)

    def unregister_callback(self, event: TransitionEvent, callback: Callable) -> None:
        """Unregister a callback."""
        if callback in self._callbacks.get(event, []):
            self._callbacks[event].remove(callback)


# =============================================================================
# Status Helpers
# =============================================================================


def is_terminal_status(status: ClaimStatus) -> bool:
    """Check if status is terminal (no further transitions)."""
    return status in (ClaimStatus.NOT_VERIFIED, ClaimStatus.VERIFIED_PAID)


def is_decision_mutable(status: ClaimStatus) -> bool:
    """Check if the TPA decision may still change."""
    return status in DECISION_MUTABLE_STATUSES


def get_status_display_name(status: ClaimStatus) -> str:
    """Get human-readable status name."""
    display_names = {
        ClaimStatus.SUBMITTED: "Submitted",
        ClaimStatus.AWAITING_VERIFICATION: "Awaiting Verification",
        ClaimStatus.NOT_VERIFIED: "Not Verified",
        ClaimStatus.VERIFIED: "Verified",
        ClaimStatus.VERIFIED_AWAITING_PAYMENT: "Verified - Awaiting Payment",
        ClaimStatus.VERIFIED_PAID: "Verified - Paid",
    }
    return display_names.get(status, status.value)


# =============================================================================
# Singleton Instance
# =============================================================================


_state_machine: Optional[ClaimStateMachine] = None


def get_claim_state_machine() -> ClaimStateMachine:
    """Get singleton state machine instance."""
    global _state_machine
    if _state_machine is None:
        _state_machine = ClaimStateMachine()
    return _state_machine
