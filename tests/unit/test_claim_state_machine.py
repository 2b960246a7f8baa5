"""
Unit tests for the claim status state machine and decision validation.
"""

from decimal import Decimal

import pytest

from nhis_claims.core.enums import CallerRole, ClaimDecision, ClaimStatus
from nhis_claims.services.claim_state_machine import (
    ClaimStateMachine,
    TransitionContext,
    TransitionEvent,
    get_status_display_name,
    is_decision_mutable,
    is_terminal_status,
    is_valid_combination,
    validate_decision,
)
from nhis_claims.utils.errors import InvalidDecisionError


@pytest.mark.unit
class TestDecisionValidation:
    """Tests for TPA decision validation."""

    def test_approved_within_total(self):
        """Test approving 90000 on a 100000 claim succeeds."""
        outcome = validate_decision(Decimal("100000"), ClaimDecision.APPROVED, Decimal("90000"))
        assert outcome.decision == ClaimDecision.APPROVED
        assert outcome.approved_amount == Decimal("90000")
        assert outcome.reason_for_rejection is None

    def test_approved_above_total_fails(self):
        """Test approving 110000 on a 100000 claim fails."""
        with pytest.raises(InvalidDecisionError) as exc_info:
            validate_decision(Decimal("100000"), ClaimDecision.APPROVED, Decimal("110000"))
        assert exc_info.value.field == "approved_amount"

    def test_approved_equal_to_total(self):
        """Test approving the full total is allowed."""
        outcome = validate_decision(Decimal("100000"), ClaimDecision.APPROVED, Decimal("100000"))
        assert outcome.approved_amount == Decimal("100000")

    def test_approved_zero_is_allowed(self):
        """Test a zero approved amount is allowed."""
        outcome = validate_decision(Decimal("100000"), ClaimDecision.APPROVED, Decimal("0"))
        assert outcome.approved_amount == Decimal("0")

    def test_approved_negative_fails(self):
        """Test negative approved amounts are rejected."""
        with pytest.raises(InvalidDecisionError):
            validate_decision(Decimal("100000"), ClaimDecision.APPROVED, Decimal("-1"))

    def test_approved_without_amount_fails(self):
        """Test approval requires an amount."""
        with pytest.raises(InvalidDecisionError):
            validate_decision(Decimal("100000"), ClaimDecision.APPROVED, None)

    def test_rejected_requires_reason(self):
        """Test rejection with a blank reason fails."""
        with pytest.raises(InvalidDecisionError) as exc_info:
            validate_decision(Decimal("100000"), ClaimDecision.REJECTED, rejection_reason="   ")
        assert exc_info.value.field == "rejection_reason"

    def test_rejected_clears_approved_amount(self):
        """Test rejection drops any approved amount and strips the reason."""
        outcome = validate_decision(
            Decimal("100000"),
            ClaimDecision.REJECTED,
            approved_amount=Decimal("5000"),
            rejection_reason="  Not covered  ",
        )
        assert outcome.approved_amount is None
        assert outcome.reason_for_rejection == "Not covered"

    def test_pending_is_not_a_decision(self):
        """Test pending cannot be recorded as a decision."""
        with pytest.raises(InvalidDecisionError):
            validate_decision(Decimal("100000"), ClaimDecision.PENDING)


@pytest.mark.unit
class TestClaimStateMachine:
    """Tests for claim status transitions."""

    @pytest.fixture
    def state_machine(self):
        return ClaimStateMachine()

    def _context(self, current, target, event, role=CallerRole.NHIS_ADMIN, decision=None):
        return TransitionContext(
            claim_id="claim-123",
            current_status=current,
            target_status=target,
            event=event,
            role=role,
            decision=decision,
        )

    def test_submitted_to_awaiting_verification(self, state_machine):
        """Test SUBMITTED can move to AWAITING_VERIFICATION."""
        assert state_machine.can_transition(
            ClaimStatus.SUBMITTED, ClaimStatus.AWAITING_VERIFICATION
        )

    def test_awaiting_verification_outcomes(self, state_machine):
        """Test AWAITING_VERIFICATION can be verified, not verified or released."""
        next_statuses = state_machine.get_next_statuses(ClaimStatus.AWAITING_VERIFICATION)
        assert set(next_statuses) == {
            ClaimStatus.VERIFIED,
            ClaimStatus.NOT_VERIFIED,
            ClaimStatus.SUBMITTED,
        }

    def test_release_returns_claim_to_submitted(self, state_machine):
        """Test a rejected batch releases its claims without an admin role."""
        result = state_machine.validate_transition(
            self._context(
                ClaimStatus.AWAITING_VERIFICATION,
                ClaimStatus.SUBMITTED,
                TransitionEvent.RELEASE,
                role=None,
            )
        )
        assert result.success
        assert result.to_status == ClaimStatus.SUBMITTED
        assert result.transition.auto_transition

    def test_submitted_cannot_skip_to_paid(self, state_machine):
        """Test SUBMITTED cannot jump to VERIFIED_PAID."""
        assert not state_machine.can_transition(ClaimStatus.SUBMITTED, ClaimStatus.VERIFIED_PAID)

    def test_paid_has_no_transitions(self, state_machine):
        """Test VERIFIED_PAID is terminal."""
        assert state_machine.get_valid_transitions(ClaimStatus.VERIFIED_PAID) == []

    def test_verify_requires_admin(self, state_machine):
        """Test only the oversight role may verify."""
        result = state_machine.validate_transition(
            self._context(
                ClaimStatus.AWAITING_VERIFICATION,
                ClaimStatus.VERIFIED,
                TransitionEvent.VERIFY,
                role=CallerRole.TPA,
            )
        )
        assert not result.success
        assert result.missing_role == CallerRole.NHIS_ADMIN

    def test_queue_for_payment_requires_approved_decision(self, state_machine):
        """Test rejected claims never reach the payment queue."""
        result = state_machine.validate_transition(
            self._context(
                ClaimStatus.VERIFIED,
                ClaimStatus.VERIFIED_AWAITING_PAYMENT,
                TransitionEvent.QUEUE_FOR_PAYMENT,
                decision=ClaimDecision.REJECTED,
            )
        )
        assert not result.success
        assert "approved" in result.error

    def test_queue_for_payment_with_approval(self, state_machine):
        """Test approved, verified claims can be queued."""
        result = state_machine.validate_transition(
            self._context(
                ClaimStatus.VERIFIED,
                ClaimStatus.VERIFIED_AWAITING_PAYMENT,
                TransitionEvent.QUEUE_FOR_PAYMENT,
                decision=ClaimDecision.APPROVED,
            )
        )
        assert result.success
        assert result.to_status == ClaimStatus.VERIFIED_AWAITING_PAYMENT

    def test_target_mismatch_fails(self, state_machine):
        """Test the event must lead to the requested target."""
        result = state_machine.validate_transition(
            self._context(
                ClaimStatus.AWAITING_VERIFICATION,
                ClaimStatus.NOT_VERIFIED,
                TransitionEvent.VERIFY,
            )
        )
        assert not result.success
        assert "mismatch" in result.error

    def test_callbacks_run_on_success(self, state_machine):
        """Test registered callbacks fire after a valid transition."""
        seen = []

        def callback(context, result):
            seen.append(result.to_status)

        state_machine.register_callback(TransitionEvent.REQUEST_VERIFICATION, callback)
        state_machine.execute_transition(
            self._context(
                ClaimStatus.SUBMITTED,
                ClaimStatus.AWAITING_VERIFICATION,
                TransitionEvent.REQUEST_VERIFICATION,
                role=None,
            )
        )
        state_machine.unregister_callback(TransitionEvent.REQUEST_VERIFICATION, callback)

        assert seen == [ClaimStatus.AWAITING_VERIFICATION]


@pytest.mark.unit
class TestStatusHelpers:
    """Tests for status helper functions."""

    def test_status_decision_guard(self):
        """Test paid claims must be approved."""
        assert is_valid_combination(ClaimStatus.VERIFIED_PAID, ClaimDecision.APPROVED)
        assert not is_valid_combination(ClaimStatus.VERIFIED_PAID, ClaimDecision.REJECTED)
        assert not is_valid_combination(ClaimStatus.VERIFIED_AWAITING_PAYMENT, None)
        assert is_valid_combination(ClaimStatus.SUBMITTED, None)

    def test_decision_mutability(self):
        """Test decisions freeze once queued for payment."""
        assert is_decision_mutable(ClaimStatus.VERIFIED)
        assert not is_decision_mutable(ClaimStatus.VERIFIED_AWAITING_PAYMENT)
        assert not is_decision_mutable(ClaimStatus.VERIFIED_PAID)

    def test_terminal_statuses(self):
        """Test terminal status identification."""
        assert is_terminal_status(ClaimStatus.VERIFIED_PAID)
        assert is_terminal_status(ClaimStatus.NOT_VERIFIED)
        assert not is_terminal_status(ClaimStatus.VERIFIED)

    def test_display_names(self):
        """Test human-readable names."""
        assert get_status_display_name(ClaimStatus.VERIFIED_PAID) == "Verified - Paid"
