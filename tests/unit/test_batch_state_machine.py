"""
Unit tests for the batch state machine (TPA and administrative tracks).
"""

import pytest

from nhis_claims.core.enums import BatchAdminStatus, BatchStatus, CallerRole
from nhis_claims.services.batch_state_machine import (
    BatchEvent,
    BatchStateMachine,
    is_editable,
    is_pre_closure,
)


@pytest.mark.unit
class TestBatchTpaTrack:
    """Tests for draft -> submitted -> closed transitions."""

    @pytest.fixture
    def state_machine(self):
        return BatchStateMachine()

    def test_draft_events(self, state_machine):
        """Test a draft can be prepared or rejected."""
        events = state_machine.get_valid_events(BatchStatus.DRAFT)
        assert BatchEvent.PREPARE in events
        assert BatchEvent.REJECT in events
        assert BatchEvent.CLOSE not in events

    def test_submit_from_ready(self, state_machine):
        """Test READY_FOR_SUBMISSION submits to SUBMITTED."""
        result = state_machine.validate_transition(
            "b-1", BatchStatus.READY_FOR_SUBMISSION, BatchEvent.SUBMIT, CallerRole.TPA
        )
        assert result.success
        assert result.to_status == BatchStatus.SUBMITTED.value

    def test_close_requires_submitted(self, state_machine):
        """Test closing a draft is illegal."""
        result = state_machine.validate_transition(
            "b-1", BatchStatus.DRAFT, BatchEvent.CLOSE, CallerRole.TPA
        )
        assert not result.success
        assert not result.role_denied

    def test_close_by_facility_denied(self, state_machine):
        """Test only the TPA closes a batch."""
        result = state_machine.validate_transition(
            "b-1", BatchStatus.SUBMITTED, BatchEvent.CLOSE, CallerRole.FACILITY
        )
        assert not result.success
        assert result.role_denied

    def test_reject_requires_reason(self, state_machine):
        """Test rejection without a reason fails."""
        result = state_machine.validate_transition(
            "b-1", BatchStatus.SUBMITTED, BatchEvent.REJECT, CallerRole.NHIS_ADMIN, "  "
        )
        assert not result.success
        assert result.reason_missing

    def test_closed_cannot_be_rejected(self, state_machine):
        """Test closed batches are immutable on the TPA track."""
        result = state_machine.validate_transition(
            "b-1", BatchStatus.CLOSED, BatchEvent.REJECT, CallerRole.NHIS_ADMIN, "late"
        )
        assert not result.success

    def test_status_helpers(self):
        """Test pre-closure and editable status helpers."""
        assert is_pre_closure(BatchStatus.SUBMITTED)
        assert not is_pre_closure(BatchStatus.CLOSED)
        assert is_editable(BatchStatus.DRAFT)
        assert not is_editable(BatchStatus.SUBMITTED)


@pytest.mark.unit
class TestBatchAdminTrack:
    """Tests for the administrative review track."""

    @pytest.fixture
    def state_machine(self):
        return BatchStateMachine()

    def test_first_step_is_under_review(self, state_machine):
        """Test a closed batch enters UNDER_REVIEW first."""
        result = state_machine.validate_admin_transition(
            "b-1", BatchStatus.CLOSED, None, BatchAdminStatus.UNDER_REVIEW, CallerRole.NHIS_ADMIN
        )
        assert result.success

    def test_cannot_skip_steps(self, state_machine):
        """Test the admin track is strictly sequential."""
        result = state_machine.validate_admin_transition(
            "b-1",
            BatchStatus.CLOSED,
            BatchAdminStatus.UNDER_REVIEW,
            BatchAdminStatus.VERIFIED_PAID,
            CallerRole.NHIS_ADMIN,
        )
        assert not result.success

    def test_requires_closed_batch(self, state_machine):
        """Test the admin track only applies to closed batches."""
        result = state_machine.validate_admin_transition(
            "b-1", BatchStatus.SUBMITTED, None, BatchAdminStatus.UNDER_REVIEW, CallerRole.NHIS_ADMIN
        )
        assert not result.success

    def test_requires_admin_role(self, state_machine):
        """Test TPAs cannot drive the admin track."""
        result = state_machine.validate_admin_transition(
            "b-1", BatchStatus.CLOSED, None, BatchAdminStatus.UNDER_REVIEW, CallerRole.TPA
        )
        assert not result.success
        assert result.role_denied
