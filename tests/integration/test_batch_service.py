"""
Integration tests for the batch service: membership, submission, atomic
closure, rejection and the administrative track.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from nhis_claims.core.enums import (
    BatchAdminStatus,
    BatchStatus,
    ClaimDecision,
    ClaimStatus,
    ClosureReportStatus,
)
from nhis_claims.models.error_record import ErrorRecord
from nhis_claims.schemas.batch import (
    BatchCreate,
    BatchSubmitInput,
    ClosureInput,
    ClosureReview,
)
from nhis_claims.schemas.claim import ClaimDecisionInput, ClaimFilter
from nhis_claims.services.batch_service import BatchService
from nhis_claims.services.claims_service import ClaimsService
from nhis_claims.utils.errors import (
    ConflictError,
    IllegalTransitionError,
    IncompleteClosureError,
    PermissionDeniedError,
    ValidationError,
)

TPA_ID = "TPA-001"
FACILITY_ID = "FAC-001"


def closure_input(**overrides) -> ClosureInput:
    data = {
        "review_summary": "All claims reviewed against NHIA tariffs",
        "payment_justification": "Approved claims meet documentation requirements",
        "paid_amount": Decimal("150000"),
        "paid_claims": 1,
        "beneficiaries_paid": 1,
        "payment_date": date(2025, 4, 1),
        "signature": "T. Officer",
        "consent": True,
    }
    data.update(overrides)
    return ClosureInput(**data)


async def submitted_batch(session, tpa_caller, cover_letter, claim_payload, notifier=None, claims=1):
    """Create a batch with ``claims`` member claims and submit it."""
    service = BatchService(session, notifier=notifier)
    batch = await service.create(BatchCreate(tpa_id=TPA_ID, facility_id=FACILITY_ID), tpa_caller)
    members = [
        await ClaimsService(session).submit(claim_payload(batch_id=batch.id), tpa_caller)
        for _ in range(claims)
    ]
    await service.attach_cover_letter(batch.id, cover_letter, tpa_caller)
    await service.prepare_submission(batch.id, tpa_caller)
    await service.submit(
        batch.id, BatchSubmitInput(emails=["claims@nhis.gov.ng"]), tpa_caller
    )
    return batch, members


async def error_record_count(session, batch_id) -> int:
    result = await session.execute(
        select(func.count(ErrorRecord.id)).where(ErrorRecord.batch_id == batch_id)
    )
    return result.scalar_one()


@pytest.mark.integration
class TestBatchDrafts:
    """Tests for batch creation and membership."""

    @pytest.mark.asyncio
    async def test_weekly_batch_number(self, session, tpa_caller):
        """Test weekly batches are numbered by facility code and ISO week."""
        batch = await BatchService(session).create(
            BatchCreate(
                tpa_id=TPA_ID,
                facility_id=FACILITY_ID,
                facility_code="gh01",
                week_start_date=date(2025, 3, 3),
                week_end_date=date(2025, 3, 9),
            ),
            tpa_caller,
        )
        assert batch.batch_number == "GH01-2025-W10"
        assert batch.status == BatchStatus.DRAFT

    @pytest.mark.asyncio
    async def test_duplicate_week_rejected(self, session, tpa_caller):
        """Test one weekly batch per facility code and week."""
        payload = BatchCreate(
            tpa_id=TPA_ID,
            facility_id=FACILITY_ID,
            facility_code="GH01",
            week_start_date=date(2025, 3, 3),
            week_end_date=date(2025, 3, 9),
        )
        await BatchService(session).create(payload, tpa_caller)
        with pytest.raises(ValidationError):
            await BatchService(session).create(payload, tpa_caller)

    @pytest.mark.asyncio
    async def test_sequential_batch_numbers(self, session, tpa_caller):
        """Test ad-hoc batches get sequential numbers."""
        service = BatchService(session)
        first = await service.create(BatchCreate(tpa_id=TPA_ID, facility_id=FACILITY_ID), tpa_caller)
        second = await service.create(BatchCreate(tpa_id=TPA_ID, facility_id=FACILITY_ID), tpa_caller)
        assert first.batch_number.endswith("-000001")
        assert second.batch_number.endswith("-000002")

    @pytest.mark.asyncio
    async def test_inverted_week_rejected(self, session, tpa_caller):
        """Test the week window must not be inverted."""
        with pytest.raises(ValidationError):
            await BatchService(session).create(
                BatchCreate(
                    tpa_id=TPA_ID,
                    facility_id=FACILITY_ID,
                    week_start_date=date(2025, 3, 9),
                    week_end_date=date(2025, 3, 3),
                ),
                tpa_caller,
            )

    @pytest.mark.asyncio
    async def test_add_and_remove_claim(self, session, tpa_caller, facility_caller, claim_payload):
        """Test membership changes keep aggregates in step."""
        service = BatchService(session)
        batch = await service.create(BatchCreate(tpa_id=TPA_ID, facility_id=FACILITY_ID), tpa_caller)
        claim = await ClaimsService(session).submit(claim_payload(), facility_caller)

        await service.add_claim(batch.id, claim.id, tpa_caller)
        assert claim.batch_id == batch.id
        assert batch.total_claims == 1

        await service.remove_claim(batch.id, claim.id, tpa_caller)
        assert claim.batch_id is None
        assert batch.total_claims == 0
        assert batch.total_amount == Decimal("0")

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, session, tpa_caller, facility_caller, claim_payload):
        """Test a membership change based on a stale read is refused."""
        service = BatchService(session)
        batch = await service.create(BatchCreate(tpa_id=TPA_ID, facility_id=FACILITY_ID), tpa_caller)
        stale_version = batch.version
        first = await ClaimsService(session).submit(claim_payload(), facility_caller)
        second = await ClaimsService(session).submit(claim_payload(), facility_caller)

        await service.add_claim(batch.id, first.id, tpa_caller, expected_version=stale_version)
        with pytest.raises(ConflictError):
            await service.add_claim(batch.id, second.id, tpa_caller, expected_version=stale_version)

    @pytest.mark.asyncio
    @pytest.mark.slow
    async def test_concurrent_add_claim_one_conflict(
        self, session_maker, tpa_caller, facility_caller, claim_payload
    ):
        """Test two writers adding to one draft: one wins, aggregates match membership."""
        async with session_maker() as session:
            batch = await BatchService(session).create(
                BatchCreate(tpa_id=TPA_ID, facility_id=FACILITY_ID), tpa_caller
            )
            first = await ClaimsService(session).submit(claim_payload(), facility_caller)
            second = await ClaimsService(session).submit(claim_payload(), facility_caller)

        async def attempt(claim_id):
            async with session_maker() as session:
                return await BatchService(session).add_claim(batch.id, claim_id, tpa_caller)

        results = await asyncio.gather(
            attempt(first.id), attempt(second.id), return_exceptions=True
        )

        conflicts = [r for r in results if isinstance(r, Exception)]
        assert len(conflicts) == 1
        assert isinstance(conflicts[0], ConflictError)

        async with session_maker() as session:
            stored = await BatchService(session).get_batch(batch.id)
            members = await ClaimsService(session).list_claims(
                ClaimFilter(batch_id=batch.id), tpa_caller
            )
            assert len(members) == 1
            assert stored.total_claims == len(members)
            assert stored.total_amount == members[0].total_cost

    @pytest.mark.asyncio
    async def test_claim_from_other_tpa_rejected(
        self, session, tpa_caller, facility_caller, admin_caller, claim_payload
    ):
        """Test claims must match the batch's facility and TPA."""
        service = BatchService(session)
        batch = await service.create(BatchCreate(tpa_id=TPA_ID, facility_id=FACILITY_ID), tpa_caller)
        claim = await ClaimsService(session).submit(claim_payload(tpa_id="TPA-777"), facility_caller)

        with pytest.raises(ValidationError):
            await service.add_claim(batch.id, claim.id, admin_caller)

    @pytest.mark.asyncio
    async def test_prepare_empty_batch_fails(self, session, tpa_caller):
        """Test an empty batch cannot be prepared."""
        service = BatchService(session)
        batch = await service.create(BatchCreate(tpa_id=TPA_ID, facility_id=FACILITY_ID), tpa_caller)
        with pytest.raises(ValidationError):
            await service.prepare_submission(batch.id, tpa_caller)


@pytest.mark.integration
class TestBatchSubmission:
    """Tests for batch submission."""

    @pytest.mark.asyncio
    async def test_submit_moves_claims_and_notifies(
        self, session, tpa_caller, cover_letter, claim_payload, notifier, notification_sink
    ):
        """Test submission freezes the count, advances claims and notifies."""
        batch, claims = await submitted_batch(
            session, tpa_caller, cover_letter, claim_payload, notifier=notifier, claims=2
        )

        assert batch.status == BatchStatus.SUBMITTED
        assert batch.committed_claims == 2
        assert all(c.status == ClaimStatus.AWAITING_VERIFICATION for c in claims)

        events = notification_sink.of_type("batch_submitted")
        assert [e.recipient for e in events] == ["claims@nhis.gov.ng"]
        assert events[0].payload["batch_number"] == batch.batch_number

    @pytest.mark.asyncio
    async def test_submit_requires_cover_letter(self, session, tpa_caller, claim_payload):
        """Test a cover letter is mandatory."""
        service = BatchService(session)
        batch = await service.create(BatchCreate(tpa_id=TPA_ID, facility_id=FACILITY_ID), tpa_caller)
        await ClaimsService(session).submit(claim_payload(batch_id=batch.id), tpa_caller)
        await service.prepare_submission(batch.id, tpa_caller)

        with pytest.raises(ValidationError) as exc_info:
            await service.submit(batch.id, BatchSubmitInput(emails=["a@nhis.gov.ng"]), tpa_caller)
        assert exc_info.value.field == "cover_letter"

    @pytest.mark.asyncio
    async def test_submit_requires_email(self, session, tpa_caller, cover_letter, claim_payload):
        """Test at least one notification email is mandatory."""
        service = BatchService(session)
        batch = await service.create(BatchCreate(tpa_id=TPA_ID, facility_id=FACILITY_ID), tpa_caller)
        await ClaimsService(session).submit(claim_payload(batch_id=batch.id), tpa_caller)
        await service.attach_cover_letter(batch.id, cover_letter, tpa_caller)
        await service.prepare_submission(batch.id, tpa_caller)

        with pytest.raises(ValidationError) as exc_info:
            await service.submit(batch.id, BatchSubmitInput(emails=[]), tpa_caller)
        assert exc_info.value.field == "emails"

    @pytest.mark.asyncio
    async def test_membership_frozen_after_submit(
        self, session, tpa_caller, cover_letter, claim_payload
    ):
        """Test claims cannot be added once submitted."""
        batch, _ = await submitted_batch(session, tpa_caller, cover_letter, claim_payload)
        extra = await ClaimsService(session).submit(claim_payload(), tpa_caller)

        with pytest.raises(IllegalTransitionError):
            await BatchService(session).add_claim(batch.id, extra.id, tpa_caller)


@pytest.mark.integration
class TestBatchClosure:
    """Tests for atomic batch closure."""

    async def _approve_all(self, session, claims, tpa_caller, amount=Decimal("150000")):
        for claim in claims:
            await ClaimsService(session).record_decision(
                claim.id,
                ClaimDecisionInput(decision=ClaimDecision.APPROVED, approved_amount=amount),
                tpa_caller,
            )

    @pytest.mark.asyncio
    async def test_empty_review_summary_changes_nothing(
        self, session_maker, tpa_caller, cover_letter, claim_payload, notifier, notification_sink
    ):
        """Test incomplete closure leaves the batch submitted with no report or error records."""
        async with session_maker() as session:
            batch, claims = await submitted_batch(
                session, tpa_caller, cover_letter, claim_payload, notifier=notifier
            )
            await self._approve_all(session, claims, tpa_caller)

        async with session_maker() as session:
            with pytest.raises(IncompleteClosureError) as exc_info:
                await BatchService(session, notifier=notifier).close(
                    batch.id, closure_input(review_summary=""), tpa_caller
                )
        assert exc_info.value.missing_fields == ["review_summary"]

        async with session_maker() as session:
            service = BatchService(session)
            stored = await service.get_batch(batch.id)
            assert stored.status == BatchStatus.SUBMITTED
            assert await service.get_closure_report(batch.id) is None
            assert await error_record_count(session, batch.id) == 0
        assert notification_sink.of_type("batch_closed") == []

    @pytest.mark.asyncio
    async def test_all_missing_items_reported(self, session, tpa_caller, cover_letter, claim_payload):
        """Test every missing closure item is reported at once."""
        batch, _ = await submitted_batch(session, tpa_caller, cover_letter, claim_payload)
        service = BatchService(session)

        with pytest.raises(IncompleteClosureError) as exc_info:
            await service.close(batch.id, ClosureInput(), tpa_caller)
        assert exc_info.value.missing_fields == [
            "review_summary",
            "payment_justification",
            "paid_amount",
            "beneficiaries_paid",
            "signature",
            "consent",
        ]

    @pytest.mark.asyncio
    async def test_close_creates_report_errors_and_financials(
        self, session, tpa_caller, cover_letter, claim_payload, notifier, notification_sink
    ):
        """Test closure writes the report, error records and fee split, then notifies."""
        batch, claims = await submitted_batch(
            session, tpa_caller, cover_letter, claim_payload, notifier=notifier, claims=2
        )
        await ClaimsService(session).record_decision(
            claims[0].id,
            ClaimDecisionInput(decision=ClaimDecision.APPROVED, approved_amount=Decimal("200000")),
            tpa_caller,
        )
        await ClaimsService(session).record_decision(
            claims[1].id,
            ClaimDecisionInput(decision=ClaimDecision.REJECTED, rejection_reason="No referral"),
            tpa_caller,
        )
        # Push the second claim's cost far above standard so closure records an error
        claims[1].cost_of_procedure = Decimal("1200000")
        claims[1].total_cost = Decimal("1280000")
        await session.commit()

        report = await BatchService(session, notifier=notifier).close(
            batch.id, closure_input(paid_amount=Decimal("200000")), tpa_caller
        )

        assert batch.status == BatchStatus.CLOSED
        assert batch.closed_at is not None
        assert batch.approved_amount == Decimal("200000")
        assert batch.admin_fee_amount == Decimal("10000.00")
        assert batch.net_amount == Decimal("190000.00")

        assert report.status == ClosureReportStatus.SUBMITTED
        assert report.approved_claims == 1
        assert report.rejected_claims == 1
        assert len(report.rejection_reasons) == 1
        assert report.rejection_reasons[0]["reason"] == "No referral"
        assert report.rejection_reasons[0]["count"] == 1
        assert Decimal(report.rejection_reasons[0]["amount"]) == Decimal("1280000")
        assert report.forwarding_letter_url == cover_letter.url

        assert await error_record_count(session, batch.id) >= 2

        recipients = {e.recipient for e in notification_sink.of_type("batch_closed")}
        assert "finance@nhis.gov.ng" in recipients
        assert tpa_caller.email in recipients

    @pytest.mark.asyncio
    async def test_paid_above_approved_rejected(
        self, session_maker, tpa_caller, cover_letter, claim_payload
    ):
        """Test paid amount cannot exceed the approved amount; nothing is written."""
        async with session_maker() as session:
            batch, claims = await submitted_batch(session, tpa_caller, cover_letter, claim_payload)
            await self._approve_all(session, claims, tpa_caller, amount=Decimal("100000"))

        async with session_maker() as session:
            with pytest.raises(ValidationError) as exc_info:
                await BatchService(session).close(
                    batch.id, closure_input(paid_amount=Decimal("100000.01")), tpa_caller
                )
            assert exc_info.value.field == "paid_amount"

        async with session_maker() as session:
            assert (await BatchService(session).get_batch(batch.id)).status == BatchStatus.SUBMITTED
            assert await error_record_count(session, batch.id) == 0

    @pytest.mark.asyncio
    async def test_close_twice_is_illegal(self, session, tpa_caller, cover_letter, claim_payload):
        """Test a closed batch cannot be closed again."""
        batch, claims = await submitted_batch(session, tpa_caller, cover_letter, claim_payload)
        await self._approve_all(session, claims, tpa_caller)
        await BatchService(session).close(batch.id, closure_input(), tpa_caller)

        with pytest.raises(IllegalTransitionError):
            await BatchService(session).close(batch.id, closure_input(), tpa_caller)

    @pytest.mark.asyncio
    async def test_decision_frozen_after_close(self, session, tpa_caller, cover_letter, claim_payload):
        """Test decisions cannot change on a closed batch."""
        batch, claims = await submitted_batch(session, tpa_caller, cover_letter, claim_payload)
        await self._approve_all(session, claims, tpa_caller)
        await BatchService(session).close(batch.id, closure_input(), tpa_caller)

        with pytest.raises(IllegalTransitionError):
            await ClaimsService(session).record_decision(
                claims[0].id,
                ClaimDecisionInput(decision=ClaimDecision.REJECTED, rejection_reason="Late"),
                tpa_caller,
            )

    @pytest.mark.asyncio
    async def test_preview_does_not_write(self, session, tpa_caller, cover_letter, claim_payload):
        """Test the closure preview computes figures without a report."""
        batch, claims = await submitted_batch(session, tpa_caller, cover_letter, claim_payload)
        await self._approve_all(session, claims, tpa_caller)

        preview = await BatchService(session).preview_closure_report(batch.id, tpa_caller)
        assert preview.statistics.approved_amount == Decimal("150000")
        assert preview.has_forwarding_letter
        assert await BatchService(session).get_closure_report(batch.id) is None


@pytest.mark.integration
class TestBatchRejectionAndReview:
    """Tests for rejection and the administrative track."""

    @pytest.mark.asyncio
    async def test_reject_releases_claims(self, session, tpa_caller, admin_caller, cover_letter, claim_payload):
        """Test rejecting a submitted batch releases its claims for rebatching."""
        batch, claims = await submitted_batch(session, tpa_caller, cover_letter, claim_payload)
        assert claims[0].status == ClaimStatus.AWAITING_VERIFICATION

        service = BatchService(session)
        await service.reject(batch.id, "Wrong facility period", admin_caller)

        assert batch.status == BatchStatus.REJECTED
        assert batch.rejection_reason == "Wrong facility period"
        assert claims[0].batch_id is None
        assert claims[0].status == ClaimStatus.SUBMITTED
        assert batch.total_claims == 0

        history = await ClaimsService(session).get_history(claims[0].id)
        released = [
            h for h in history
            if h.previous_status == ClaimStatus.AWAITING_VERIFICATION
            and h.new_status == ClaimStatus.SUBMITTED
        ]
        assert len(released) == 1
        assert released[0].actor_role == "system"
        assert released[0].reason == "Batch rejected"

        rebatch = await service.create(BatchCreate(tpa_id=TPA_ID, facility_id=FACILITY_ID), tpa_caller)
        await service.add_claim(rebatch.id, claims[0].id, tpa_caller)
        assert claims[0].batch_id == rebatch.id
        assert rebatch.total_claims == 1

    @pytest.mark.asyncio
    async def test_reject_requires_reason(self, session, tpa_caller, admin_caller):
        """Test rejection needs a reason."""
        batch = await BatchService(session).create(
            BatchCreate(tpa_id=TPA_ID, facility_id=FACILITY_ID), tpa_caller
        )
        with pytest.raises(ValidationError):
            await BatchService(session).reject(batch.id, " ", admin_caller)

    @pytest.mark.asyncio
    async def test_admin_track(self, session, tpa_caller, admin_caller, cover_letter, claim_payload):
        """Test the administrative track advances one step at a time."""
        batch, claims = await submitted_batch(session, tpa_caller, cover_letter, claim_payload)
        await ClaimsService(session).record_decision(
            claims[0].id,
            ClaimDecisionInput(decision=ClaimDecision.APPROVED, approved_amount=Decimal("150000")),
            tpa_caller,
        )
        service = BatchService(session)
        await service.close(batch.id, closure_input(), tpa_caller)

        with pytest.raises(IllegalTransitionError):
            await service.advance_admin_state(batch.id, BatchAdminStatus.VERIFIED, admin_caller)
        with pytest.raises(PermissionDeniedError):
            await service.advance_admin_state(batch.id, BatchAdminStatus.UNDER_REVIEW, tpa_caller)

        for target in (
            BatchAdminStatus.UNDER_REVIEW,
            BatchAdminStatus.VERIFIED,
            BatchAdminStatus.VERIFIED_AWAITING_PAYMENT,
            BatchAdminStatus.VERIFIED_PAID,
        ):
            await service.advance_admin_state(batch.id, target, admin_caller)

        assert batch.admin_status == BatchAdminStatus.VERIFIED_PAID
        assert batch.status == BatchStatus.CLOSED

        history = await service.get_history(batch.id)
        assert [h.new_status for h in history if h.track == "admin"] == [
            "under_review",
            "verified",
            "verified_awaiting_payment",
            "verified_paid",
        ]

        with pytest.raises(PermissionDeniedError):
            await service.advance_admin_state(batch.id, BatchAdminStatus.VERIFIED_PAID, tpa_caller)

    @pytest.mark.asyncio
    async def test_review_closure_report(self, session, tpa_caller, admin_caller, cover_letter, claim_payload):
        """Test oversight can countersign the closure report."""
        batch, claims = await submitted_batch(session, tpa_caller, cover_letter, claim_payload)
        await ClaimsService(session).record_decision(
            claims[0].id,
            ClaimDecisionInput(decision=ClaimDecision.APPROVED, approved_amount=Decimal("150000")),
            tpa_caller,
        )
        service = BatchService(session)
        await service.close(batch.id, closure_input(), tpa_caller)

        report = await service.review_closure_report(
            batch.id, ClosureReview(signature="NHIS Desk", notes="Checked"), admin_caller
        )
        assert report.status == ClosureReportStatus.REVIEWED
        assert report.admin_signed_by == admin_caller.actor_id
