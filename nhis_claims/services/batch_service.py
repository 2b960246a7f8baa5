"""
Batch Service for NHIS Claims Administration.

Provides:
- Batch creation and batch number generation
- Claim membership management with optimistic locking
- Submission (cover letter + email notification)
- Atomic closure: closure report, validation findings, financials
- Rejection and the administrative review track
- Closure report review and preview
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from nhis_claims.core.config import ClaimsSettings, get_claims_settings
from nhis_claims.core.enums import (
    BatchAdminStatus,
    BatchStatus,
    BatchType,
    CallerRole,
    ClaimStatus,
    ClosureReportStatus,
)
from nhis_claims.db.connection import commit_or_conflict
from nhis_claims.models.batch import Batch, BatchClosureReport, BatchStatusHistory
from nhis_claims.models.claim import Claim
from nhis_claims.schemas.batch import (
    BatchCreate,
    BatchSubmitInput,
    ClosureInput,
    ClosurePreview,
    ClosureReview,
)
from nhis_claims.schemas.caller import Caller, DocumentReference
from nhis_claims.services.access import (
    enforce_batch_scope,
    enforce_scope,
    require_admin,
    require_role,
)
from nhis_claims.services.aggregates import (
    compute_statistics,
    load_batch,
    load_batch_claims,
    recompute_batch_aggregates,
    rejection_breakdown,
)
from nhis_claims.services.batch_state_machine import (
    BatchEvent,
    BatchStateMachine,
    get_batch_state_machine,
)
from nhis_claims.services.claims_service import ClaimsService
from nhis_claims.services.error_workflow_service import ErrorWorkflowService
from nhis_claims.services.financial_engine import FinancialEngine, get_financial_engine
from nhis_claims.services.notifications import NotificationDispatcher
from nhis_claims.services.validation_engine import ValidationEngine, get_validation_engine
from nhis_claims.utils.errors import (
    ConflictError,
    IllegalTransitionError,
    IncompleteClosureError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class BatchService:
    """
    Service for batch lifecycle operations.

    Handles:
    - Draft batch membership
    - Submission and closure on the TPA track
    - Administrative track for closed batches
    """

    def __init__(
        self,
        session: AsyncSession,
        notifier: Optional[NotificationDispatcher] = None,
        settings: Optional[ClaimsSettings] = None,
        state_machine: Optional[BatchStateMachine] = None,
        validation_engine: Optional[ValidationEngine] = None,
        financial_engine: Optional[FinancialEngine] = None,
    ):
        self.session = session
        self.notifier = notifier or NotificationDispatcher()
        self.settings = settings or get_claims_settings()
        self.state_machine = state_machine or get_batch_state_machine()
        self.validation_engine = validation_engine or get_validation_engine()
        self.financial_engine = financial_engine or get_financial_engine()

    # =========================================================================
    # Batch Number Generation
    # =========================================================================

    async def _generate_batch_number(self, payload: BatchCreate) -> str:
        """
        Generate a batch number.

        Format: {FACILITY_CODE}-{ISO_YEAR}-W{ISO_WEEK:02d} for weekly batches
        with a facility code, otherwise BATCH-{YEAR}-{SEQUENCE:06d}.
        """
        if payload.facility_code and payload.week_start_date:
            iso = payload.week_start_date.isocalendar()
            return f"{payload.facility_code.strip().upper()}-{iso[0]}-W{iso[1]:02d}"

        year = datetime.now(timezone.utc).year
        result = await self.session.execute(
            select(func.max(Batch.batch_number)).where(
                Batch.batch_number.like(f"BATCH-{year}-%")
            )
        )
        max_number = result.scalar_one_or_none()

        if max_number:
            try:
                next_seq = int(max_number.split("-")[-1]) + 1
            except (ValueError, IndexError):
                next_seq = 1
        else:
            next_seq = 1

        return f"BATCH-{year}-{next_seq:06d}"

    # =========================================================================
    # Read Operations
    # =========================================================================

    async def get_batch(self, batch_id: UUID) -> Optional[Batch]:
        result = await self.session.execute(select(Batch).where(Batch.id == batch_id))
        return result.scalar_one_or_none()

    async def get_closure_report(self, batch_id: UUID) -> Optional[BatchClosureReport]:
        result = await self.session.execute(
            select(BatchClosureReport).where(BatchClosureReport.batch_id == batch_id)
        )
        return result.scalar_one_or_none()

    async def get_history(self, batch_id: UUID) -> Sequence[BatchStatusHistory]:
        result = await self.session.execute(
            select(BatchStatusHistory)
            .where(BatchStatusHistory.batch_id == batch_id)
            .order_by(BatchStatusHistory.changed_at)
        )
        return result.scalars().all()

    async def preview_closure_report(self, batch_id: UUID, caller: Caller) -> ClosurePreview:
        """Compute closure statistics and rejection breakdown without writing."""
        batch = await load_batch(self.session, batch_id)
        enforce_batch_scope(caller, batch)
        claims = await load_batch_claims(self.session, batch.id)
        return ClosurePreview(
            batch_id=batch.id,
            statistics=compute_statistics(claims),
            rejection_reasons=rejection_breakdown(claims),
            has_forwarding_letter=bool(batch.cover_letter_url),
        )

    # =========================================================================
    # Draft Operations
    # =========================================================================

    async def create(self, payload: BatchCreate, caller: Caller) -> Batch:
        """
        Create a draft batch for a facility/TPA pair.

        Raises:
            ValidationError: invalid week window or duplicate batch number
        """
        require_role(caller, CallerRole.TPA, CallerRole.FACILITY)
        enforce_scope(caller, payload.tpa_id, payload.facility_id)

        if (
            payload.week_start_date
            and payload.week_end_date
            and payload.week_end_date < payload.week_start_date
        ):
            raise ValidationError(
                "Week end date cannot be before week start date",
                field="week_end_date",
            )
        if payload.admin_fee_percentage is not None:
            self.financial_engine.check_percentage(payload.admin_fee_percentage)

        batch_number = await self._generate_batch_number(payload)
        existing = await self.session.execute(
            select(Batch.id).where(Batch.batch_number == batch_number)
        )
        if existing.scalar_one_or_none() is not None:
            raise ValidationError(
                f"Batch {batch_number} already exists for this week",
                field="batch_number",
            )

        batch = Batch(
            batch_number=batch_number,
            tpa_id=payload.tpa_id,
            facility_id=payload.facility_id,
            batch_type=payload.batch_type if payload.week_start_date else BatchType.AD_HOC,
            week_start_date=payload.week_start_date,
            week_end_date=payload.week_end_date,
            description=payload.description,
            admin_fee_percentage=payload.admin_fee_percentage,
            status=BatchStatus.DRAFT,
            created_by=caller.actor_id,
        )
        self.session.add(batch)
        await self.session.flush()
        self._record_history(batch, None, BatchStatus.DRAFT.value, caller, "Batch created")

        await self.session.commit()
        logger.info(f"Batch {batch.batch_number} created by {caller.actor_id}")
        return batch

    async def add_claim(
        self,
        batch_id: UUID,
        claim_id: UUID,
        caller: Caller,
        expected_version: Optional[int] = None,
    ) -> Batch:
        """
        Add an unassigned claim to a draft batch.

        Raises:
            ConflictError: batch version moved on (stale read or concurrent writer)
            IllegalTransitionError: batch is not a draft
            ValidationError: claim already assigned or facility/TPA mismatch
        """
        batch = await self._load_for_update(batch_id, caller, expected_version)
        self._require_draft(batch)

        claim = await ClaimsService(self.session).get_claim_or_raise(claim_id)
        if claim.batch_id == batch.id:
            return batch
        if claim.batch_id is not None:
            raise ValidationError(
                "Claim is already assigned to another batch",
                field="claim_id",
                entity_id=claim.id,
            )
        if claim.facility_id != batch.facility_id or claim.tpa_id != batch.tpa_id:
            raise ValidationError(
                "Claim facility/TPA does not match the batch",
                field="claim_id",
                entity_id=claim.id,
            )
        if claim.status != ClaimStatus.SUBMITTED:
            raise ValidationError(
                f"Only submitted claims can be batched, current: {claim.status.value}",
                field="claim_id",
                entity_id=claim.id,
            )

        claim.batch_id = batch.id
        await recompute_batch_aggregates(self.session, batch)
        await commit_or_conflict(self.session, batch.id)

        logger.info(f"Claim {claim.unique_claim_id} added to batch {batch.batch_number}")
        return batch

    async def remove_claim(
        self,
        batch_id: UUID,
        claim_id: UUID,
        caller: Caller,
        expected_version: Optional[int] = None,
    ) -> Batch:
        """Remove a claim from a draft batch, leaving it unassigned."""
        batch = await self._load_for_update(batch_id, caller, expected_version)
        self._require_draft(batch)

        claim = await ClaimsService(self.session).get_claim_or_raise(claim_id)
        if claim.batch_id != batch.id:
            raise ValidationError(
                "Claim is not a member of this batch",
                field="claim_id",
                entity_id=claim.id,
            )

        claim.batch_id = None
        await recompute_batch_aggregates(self.session, batch)
        await commit_or_conflict(self.session, batch.id)

        logger.info(f"Claim {claim.unique_claim_id} removed from batch {batch.batch_number}")
        return batch

    async def attach_cover_letter(
        self,
        batch_id: UUID,
        document: DocumentReference,
        caller: Caller,
    ) -> Batch:
        """Attach the cover letter reference (draft or ready batches only)."""
        batch = await self._load_for_update(batch_id, caller)
        if batch.status not in (BatchStatus.DRAFT, BatchStatus.READY_FOR_SUBMISSION):
            raise IllegalTransitionError(
                f"Cover letter cannot change once batch is {batch.status.value}",
                field="cover_letter",
                entity_id=batch.id,
            )

        batch.cover_letter_url = document.url
        batch.cover_letter_filename = document.filename
        await commit_or_conflict(self.session, batch.id)
        return batch

    # =========================================================================
    # TPA Track Transitions
    # =========================================================================

    async def prepare_submission(self, batch_id: UUID, caller: Caller) -> Batch:
        """
        Mark a draft batch ready for submission.

        Transitions: DRAFT -> READY_FOR_SUBMISSION
        """
        batch = await self._load_for_update(batch_id, caller)
        if batch.status == BatchStatus.READY_FOR_SUBMISSION:
            return batch
        self._check(batch, BatchEvent.PREPARE, caller)

        await recompute_batch_aggregates(self.session, batch)
        if batch.total_claims == 0:
            raise ValidationError(
                "Batch has no claims",
                field="total_claims",
                entity_id=batch.id,
            )

        batch.requires_cover_letter = True
        self._set_status(batch, BatchStatus.READY_FOR_SUBMISSION, caller, "Prepared for submission")
        await commit_or_conflict(self.session, batch.id)
        return batch

    async def submit(
        self,
        batch_id: UUID,
        submission: BatchSubmitInput,
        caller: Caller,
    ) -> Batch:
        """
        Submit a batch.

        Freezes the committed claim count and moves member claims to
        awaiting verification. Every submission email is notified after commit.

        Transitions: READY_FOR_SUBMISSION -> SUBMITTED
        """
        batch = await self._load_for_update(batch_id, caller)
        self._check(batch, BatchEvent.SUBMIT, caller)

        if not batch.cover_letter_url:
            raise ValidationError(
                "A cover letter is required to submit a batch",
                field="cover_letter",
                entity_id=batch.id,
            )
        emails = [str(e) for e in submission.emails]
        if not emails:
            raise ValidationError(
                "At least one notification email is required",
                field="emails",
                entity_id=batch.id,
            )

        claims = await recompute_batch_aggregates(self.session, batch)
        if batch.total_claims == 0:
            raise ValidationError(
                "Batch has no claims",
                field="total_claims",
                entity_id=batch.id,
            )

        claims_service = ClaimsService(self.session)
        for claim in claims:
            claims_service.request_verification(claim, caller)

        batch.committed_claims = batch.total_claims
        batch.submission_emails = emails
        batch.submission_notes = submission.notes
        batch.submitted_at = datetime.now(timezone.utc)
        self._set_status(batch, BatchStatus.SUBMITTED, caller, "Batch submitted")

        await commit_or_conflict(self.session, batch.id)
        logger.info(f"Batch {batch.batch_number} submitted with {batch.committed_claims} claims")

        await self.notifier.dispatch(
            "batch_submitted",
            emails,
            f"Batch {batch.batch_number} submitted",
            {
                "batch_id": str(batch.id),
                "batch_number": batch.batch_number,
                "total_claims": batch.committed_claims,
                "total_amount": str(batch.total_amount),
                "cover_letter_url": batch.cover_letter_url,
            },
        )
        return batch

    async def close(
        self,
        batch_id: UUID,
        closure: ClosureInput,
        caller: Caller,
    ) -> BatchClosureReport:
        """
        Close a submitted batch in one atomic step.

        Checks every closure precondition before writing anything, then
        recomputes aggregates, creates the closure report, persists validation
        findings as error records and computes financials. Any failure leaves
        the batch submitted with no report and no error records.

        Transitions: SUBMITTED -> CLOSED

        Raises:
            IncompleteClosureError: one or more closure items missing
            ValidationError: paid amount above the approved amount
            IllegalTransitionError: batch is not submitted
        """
        batch = await self._load_for_update(batch_id, caller)
        self._check(batch, BatchEvent.CLOSE, caller)

        letter = closure.forwarding_letter
        if letter is None and batch.cover_letter_url:
            letter = DocumentReference(
                url=batch.cover_letter_url,
                filename=batch.cover_letter_filename,
            )

        missing = []
        if letter is None:
            missing.append("forwarding_letter")
        if not closure.review_summary.strip():
            missing.append("review_summary")
        if not closure.payment_justification.strip():
            missing.append("payment_justification")
        if closure.paid_amount <= 0:
            missing.append("paid_amount")
        if closure.beneficiaries_paid <= 0:
            missing.append("beneficiaries_paid")
        if not closure.signature.strip():
            missing.append("signature")
        if not closure.consent:
            missing.append("consent")
        if missing:
            logger.warning(f"Closure of batch {batch.batch_number} incomplete: {missing}")
            raise IncompleteClosureError(missing, entity_id=batch.id)

        try:
            claims = await recompute_batch_aggregates(self.session, batch)
            if closure.paid_amount > batch.approved_amount:
                raise ValidationError(
                    f"Paid amount {closure.paid_amount} exceeds approved amount {batch.approved_amount}",
                    field="paid_amount",
                    entity_id=batch.id,
                )

            stats = compute_statistics(claims)
            report = BatchClosureReport(
                batch_id=batch.id,
                tpa_id=batch.tpa_id,
                review_summary=closure.review_summary.strip(),
                payment_justification=closure.payment_justification.strip(),
                rejection_reasons=[
                    r.model_dump(mode="json") for r in rejection_breakdown(claims)
                ],
                remarks=closure.remarks,
                total_claims=stats.total_claims,
                approved_claims=stats.approved_claims,
                rejected_claims=stats.rejected_claims,
                total_amount=stats.total_amount,
                approved_amount=stats.approved_amount,
                rejected_amount=stats.rejected_amount,
                paid_amount=closure.paid_amount,
                paid_claims=closure.paid_claims,
                beneficiaries_paid=closure.beneficiaries_paid,
                payment_date=closure.payment_date,
                payment_method=closure.payment_method,
                payment_reference=closure.payment_reference,
                forwarding_letter_url=letter.url,
                forwarding_letter_filename=letter.filename,
                tpa_signature=closure.signature.strip(),
                tpa_signed_by=caller.actor_id,
                tpa_signed_at=datetime.now(timezone.utc),
                consent_given=True,
                status=ClosureReportStatus.SUBMITTED,
            )
            self.session.add(report)

            findings = self.validation_engine.validate_batch(batch.id, batch.tpa_id, claims)
            records = await ErrorWorkflowService(
                self.session, validation_engine=self.validation_engine
            ).persist_findings(findings, created_by=caller.actor_id)

            financials = self.financial_engine.compute_batch_financials(batch)
            batch.admin_fee_percentage = financials.admin_fee_percentage
            batch.admin_fee_amount = financials.admin_fee_amount
            batch.net_amount = financials.net_amount

            batch.closed_at = datetime.now(timezone.utc)
            self._set_status(batch, BatchStatus.CLOSED, caller, "Batch closed")

            await commit_or_conflict(self.session, batch.id)
        except Exception:
            await self.session.rollback()
            raise

        summary = self.validation_engine.summarize(findings)
        logger.info(
            f"Batch {batch.batch_number} closed: approved={batch.approved_amount} "
            f"fee={batch.admin_fee_amount} net={batch.net_amount} "
            f"errors={len(records)} (critical={summary.critical}, high={summary.high})"
        )

        recipients = list(self.settings.OVERSIGHT_NOTIFICATION_EMAILS)
        if caller.email:
            recipients.append(str(caller.email))
        await self.notifier.dispatch(
            "batch_closed",
            recipients,
            f"Batch {batch.batch_number} closed",
            {
                "batch_id": str(batch.id),
                "batch_number": batch.batch_number,
                "tpa_id": batch.tpa_id,
                "approved_amount": str(batch.approved_amount),
                "paid_amount": str(report.paid_amount),
                "admin_fee_amount": str(batch.admin_fee_amount),
                "net_amount": str(batch.net_amount),
                "error_records": len(records),
            },
        )
        return report

    async def reject(self, batch_id: UUID, reason: str, caller: Caller) -> Batch:
        """
        Reject a batch before closure; member claims are released to submitted.

        Transitions: DRAFT | READY_FOR_SUBMISSION | SUBMITTED -> REJECTED
        """
        batch = await self._load_for_update(batch_id, caller)
        self._check(batch, BatchEvent.REJECT, caller, reason)

        claims = await load_batch_claims(self.session, batch.id)
        claims_service = ClaimsService(self.session)
        for claim in claims:
            claims_service.release_from_batch(claim, caller)
            claim.batch_id = None

        batch.rejection_reason = reason.strip()
        self._set_status(batch, BatchStatus.REJECTED, caller, reason.strip())
        await recompute_batch_aggregates(self.session, batch)
        await commit_or_conflict(self.session, batch.id)

        logger.info(f"Batch {batch.batch_number} rejected: {len(claims)} claims released")
        return batch

    # =========================================================================
    # Administrative Track
    # =========================================================================

    async def advance_admin_state(
        self,
        batch_id: UUID,
        target: BatchAdminStatus,
        caller: Caller,
    ) -> Batch:
        """Move a closed batch one step along the administrative track."""
        require_admin(caller, entity_id=batch_id)
        batch = await load_batch(self.session, batch_id, for_update=True)
        if batch.admin_status == target:
            return batch

        result = self.state_machine.validate_admin_transition(
            str(batch.id), batch.status, batch.admin_status, target, caller.role
        )
        if not result.success:
            if result.role_denied:
                raise PermissionDeniedError(result.error, entity_id=batch.id)
            raise IllegalTransitionError(
                result.error,
                field="admin_status",
                entity_id=batch.id,
                from_state=result.from_status,
                to_state=target.value,
            )

        previous = batch.admin_status.value if batch.admin_status else None
        batch.admin_status = target
        batch.admin_updated_at = datetime.now(timezone.utc)
        self._record_history(batch, previous, target.value, caller, None, track="admin")

        await commit_or_conflict(self.session, batch.id)
        logger.info(f"Batch {batch.batch_number} admin status -> {target.value}")
        return batch

    async def review_closure_report(
        self,
        batch_id: UUID,
        review: ClosureReview,
        caller: Caller,
    ) -> BatchClosureReport:
        """Oversight annotation of a closure report; the batch stays closed."""
        require_admin(caller, entity_id=batch_id)
        report = await self.get_closure_report(batch_id)
        if report is None:
            raise NotFoundError(f"No closure report for batch {batch_id}", entity_id=batch_id)
        if report.status == ClosureReportStatus.REVIEWED:
            if report.admin_signature == review.signature:
                return report
            raise IllegalTransitionError(
                "Closure report already reviewed",
                field="status",
                entity_id=report.id,
                from_state=report.status.value,
                to_state=ClosureReportStatus.REVIEWED.value,
            )

        report.status = ClosureReportStatus.REVIEWED
        report.admin_signature = review.signature
        report.admin_signed_by = caller.actor_id
        report.admin_signed_at = datetime.now(timezone.utc)
        report.admin_notes = review.notes

        await self.session.commit()
        logger.info(f"Closure report for batch {batch_id} reviewed by {caller.actor_id}")
        return report

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _load_for_update(
        self,
        batch_id: UUID,
        caller: Caller,
        expected_version: Optional[int] = None,
    ) -> Batch:
        batch = await load_batch(self.session, batch_id, for_update=True)
        enforce_batch_scope(caller, batch)
        if expected_version is not None and batch.version != expected_version:
            raise ConflictError(
                f"Batch version is {batch.version}, expected {expected_version}",
                field="version",
                entity_id=batch.id,
            )
        return batch

    @staticmethod
    def _require_draft(batch: Batch) -> None:
        if batch.status != BatchStatus.DRAFT:
            raise IllegalTransitionError(
                f"Batch membership can only change while draft, current: {batch.status.value}",
                field="status",
                entity_id=batch.id,
                from_state=batch.status.value,
            )

    def _check(
        self,
        batch: Batch,
        event: BatchEvent,
        caller: Caller,
        reason: Optional[str] = None,
    ) -> None:
        result = self.state_machine.validate_transition(
            str(batch.id), batch.status, event, caller.role, reason
        )
        if result.success:
            return
        if result.role_denied:
            raise PermissionDeniedError(result.error, entity_id=batch.id)
        if result.reason_missing:
            raise ValidationError(result.error, field="reason", entity_id=batch.id)
        raise IllegalTransitionError(
            result.error,
            field="status",
            entity_id=batch.id,
            from_state=batch.status.value,
        )

    def _set_status(
        self,
        batch: Batch,
        status: BatchStatus,
        caller: Caller,
        reason: Optional[str],
    ) -> None:
        previous = batch.status.value
        batch.status = status
        self._record_history(batch, previous, status.value, caller, reason)

    def _record_history(
        self,
        batch: Batch,
        previous: Optional[str],
        new: str,
        caller: Caller,
        reason: Optional[str],
        track: str = "tpa",
    ) -> None:
        self.session.add(
            BatchStatusHistory(
                batch_id=batch.id,
                track=track,
                previous_status=previous,
                new_status=new,
                changed_by=caller.actor_id,
                actor_role=caller.role.value,
                reason=reason,
            )
        )


# =============================================================================
# Factory Functions
# =============================================================================


async def get_batch_service(
    session: AsyncSession,
    notifier: Optional[NotificationDispatcher] = None,
) -> BatchService:
    """Get batch service instance."""
    return BatchService(session, notifier=notifier)
