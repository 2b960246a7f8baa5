"""
Claims Service for NHIS Claims Administration.

Provides:
- Claim submission with role scoping
- TPA decisions with batch aggregate recomputation
- Verification and payment status transitions
- Status/decision history
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from nhis_claims.core.enums import BatchStatus, CallerRole, ClaimStatus
from nhis_claims.db.connection import commit_or_conflict
from nhis_claims.models.batch import Batch
from nhis_claims.models.claim import Claim, ClaimStatusHistory
from nhis_claims.schemas.caller import Caller
from nhis_claims.schemas.claim import ClaimDecisionInput, ClaimFilter, ClaimSubmit
from nhis_claims.services.access import enforce_claim_scope, enforce_scope, require_role
from nhis_claims.services.aggregates import load_batch, recompute_batch_aggregates
from nhis_claims.services.claim_state_machine import (
    ClaimStateMachine,
    TransitionContext,
    TransitionEvent,
    get_claim_state_machine,
    is_decision_mutable,
    validate_decision,
)
from nhis_claims.utils.errors import (
    IllegalTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

logger = logging.getLogger(__name__)


VERIFICATION_EVENTS = {
    ClaimStatus.VERIFIED: TransitionEvent.VERIFY,
    ClaimStatus.NOT_VERIFIED: TransitionEvent.FAIL_VERIFICATION,
}


class ClaimsService:
    """
    Service for claim lifecycle operations.

    Every public operation is one unit of work: it commits on success and
    leaves the database untouched on failure.
    """

    def __init__(
        self,
        session: AsyncSession,
        state_machine: Optional[ClaimStateMachine] = None,
    ):
        self.session = session
        self.state_machine = state_machine or get_claim_state_machine()

    # =========================================================================
    # Read Operations
    # =========================================================================

    async def get_claim(self, claim_id: UUID) -> Optional[Claim]:
        result = await self.session.execute(select(Claim).where(Claim.id == claim_id))
        return result.scalar_one_or_none()

    async def get_claim_or_raise(self, claim_id: UUID) -> Claim:
        claim = await self.get_claim(claim_id)
        if claim is None:
            raise NotFoundError(f"Claim not found: {claim_id}", entity_id=claim_id)
        return claim

    async def list_claims(self, filters: ClaimFilter, caller: Caller) -> Sequence[Claim]:
        """List claims visible to the caller."""
        query = select(Claim)

        if caller.role == CallerRole.TPA:
            query = query.where(Claim.tpa_id == caller.tpa_id)
        elif caller.role == CallerRole.FACILITY:
            query = query.where(Claim.facility_id == caller.facility_id)

        if filters.batch_id:
            query = query.where(Claim.batch_id == filters.batch_id)
        if filters.tpa_id:
            query = query.where(Claim.tpa_id == filters.tpa_id)
        if filters.facility_id:
            query = query.where(Claim.facility_id == filters.facility_id)
        if filters.status:
            query = query.where(Claim.status == filters.status)
        if filters.decision:
            query = query.where(Claim.decision == filters.decision)
        if filters.unassigned_only:
            query = query.where(Claim.batch_id.is_(None))

        result = await self.session.execute(query.order_by(Claim.created_at))
        return result.scalars().all()

    async def get_history(self, claim_id: UUID) -> Sequence[ClaimStatusHistory]:
        result = await self.session.execute(
            select(ClaimStatusHistory)
            .where(ClaimStatusHistory.claim_id == claim_id)
            .order_by(ClaimStatusHistory.changed_at)
        )
        return result.scalars().all()

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit(self, payload: ClaimSubmit, caller: Caller) -> Claim:
        """
        Submit a new claim.

        The claim starts as submitted with no decision. Total cost is derived
        from the four cost categories.

        Raises:
            ValidationError: missing beneficiary name, non-positive total,
                inconsistent total, duplicate claim id or unusable batch
            PermissionDeniedError: caller is not a facility or TPA user, or is
                outside the claim's facility/TPA
        """
        require_role(caller, CallerRole.FACILITY, CallerRole.TPA)
        enforce_scope(caller, payload.tpa_id, payload.facility_id)

        if not payload.beneficiary_name.strip():
            raise ValidationError("Beneficiary name is required", field="beneficiary_name")

        total = payload.costs.total
        if total <= 0:
            raise ValidationError("Total cost must be greater than zero", field="total_cost")
        if payload.total_cost is not None and payload.total_cost != total:
            raise ValidationError(
                f"Total cost {payload.total_cost} does not equal the sum of categories {total}",
                field="total_cost",
            )

        existing = await self.session.execute(
            select(Claim.id).where(Claim.unique_claim_id == payload.unique_claim_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise ValidationError(
                f"Claim id already exists: {payload.unique_claim_id}",
                field="unique_claim_id",
            )

        batch: Optional[Batch] = None
        if payload.batch_id:
            batch = await load_batch(self.session, payload.batch_id, for_update=True)
            self._check_batch_accepts(batch, payload.facility_id, payload.tpa_id)

        claim = Claim(
            unique_claim_id=payload.unique_claim_id,
            hospital_number=payload.hospital_number,
            beneficiary_id=payload.beneficiary_id,
            beneficiary_name=payload.beneficiary_name.strip(),
            facility_id=payload.facility_id,
            tpa_id=payload.tpa_id,
            primary_diagnosis=payload.primary_diagnosis,
            secondary_diagnosis=payload.secondary_diagnosis,
            treatment_procedure=payload.treatment_procedure,
            date_of_admission=payload.date_of_admission,
            date_of_discharge=payload.date_of_discharge,
            date_of_treatment=payload.date_of_treatment,
            cost_of_investigation=payload.cost_of_investigation,
            cost_of_procedure=payload.cost_of_procedure,
            cost_of_medication=payload.cost_of_medication,
            cost_of_other_services=payload.cost_of_other_services,
            total_cost=total,
            status=ClaimStatus.SUBMITTED,
            decision=None,
            batch_id=batch.id if batch else None,
        )
        self.session.add(claim)
        try:
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            raise ValidationError(
                f"Claim id already exists: {payload.unique_claim_id}",
                field="unique_claim_id",
            ) from e

        self.record_history(claim, None, caller, "Claim submitted")
        if batch is not None:
            await recompute_batch_aggregates(self.session, batch)

        await commit_or_conflict(self.session, batch.id if batch else claim.id)

        logger.info(f"Claim {claim.unique_claim_id} submitted by {caller.actor_id}")
        return claim

    @staticmethod
    def _check_batch_accepts(batch: Batch, facility_id: str, tpa_id: str) -> None:
        if batch.status != BatchStatus.DRAFT:
            raise ValidationError(
                f"Claims can only be added to draft batches, current: {batch.status.value}",
                field="batch_id",
                entity_id=batch.id,
            )
        if batch.facility_id != facility_id or batch.tpa_id != tpa_id:
            raise ValidationError(
                "Claim facility/TPA does not match the batch",
                field="batch_id",
                entity_id=batch.id,
            )

    # =========================================================================
    # Decision
    # =========================================================================

    async def record_decision(
        self,
        claim_id: UUID,
        decision_input: ClaimDecisionInput,
        caller: Caller,
    ) -> Claim:
        """
        Record the TPA decision on a claim.

        Re-submitting the same decision data is a no-op.

        Raises:
            InvalidDecisionError: amount above total, missing reason, etc.
            IllegalTransitionError: decision frozen (paid/queued claim or
                batch closed or attached to a reimbursement)
        """
        require_role(caller, CallerRole.TPA, entity_id=claim_id)
        claim = await self.get_claim_or_raise(claim_id)
        enforce_claim_scope(caller, claim)

        outcome = validate_decision(
            claim.total_cost,
            decision_input.decision,
            decision_input.approved_amount,
            decision_input.rejection_reason,
            claim_id=str(claim.id),
        )

        if (
            claim.decision == outcome.decision
            and claim.approved_amount == outcome.approved_amount
            and claim.reason_for_rejection == outcome.reason_for_rejection
        ):
            logger.info(f"Claim {claim.unique_claim_id} decision unchanged; nothing to do")
            return claim

        if not is_decision_mutable(claim.status):
            raise IllegalTransitionError(
                f"Decision cannot change once claim is {claim.status.value}",
                field="decision",
                entity_id=claim.id,
                from_state=claim.decision.value if claim.decision else None,
                to_state=outcome.decision.value,
            )

        batch: Optional[Batch] = None
        if claim.batch_id:
            batch = await load_batch(self.session, claim.batch_id, for_update=True)
            if batch.is_attached:
                raise IllegalTransitionError(
                    "Decision cannot change: batch is attached to a reimbursement",
                    field="decision",
                    entity_id=claim.id,
                )
            if batch.status == BatchStatus.CLOSED:
                raise IllegalTransitionError(
                    "Decision cannot change: batch is closed",
                    field="decision",
                    entity_id=claim.id,
                )

        previous_decision = claim.decision
        claim.decision = outcome.decision
        claim.approved_amount = outcome.approved_amount
        claim.reason_for_rejection = outcome.reason_for_rejection
        if decision_input.remarks is not None:
            claim.tpa_remarks = decision_input.remarks
        claim.decided_at = datetime.now(timezone.utc)
        claim.decided_by = caller.actor_id

        self.record_history(
            claim,
            claim.status,
            caller,
            f"Decision recorded: {outcome.decision.value}",
            previous_decision=previous_decision,
            details={"approved_amount": str(outcome.approved_amount)}
            if outcome.approved_amount is not None
            else None,
        )

        if batch is not None:
            await recompute_batch_aggregates(self.session, batch)

        await commit_or_conflict(self.session, batch.id if batch else claim.id)

        logger.info(
            f"Claim {claim.unique_claim_id} decision {outcome.decision.value} by {caller.actor_id}"
        )
        return claim

    # =========================================================================
    # Status Transitions
    # =========================================================================

    async def advance_verification(
        self,
        claim_id: UUID,
        outcome: ClaimStatus,
        caller: Caller,
    ) -> Claim:
        """
        Verify or fail verification of a claim awaiting verification.

        Transitions: AWAITING_VERIFICATION -> VERIFIED | NOT_VERIFIED
        """
        event = VERIFICATION_EVENTS.get(outcome)
        if event is None:
            raise ValidationError(
                f"Verification outcome must be verified or not_verified, got {outcome.value}",
                field="outcome",
                entity_id=claim_id,
            )

        claim = await self.get_claim_or_raise(claim_id)
        if claim.status == outcome:
            return claim

        self.apply_transition(claim, event, outcome, caller)
        claim.verified_at = datetime.now(timezone.utc)

        await commit_or_conflict(self.session, claim.id)
        return claim

    async def queue_for_payment(self, claim_id: UUID, caller: Caller) -> Claim:
        """
        Queue a verified, approved claim for payment.

        Transitions: VERIFIED -> VERIFIED_AWAITING_PAYMENT
        """
        claim = await self.get_claim_or_raise(claim_id)
        if claim.status == ClaimStatus.VERIFIED_AWAITING_PAYMENT:
            return claim

        self.apply_transition(
            claim,
            TransitionEvent.QUEUE_FOR_PAYMENT,
            ClaimStatus.VERIFIED_AWAITING_PAYMENT,
            caller,
        )
        await commit_or_conflict(self.session, claim.id)
        return claim

    async def mark_paid(
        self,
        claim_id: UUID,
        payment_date: date,
        caller: Caller,
    ) -> Claim:
        """
        Mark a queued claim as paid.

        Transitions: VERIFIED_AWAITING_PAYMENT -> VERIFIED_PAID
        """
        claim = await self.get_claim_or_raise(claim_id)
        if claim.status == ClaimStatus.VERIFIED_PAID and claim.payment_date == payment_date:
            return claim

        self.apply_transition(
            claim,
            TransitionEvent.MARK_PAID,
            ClaimStatus.VERIFIED_PAID,
            caller,
            reason=f"Paid on {payment_date.isoformat()}",
        )
        claim.payment_date = payment_date

        await commit_or_conflict(self.session, claim.id)
        return claim

    def request_verification(self, claim: Claim, caller: Caller) -> None:
        """
        Move a submitted claim to awaiting verification.

        Driven by batch submission inside the batch's unit of work; does not
        commit.
        """
        if claim.status != ClaimStatus.SUBMITTED:
            return
        self.apply_transition(
            claim,
            TransitionEvent.REQUEST_VERIFICATION,
            ClaimStatus.AWAITING_VERIFICATION,
            caller,
            reason="Batch submitted",
            system=True,
        )

    def release_from_batch(self, claim: Claim, caller: Caller) -> None:
        """
        Return a claim of a rejected batch to submitted.

        Runs inside the batch's unit of work; does not commit.
        """
        if claim.status != ClaimStatus.AWAITING_VERIFICATION:
            return
        self.apply_transition(
            claim,
            TransitionEvent.RELEASE,
            ClaimStatus.SUBMITTED,
            caller,
            reason="Batch rejected",
            system=True,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def apply_transition(
        self,
        claim: Claim,
        event: TransitionEvent,
        target: ClaimStatus,
        caller: Caller,
        reason: Optional[str] = None,
        system: bool = False,
    ) -> None:
        """Run a transition through the state machine and record it."""
        context = TransitionContext(
            claim_id=str(claim.id),
            current_status=claim.status,
            target_status=target,
            event=event,
            decision=claim.decision,
            triggered_by=caller.actor_id,
            role=caller.role,
            reason=reason,
        )
        result = self.state_machine.execute_transition(context)
        if not result.success:
            if result.missing_role is not None and not system:
                raise PermissionDeniedError(result.error, entity_id=claim.id)
            raise IllegalTransitionError(
                result.error,
                field="status",
                entity_id=claim.id,
                from_state=claim.status.value,
                to_state=target.value,
            )

        previous_status = claim.status
        claim.status = target
        self.record_history(
            claim,
            previous_status,
            caller,
            reason or event.value,
            previous_decision=claim.decision,
            system=system,
        )

    def record_history(
        self,
        claim: Claim,
        previous_status: Optional[ClaimStatus],
        caller: Optional[Caller],
        reason: str,
        previous_decision=None,
        details: Optional[dict] = None,
        system: bool = False,
    ) -> None:
        """Record a status/decision change in history."""
        history = ClaimStatusHistory(
            claim_id=claim.id,
            previous_status=previous_status,
            new_status=claim.status,
            previous_decision=previous_decision,
            new_decision=claim.decision,
            changed_by=caller.actor_id if caller else None,
            actor_role="system" if system or caller is None else caller.role.value,
            reason=reason,
            details=details,
        )
        self.session.add(history)


# =============================================================================
# Factory Functions
# =============================================================================


async def get_claims_service(session: AsyncSession) -> ClaimsService:
    """Get claims service instance."""
    return ClaimsService(session)
