"""
Reconciliation Service for NHIS Claims Administration.

Provides:
- Persisted batch financials (admin fee split)
- Reimbursement creation from closed batches, all-or-nothing
- Reimbursement status lifecycle (processed, completed, disputed)
- Advance payment ledger
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from nhis_claims.core.enums import (
    AdvancePaymentStatus,
    BatchStatus,
    CallerRole,
    ReimbursementStatus,
)
from nhis_claims.db.connection import commit_or_conflict
from nhis_claims.models.batch import Batch
from nhis_claims.models.financial import AdvancePayment, Reimbursement
from nhis_claims.schemas.caller import Caller
from nhis_claims.schemas.financial import (
    AdvancePaymentCreate,
    BatchFinancials,
    ReimbursementCreate,
)
from nhis_claims.services.access import enforce_batch_scope, require_admin, require_role
from nhis_claims.services.aggregates import load_batch
from nhis_claims.services.financial_engine import FinancialEngine, get_financial_engine
from nhis_claims.utils.errors import (
    ConflictError,
    IllegalTransitionError,
    IneligibleBatchError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# Reimbursement lifecycle
REIMBURSEMENT_TRANSITIONS: dict[ReimbursementStatus, set[ReimbursementStatus]] = {
    ReimbursementStatus.PENDING: {
        ReimbursementStatus.PROCESSED,
        ReimbursementStatus.DISPUTED,
    },
    ReimbursementStatus.PROCESSED: {
        ReimbursementStatus.COMPLETED,
        ReimbursementStatus.DISPUTED,
    },
    ReimbursementStatus.COMPLETED: set(),
    ReimbursementStatus.DISPUTED: set(),
}

# Advance payment ledger
ADVANCE_PAYMENT_TRANSITIONS: dict[AdvancePaymentStatus, set[AdvancePaymentStatus]] = {
    AdvancePaymentStatus.PENDING: {
        AdvancePaymentStatus.APPROVED,
        AdvancePaymentStatus.CANCELLED,
    },
    AdvancePaymentStatus.APPROVED: {
        AdvancePaymentStatus.DISBURSED,
        AdvancePaymentStatus.CANCELLED,
    },
    AdvancePaymentStatus.DISBURSED: set(),
    AdvancePaymentStatus.CANCELLED: set(),
}


class ReconciliationService:
    """
    Service for financial reconciliation.

    Handles:
    - Admin fee computation per batch
    - Bundling closed batches into reimbursements
    - Advance payments to TPAs
    """

    def __init__(
        self,
        session: AsyncSession,
        financial_engine: Optional[FinancialEngine] = None,
    ):
        self.session = session
        self.financial_engine = financial_engine or get_financial_engine()

    # =========================================================================
    # Reference Generation
    # =========================================================================

    async def _generate_reference(self) -> str:
        """
        Generate a unique reimbursement reference.

        Format: RMB-{YEAR}-{SEQUENCE:06d}
        """
        year = datetime.now(timezone.utc).year
        result = await self.session.execute(
            select(func.max(Reimbursement.reference)).where(
                Reimbursement.reference.like(f"RMB-{year}-%")
            )
        )
        max_reference = result.scalar_one_or_none()

        if max_reference:
            try:
                next_seq = int(max_reference.split("-")[-1]) + 1
            except (ValueError, IndexError):
                next_seq = 1
        else:
            next_seq = 1

        return f"RMB-{year}-{next_seq:06d}"

    # =========================================================================
    # Batch Financials
    # =========================================================================

    async def compute_batch_financials(
        self,
        batch_id: UUID,
        caller: Caller,
        override: Optional[Decimal] = None,
    ) -> BatchFinancials:
        """
        Compute and persist a batch's admin fee split.

        Raises:
            IllegalTransitionError: batch already attached to a reimbursement
            ValidationError: percentage outside [0, 100]
        """
        require_role(caller, CallerRole.TPA, CallerRole.NHIS_ADMIN, entity_id=batch_id)
        batch = await load_batch(self.session, batch_id, for_update=True)
        enforce_batch_scope(caller, batch)

        if batch.is_attached:
            raise IllegalTransitionError(
                "Financials are frozen once the batch is attached to a reimbursement",
                field="reimbursement_id",
                entity_id=batch.id,
            )

        financials = self.financial_engine.compute_batch_financials(batch, override)
        self._apply_financials(batch, financials)
        await commit_or_conflict(self.session, batch.id)

        logger.info(
            f"Batch {batch.batch_number} financials: pct={financials.admin_fee_percentage} "
            f"fee={financials.admin_fee_amount} net={financials.net_amount}"
        )
        return financials

    @staticmethod
    def _apply_financials(batch: Batch, financials: BatchFinancials) -> None:
        batch.admin_fee_percentage = financials.admin_fee_percentage
        batch.admin_fee_amount = financials.admin_fee_amount
        batch.net_amount = financials.net_amount

    # =========================================================================
    # Reimbursements
    # =========================================================================

    async def get_reimbursement(self, reimbursement_id: UUID) -> Reimbursement:
        result = await self.session.execute(
            select(Reimbursement).where(Reimbursement.id == reimbursement_id)
        )
        reimbursement = result.scalar_one_or_none()
        if reimbursement is None:
            raise NotFoundError(
                f"Reimbursement not found: {reimbursement_id}",
                entity_id=reimbursement_id,
            )
        return reimbursement

    async def list_reimbursements(
        self,
        caller: Caller,
        tpa_id: Optional[str] = None,
        status: Optional[ReimbursementStatus] = None,
    ) -> Sequence[Reimbursement]:
        require_role(caller, CallerRole.TPA, CallerRole.NHIS_ADMIN)

        query = select(Reimbursement)
        if caller.role == CallerRole.TPA:
            query = query.where(Reimbursement.tpa_id == caller.tpa_id)
        if tpa_id:
            query = query.where(Reimbursement.tpa_id == tpa_id)
        if status:
            query = query.where(Reimbursement.status == status)

        result = await self.session.execute(query.order_by(Reimbursement.created_at))
        return result.scalars().all()

    async def create_reimbursement(
        self,
        payload: ReimbursementCreate,
        caller: Caller,
    ) -> Reimbursement:
        """
        Bundle closed batches of one TPA into a reimbursement.

        Every batch is checked, re-priced with the optional override and
        marked attached in a single transaction. A batch claimed by a
        concurrent reimbursement fails the version check on flush and the
        whole call is rolled back.

        Raises:
            PermissionDeniedError: caller is not an administrator
            IneligibleBatchError: a batch is missing, foreign, open or attached
            ValidationError: override outside [0, 100]
        """
        require_admin(caller)

        if not payload.batch_ids:
            raise ValidationError("At least one batch is required", field="batch_ids")
        if payload.admin_fee_percentage is not None:
            self.financial_engine.check_percentage(payload.admin_fee_percentage)

        try:
            batches = await self._load_eligible_batches(payload)

            total_approved = Decimal("0")
            total_fee = Decimal("0")
            for batch in batches:
                financials = self.financial_engine.compute_batch_financials(
                    batch, payload.admin_fee_percentage
                )
                self._apply_financials(batch, financials)
                # Force the versioned UPDATE even when the figures are unchanged
                flag_modified(batch, "admin_fee_amount")
                try:
                    await self.session.flush()
                except StaleDataError as e:
                    raise IneligibleBatchError(
                        batch.id,
                        "Batch was attached or modified concurrently",
                    ) from e
                total_approved += financials.approved_amount
                total_fee += financials.admin_fee_amount

            if payload.admin_fee_percentage is not None:
                stored_pct = Decimal(payload.admin_fee_percentage)
            else:
                stored_pct = self.financial_engine.common_percentage(
                    b.admin_fee_percentage for b in batches
                )

            reimbursement = Reimbursement(
                reference=await self._generate_reference(),
                tpa_id=payload.tpa_id,
                batch_ids=[str(b.id) for b in batches],
                total_claims_amount=total_approved,
                admin_fee_percentage=stored_pct,
                admin_fee_amount=total_fee,
                net_reimbursement_amount=total_approved - total_fee,
                status=ReimbursementStatus.PENDING,
                purpose=payload.purpose,
                notes=payload.notes,
                created_by=caller.actor_id,
            )
            self.session.add(reimbursement)
            try:
                await self.session.flush()
            except IntegrityError as e:
                raise ConflictError(
                    "Reimbursement reference already taken; retry",
                    field="reference",
                ) from e

            for batch in batches:
                batch.reimbursement_id = reimbursement.id

            await commit_or_conflict(self.session, reimbursement.id)
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            f"Reimbursement {reimbursement.reference} created for {payload.tpa_id}: "
            f"{len(batches)} batches, total={total_approved} fee={total_fee} "
            f"net={reimbursement.net_reimbursement_amount}"
        )
        return reimbursement

    async def _load_eligible_batches(self, payload: ReimbursementCreate) -> list[Batch]:
        batches = []
        seen: set[UUID] = set()
        for batch_id in payload.batch_ids:
            if batch_id in seen:
                raise IneligibleBatchError(batch_id, "Batch listed more than once")
            seen.add(batch_id)

            try:
                batch = await load_batch(self.session, batch_id, for_update=True)
            except NotFoundError as e:
                raise IneligibleBatchError(batch_id, "Batch not found") from e

            if batch.tpa_id != payload.tpa_id:
                raise IneligibleBatchError(batch_id, "Batch belongs to a different TPA")
            if batch.status != BatchStatus.CLOSED:
                raise IneligibleBatchError(
                    batch_id, f"Batch is not closed (status: {batch.status.value})"
                )
            if batch.is_attached:
                raise IneligibleBatchError(
                    batch_id, "Batch is already attached to a reimbursement"
                )
            batches.append(batch)
        return batches

    async def update_reimbursement_status(
        self,
        reimbursement_id: UUID,
        new_status: ReimbursementStatus,
        caller: Caller,
        receipt_reference: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Reimbursement:
        """
        Move a reimbursement along its lifecycle.

        Transitions:
            PENDING -> PROCESSED -> COMPLETED
            PENDING | PROCESSED -> DISPUTED (batches become unattached)
        """
        require_admin(caller, entity_id=reimbursement_id)
        reimbursement = await self.get_reimbursement(reimbursement_id)
        current = reimbursement.status

        if current == new_status:
            return reimbursement
        if new_status not in REIMBURSEMENT_TRANSITIONS[current]:
            raise IllegalTransitionError(
                f"Invalid reimbursement transition: {current.value} -> {new_status.value}",
                field="status",
                entity_id=reimbursement.id,
                from_state=current.value,
                to_state=new_status.value,
            )

        now = datetime.now(timezone.utc)
        if new_status == ReimbursementStatus.PROCESSED:
            reimbursement.processed_at = now
        elif new_status == ReimbursementStatus.COMPLETED:
            if not (receipt_reference or "").strip():
                raise ValidationError(
                    "Receipt reference is required to complete a reimbursement",
                    field="receipt_reference",
                    entity_id=reimbursement.id,
                )
            reimbursement.receipt_reference = receipt_reference.strip()
            reimbursement.completed_at = now
        elif new_status == ReimbursementStatus.DISPUTED:
            if not (reason or "").strip():
                raise ValidationError(
                    "Reason is required to dispute a reimbursement",
                    field="reason",
                    entity_id=reimbursement.id,
                )
            reimbursement.dispute_reason = reason.strip()
            released = await self.session.execute(
                select(Batch).where(Batch.reimbursement_id == reimbursement.id)
            )
            for batch in released.scalars().all():
                batch.reimbursement_id = None

        reimbursement.status = new_status
        await commit_or_conflict(self.session, reimbursement.id)

        logger.info(
            f"Reimbursement {reimbursement.reference} {current.value} -> {new_status.value}"
        )
        return reimbursement

    # =========================================================================
    # Advance Payments
    # =========================================================================

    async def get_advance_payment(self, payment_id: UUID) -> AdvancePayment:
        result = await self.session.execute(
            select(AdvancePayment).where(AdvancePayment.id == payment_id)
        )
        payment = result.scalar_one_or_none()
        if payment is None:
            raise NotFoundError(f"Advance payment not found: {payment_id}", entity_id=payment_id)
        return payment

    async def list_advance_payments(
        self,
        caller: Caller,
        tpa_id: Optional[str] = None,
    ) -> Sequence[AdvancePayment]:
        require_role(caller, CallerRole.TPA, CallerRole.NHIS_ADMIN)

        query = select(AdvancePayment)
        if caller.role == CallerRole.TPA:
            query = query.where(AdvancePayment.tpa_id == caller.tpa_id)
        if tpa_id:
            query = query.where(AdvancePayment.tpa_id == tpa_id)

        result = await self.session.execute(query.order_by(AdvancePayment.payment_date))
        return result.scalars().all()

    async def create_advance_payment(
        self,
        payload: AdvancePaymentCreate,
        caller: Caller,
    ) -> AdvancePayment:
        """Record an advance payment; references are unique."""
        require_admin(caller)

        existing = await self.session.execute(
            select(AdvancePayment.id).where(
                AdvancePayment.payment_reference == payload.payment_reference
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise ValidationError(
                f"Payment reference {payload.payment_reference} already exists",
                field="payment_reference",
            )

        payment = AdvancePayment(
            payment_reference=payload.payment_reference,
            tpa_id=payload.tpa_id,
            amount=payload.amount,
            payment_date=payload.payment_date,
            payment_method=payload.payment_method,
            purpose=payload.purpose,
            description=payload.description,
            status=AdvancePaymentStatus.PENDING,
            created_by=caller.actor_id,
        )
        self.session.add(payment)
        try:
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            raise ValidationError(
                f"Payment reference {payload.payment_reference} already exists",
                field="payment_reference",
            ) from e

        await self.session.commit()
        logger.info(
            f"Advance payment {payment.payment_reference} of {payment.amount} "
            f"recorded for {payment.tpa_id}"
        )
        return payment

    async def approve_advance_payment(self, payment_id: UUID, caller: Caller) -> AdvancePayment:
        return await self._advance(payment_id, AdvancePaymentStatus.APPROVED, caller)

    async def disburse_advance_payment(self, payment_id: UUID, caller: Caller) -> AdvancePayment:
        return await self._advance(payment_id, AdvancePaymentStatus.DISBURSED, caller)

    async def cancel_advance_payment(self, payment_id: UUID, caller: Caller) -> AdvancePayment:
        """Cancel an advance payment that has not been disbursed."""
        return await self._advance(payment_id, AdvancePaymentStatus.CANCELLED, caller)

    async def mark_advance_payment_reconciled(
        self,
        payment_id: UUID,
        caller: Caller,
    ) -> AdvancePayment:
        """Flag a disbursed advance payment as reconciled; amounts are untouched."""
        require_admin(caller, entity_id=payment_id)
        payment = await self.get_advance_payment(payment_id)

        if payment.is_reconciled:
            return payment
        if payment.status != AdvancePaymentStatus.DISBURSED:
            raise IllegalTransitionError(
                f"Only disbursed advance payments can be reconciled, current: {payment.status.value}",
                field="is_reconciled",
                entity_id=payment.id,
                from_state=payment.status.value,
            )

        payment.is_reconciled = True
        payment.reconciled_by = caller.actor_id
        payment.reconciled_at = datetime.now(timezone.utc)
        await commit_or_conflict(self.session, payment.id)
        return payment

    async def _advance(
        self,
        payment_id: UUID,
        target: AdvancePaymentStatus,
        caller: Caller,
    ) -> AdvancePayment:
        require_admin(caller, entity_id=payment_id)
        payment = await self.get_advance_payment(payment_id)
        current = payment.status

        if current == target:
            return payment
        if target not in ADVANCE_PAYMENT_TRANSITIONS[current]:
            raise IllegalTransitionError(
                f"Invalid advance payment transition: {current.value} -> {target.value}",
                field="status",
                entity_id=payment.id,
                from_state=current.value,
                to_state=target.value,
            )

        now = datetime.now(timezone.utc)
        if target == AdvancePaymentStatus.APPROVED:
            payment.approved_by = caller.actor_id
            payment.approved_at = now
        elif target == AdvancePaymentStatus.DISBURSED:
            payment.disbursed_by = caller.actor_id
            payment.disbursed_at = now
        elif target == AdvancePaymentStatus.CANCELLED:
            payment.cancelled_at = now

        payment.status = target
        await commit_or_conflict(self.session, payment.id)

        logger.info(f"Advance payment {payment.payment_reference} {current.value} -> {target.value}")
        return payment


# =============================================================================
# Factory Functions
# =============================================================================


async def get_reconciliation_service(session: AsyncSession) -> ReconciliationService:
    """Get reconciliation service instance."""
    return ReconciliationService(session)
