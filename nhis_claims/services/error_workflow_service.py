"""
Error Workflow Service.

Provides:
- On-demand validation of a claim or batch
- Persistence of validation findings as error records
- Escalation workflow transitions with audit rows
- Error record listing and statistics
"""

import logging
from typing import Iterable, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from nhis_claims.core.enums import CallerRole, ErrorRecordStatus
from nhis_claims.models.claim import Claim
from nhis_claims.models.error_record import ErrorRecord, ErrorRecordTransition
from nhis_claims.schemas.caller import Caller
from nhis_claims.schemas.validation import (
    ErrorRecordFilter,
    ErrorStatistics,
    ValidationFinding,
)
from nhis_claims.services.access import enforce_batch_scope, enforce_claim_scope, require_role
from nhis_claims.services.aggregates import load_batch, load_batch_claims
from nhis_claims.services.escalation import (
    ACTIVE_STATUSES,
    EscalationWorkflow,
    get_escalation_workflow,
)
from nhis_claims.services.validation_engine import (
    ValidationEngine,
    get_validation_engine,
)
from nhis_claims.utils.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class ErrorWorkflowService:
    """Service for error records and their escalation workflow."""

    def __init__(
        self,
        session: AsyncSession,
        validation_engine: Optional[ValidationEngine] = None,
        workflow: Optional[EscalationWorkflow] = None,
    ):
        self.session = session
        self.validation_engine = validation_engine or get_validation_engine()
        self.workflow = workflow or get_escalation_workflow()

    # =========================================================================
    # Validation
    # =========================================================================

    async def run_validation(
        self,
        caller: Caller,
        claim_id: Optional[UUID] = None,
        batch_id: Optional[UUID] = None,
    ) -> list[ErrorRecord]:
        """
        Validate a claim or a batch and persist new findings.

        Findings that already have an active record with the same code and
        scope are not duplicated.

        Returns:
            Newly created error records
        """
        if (claim_id is None) == (batch_id is None):
            raise ValidationError("Provide exactly one of claim_id or batch_id", field="claim_id")

        if batch_id is not None:
            batch = await load_batch(self.session, batch_id)
            enforce_batch_scope(caller, batch)
            claims = await load_batch_claims(self.session, batch.id)
            findings = self.validation_engine.validate_batch(batch.id, batch.tpa_id, claims)
        else:
            claim = (
                await self.session.execute(select(Claim).where(Claim.id == claim_id))
            ).scalar_one_or_none()
            if claim is None:
                raise NotFoundError(f"Claim not found: {claim_id}", entity_id=claim_id)
            enforce_claim_scope(caller, claim)
            peers = await self._peers(claim)
            findings = self.validation_engine.validate_claim(claim, peers)

        records = await self.persist_findings(findings, created_by=caller.actor_id)
        await self.session.commit()

        logger.info(
            f"Validation run by {caller.actor_id}: {len(findings)} findings, "
            f"{len(records)} new records"
        )
        return records

    async def _peers(self, claim: Claim) -> Sequence[Claim]:
        query = select(Claim).where(
            Claim.beneficiary_id == claim.beneficiary_id,
            Claim.tpa_id == claim.tpa_id,
        )
        if claim.batch_id is None:
            query = query.where(Claim.batch_id.is_(None))
        else:
            query = query.where(Claim.batch_id == claim.batch_id)
        result = await self.session.execute(query)
        return result.scalars().all()

    async def persist_findings(
        self,
        findings: Iterable[ValidationFinding],
        created_by: Optional[str] = None,
    ) -> list[ErrorRecord]:
        """
        Add error records for findings inside the caller's unit of work.

        Does not commit.
        """
        records = []
        for finding in findings:
            if await self._has_active_record(finding):
                continue
            record = ErrorRecord(
                claim_id=finding.claim_id,
                batch_id=finding.batch_id,
                tpa_id=finding.tpa_id,
                error_code=finding.error_code,
                title=finding.title,
                description=finding.description,
                error_type=finding.error_type,
                category=finding.category,
                severity=finding.severity,
                field_name=finding.field_name,
                expected_value=finding.expected_value,
                actual_value=finding.actual_value,
                expected_amount=finding.expected_amount,
                actual_amount=finding.actual_amount,
                amount_deviation=finding.amount_deviation,
                deviation_percentage=finding.deviation_percentage,
                evidence=finding.evidence or None,
                status=ErrorRecordStatus.OPEN,
                created_by=created_by,
            )
            self.session.add(record)
            records.append(record)

        await self.session.flush()
        return records

    async def _has_active_record(self, finding: ValidationFinding) -> bool:
        query = select(ErrorRecord.id).where(
            ErrorRecord.error_code == finding.error_code,
            ErrorRecord.status.in_(ACTIVE_STATUSES),
        )
        if finding.claim_id is not None:
            query = query.where(ErrorRecord.claim_id == finding.claim_id)
        else:
            query = query.where(
                ErrorRecord.claim_id.is_(None),
                ErrorRecord.batch_id == finding.batch_id,
            )
        result = await self.session.execute(query.limit(1))
        return result.scalar_one_or_none() is not None

    # =========================================================================
    # Escalation
    # =========================================================================

    async def get_error_record(self, record_id: UUID) -> ErrorRecord:
        result = await self.session.execute(
            select(ErrorRecord).where(ErrorRecord.id == record_id)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError(f"Error record not found: {record_id}", entity_id=record_id)
        return record

    async def transition_error_record(
        self,
        record_id: UUID,
        new_status: ErrorRecordStatus,
        caller: Caller,
        note: Optional[str] = None,
    ) -> ErrorRecord:
        """
        Move an error record through the escalation workflow.

        Raises:
            PermissionDeniedError: caller is not an administrator
            IllegalTransitionError: transition not allowed
            ValidationError: required note missing
        """
        record = await self.get_error_record(record_id)
        previous = record.status

        self.workflow.check(str(record.id), previous, new_status, caller.role, note)

        record.status = new_status
        if new_status == ErrorRecordStatus.RESOLVED:
            record.resolution = note
        elif new_status == ErrorRecordStatus.ESCALATED:
            record.escalation_note = note

        self.session.add(
            ErrorRecordTransition(
                error_record_id=record.id,
                from_status=previous,
                to_status=new_status,
                actor_id=caller.actor_id,
                actor_role=caller.role.value,
                note=note,
            )
        )
        await self.session.commit()

        logger.info(
            f"Error record {record.id} {previous.value} -> {new_status.value} by {caller.actor_id}"
        )
        return record

    async def get_transitions(self, record_id: UUID) -> Sequence[ErrorRecordTransition]:
        result = await self.session.execute(
            select(ErrorRecordTransition)
            .where(ErrorRecordTransition.error_record_id == record_id)
            .order_by(ErrorRecordTransition.changed_at)
        )
        return result.scalars().all()

    # =========================================================================
    # Listing & Statistics
    # =========================================================================

    async def list_error_records(
        self,
        filters: ErrorRecordFilter,
        caller: Caller,
    ) -> Sequence[ErrorRecord]:
        require_role(caller, CallerRole.TPA, CallerRole.NHIS_ADMIN)

        query = select(ErrorRecord)
        if caller.role == CallerRole.TPA:
            query = query.where(ErrorRecord.tpa_id == caller.tpa_id)
        if filters.claim_id:
            query = query.where(ErrorRecord.claim_id == filters.claim_id)
        if filters.batch_id:
            query = query.where(ErrorRecord.batch_id == filters.batch_id)
        if filters.tpa_id:
            query = query.where(ErrorRecord.tpa_id == filters.tpa_id)
        if filters.status:
            query = query.where(ErrorRecord.status == filters.status)
        if filters.severity:
            query = query.where(ErrorRecord.severity == filters.severity)
        if filters.category:
            query = query.where(ErrorRecord.category == filters.category)

        result = await self.session.execute(query.order_by(ErrorRecord.created_at))
        return result.scalars().all()

    async def get_statistics(self, tpa_id: Optional[str] = None) -> ErrorStatistics:
        """Get error record counts by status, severity, category and type."""
        stats = ErrorStatistics()

        for column, bucket in (
            (ErrorRecord.status, stats.by_status),
            (ErrorRecord.severity, stats.by_severity),
            (ErrorRecord.category, stats.by_category),
            (ErrorRecord.error_type, stats.by_type),
        ):
            query = select(column, func.count(ErrorRecord.id)).group_by(column)
            if tpa_id:
                query = query.where(ErrorRecord.tpa_id == tpa_id)
            result = await self.session.execute(query)
            for value, count in result.all():
                bucket[value.value] = count

        stats.total = sum(stats.by_status.values())
        return stats
