"""
Error Record Escalation Workflow.

State Diagram:
    OPEN -> UNDER_REVIEW
    UNDER_REVIEW -> RESOLVED | ESCALATED | IGNORED
    RESOLVED -> UNDER_REVIEW      (reopen; new note required)

ESCALATED (note required) and IGNORED are terminal. Only the oversight role
may move a record.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from nhis_claims.core.enums import CallerRole, ErrorRecordStatus
from nhis_claims.utils.errors import IllegalTransitionError, PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EscalationTransition:
    """Represents a valid error record transition."""

    from_status: ErrorRecordStatus
    to_status: ErrorRecordStatus
    requires_note: bool = False


VALID_ESCALATION_TRANSITIONS: list[EscalationTransition] = [
    EscalationTransition(ErrorRecordStatus.OPEN, ErrorRecordStatus.UNDER_REVIEW),
    EscalationTransition(ErrorRecordStatus.UNDER_REVIEW, ErrorRecordStatus.RESOLVED),
    EscalationTransition(
        ErrorRecordStatus.UNDER_REVIEW,
        ErrorRecordStatus.ESCALATED,
        requires_note=True,
    ),
    EscalationTransition(ErrorRecordStatus.UNDER_REVIEW, ErrorRecordStatus.IGNORED),
    EscalationTransition(
        ErrorRecordStatus.RESOLVED,
        ErrorRecordStatus.UNDER_REVIEW,
        requires_note=True,
    ),
]

TERMINAL_STATUSES = frozenset({ErrorRecordStatus.ESCALATED, ErrorRecordStatus.IGNORED})

# Records that still need attention; used to avoid duplicate findings
ACTIVE_STATUSES = frozenset(
    {
        ErrorRecordStatus.OPEN,
        ErrorRecordStatus.UNDER_REVIEW,
        ErrorRecordStatus.ESCALATED,
    }
)

ESCALATION_ROLES = frozenset({CallerRole.NHIS_ADMIN})


class EscalationWorkflow:
    """Validates error record transitions."""

    def __init__(self):
        self._transitions = {
            (t.from_status, t.to_status): t for t in VALID_ESCALATION_TRANSITIONS
        }

    def allowed_targets(self, status: ErrorRecordStatus) -> list[ErrorRecordStatus]:
        return [to for (frm, to) in self._transitions if frm == status]

    def check(
        self,
        record_id: str,
        current: ErrorRecordStatus,
        target: ErrorRecordStatus,
        role: Optional[CallerRole],
        note: Optional[str] = None,
    ) -> EscalationTransition:
        """
        Check a transition and return it.

        Raises:
            PermissionDeniedError: caller is not an oversight administrator
            IllegalTransitionError: transition not in the table
            ValidationError: required note missing
        """
        if role not in ESCALATION_ROLES:
            raise PermissionDeniedError(
                "Only administrators may transition error records",
                entity_id=record_id,
            )

        transition = self._transitions.get((current, target))
        if transition is None:
            logger.warning(
                f"Rejected error record transition {record_id}: {current.value} -> {target.value}"
            )
            raise IllegalTransitionError(
                f"Cannot move error record from {current.value} to {target.value}",
                field="status",
                entity_id=record_id,
                from_state=current.value,
                to_state=target.value,
            )

        if transition.requires_note and not (note or "").strip():
            raise ValidationError(
                f"A note is required to move an error record to {target.value}",
                field="note",
                entity_id=record_id,
            )

        return transition


_escalation_workflow: Optional[EscalationWorkflow] = None


def get_escalation_workflow() -> EscalationWorkflow:
    """Get singleton escalation workflow."""
    global _escalation_workflow
    if _escalation_workflow is None:
        _escalation_workflow = EscalationWorkflow()
    return _escalation_workflow
