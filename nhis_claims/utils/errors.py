"""
Custom Exceptions
Structured error taxonomy for the claims core.

Every error carries a machine-readable ``kind``, a human-readable ``reason``,
the offending ``field`` (if any) and the ``entity_id`` it concerns. The
``status_code`` attribute is the HTTP status an outer API layer should map it to.
"""

from typing import Any, Optional


class ClaimsCoreError(Exception):
    """Base class for all claims core errors"""

    kind: str = "error"
    status_code: int = 400

    def __init__(
        self,
        reason: str = "Claims core error",
        field: Optional[str] = None,
        entity_id: Optional[Any] = None,
    ):
        super().__init__(reason)
        self.reason = reason
        self.field = field
        self.entity_id = str(entity_id) if entity_id is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "reason": self.reason,
            "field": self.field,
            "entity_id": self.entity_id,
        }


class ValidationError(ClaimsCoreError):
    """Raised when input fails a business constraint"""

    kind = "validation_error"
    status_code = 422

    def __init__(
        self,
        reason: str = "Validation error",
        field: Optional[str] = None,
        entity_id: Optional[Any] = None,
    ):
        super().__init__(reason, field, entity_id)


class InvalidDecisionError(ValidationError):
    """Raised when a TPA decision payload is inconsistent"""

    kind = "invalid_decision"


class IllegalTransitionError(ClaimsCoreError):
    """Raised when a state machine rejects a transition"""

    kind = "illegal_transition"
    status_code = 409

    def __init__(
        self,
        reason: str = "Illegal state transition",
        field: Optional[str] = None,
        entity_id: Optional[Any] = None,
        from_state: Optional[str] = None,
        to_state: Optional[str] = None,
    ):
        super().__init__(reason, field, entity_id)
        self.from_state = from_state
        self.to_state = to_state

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["from_state"] = self.from_state
        data["to_state"] = self.to_state
        return data


class IneligibleBatchError(ClaimsCoreError):
    """Raised when a batch cannot be included in a reimbursement"""

    kind = "ineligible_batch"
    status_code = 409

    def __init__(self, batch_id: Any, reason: str = "Batch is not eligible"):
        super().__init__(reason, "batch_ids", batch_id)
        self.batch_id = self.entity_id


class ConflictError(ClaimsCoreError):
    """Raised when a concurrent writer won; the caller may retry"""

    kind = "conflict"
    status_code = 409

    def __init__(
        self,
        reason: str = "Resource was modified concurrently",
        field: Optional[str] = None,
        entity_id: Optional[Any] = None,
    ):
        super().__init__(reason, field, entity_id)


class IncompleteClosureError(ClaimsCoreError):
    """Raised when batch closure input is missing required items"""

    kind = "incomplete_closure"
    status_code = 422

    def __init__(self, missing_fields: list[str], entity_id: Optional[Any] = None):
        super().__init__(
            f"Closure input incomplete: {', '.join(missing_fields)}",
            missing_fields[0] if missing_fields else None,
            entity_id,
        )
        self.missing_fields = list(missing_fields)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["missing_fields"] = self.missing_fields
        return data


class NotFoundError(ClaimsCoreError):
    """Raised when resource not found"""

    kind = "not_found"
    status_code = 404

    def __init__(self, reason: str = "Resource not found", entity_id: Optional[Any] = None):
        super().__init__(reason, None, entity_id)


class PermissionDeniedError(ClaimsCoreError):
    """Raised when the caller's role or scope does not allow the operation"""

    kind = "permission_denied"
    status_code = 403

    def __init__(self, reason: str = "Permission denied", entity_id: Optional[Any] = None):
        super().__init__(reason, None, entity_id)
