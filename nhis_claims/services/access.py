"""
Role Scoping.

Facility users act only on their facility's claims and batches, TPA users only
on their TPA's; oversight administrators act on everything.
"""

from typing import Optional

from nhis_claims.core.enums import CallerRole
from nhis_claims.schemas.caller import Caller
from nhis_claims.utils.errors import PermissionDeniedError


def require_role(caller: Caller, *roles: CallerRole, entity_id=None) -> None:
    """Raise PermissionDeniedError unless the caller has one of ``roles``."""
    if caller.role not in roles:
        allowed = ", ".join(r.value for r in roles)
        raise PermissionDeniedError(
            f"Permission denied: role {caller.role.value} is not one of [{allowed}]",
            entity_id=entity_id,
        )


def require_admin(caller: Caller, entity_id=None) -> None:
    require_role(caller, CallerRole.NHIS_ADMIN, entity_id=entity_id)


def enforce_scope(
    caller: Caller,
    tpa_id: Optional[str],
    facility_id: Optional[str],
    entity_id=None,
) -> None:
    """
    Enforce that the caller owns the resource.

    Raises PermissionDeniedError if the resource belongs to another TPA or
    facility.
    """
    if caller.role == CallerRole.NHIS_ADMIN:
        return

    if caller.role == CallerRole.TPA:
        if not caller.tpa_id or caller.tpa_id != tpa_id:
            raise PermissionDeniedError(
                "Access denied: resource belongs to a different TPA",
                entity_id=entity_id,
            )
        return

    if caller.role == CallerRole.FACILITY:
        if not caller.facility_id or caller.facility_id != facility_id:
            raise PermissionDeniedError(
                "Access denied: resource belongs to a different facility",
                entity_id=entity_id,
            )
        return

    raise PermissionDeniedError("Access denied", entity_id=entity_id)


def enforce_claim_scope(caller: Caller, claim) -> None:
    enforce_scope(caller, claim.tpa_id, claim.facility_id, entity_id=claim.id)


def enforce_batch_scope(caller: Caller, batch) -> None:
    enforce_scope(caller, batch.tpa_id, batch.facility_id, entity_id=batch.id)
