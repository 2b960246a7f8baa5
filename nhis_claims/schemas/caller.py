"""
Pydantic Schemas for collaborator contracts.

The identity provider hands the core a ``Caller``; blob storage hands it a
``DocumentReference``. Neither is minted or verified here.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from nhis_claims.core.enums import CallerRole


class Caller(BaseModel):
    """Authenticated actor performing an operation."""

    model_config = ConfigDict(frozen=True)

    actor_id: str = Field(..., min_length=1, description="Stable user identifier")
    role: CallerRole
    tpa_id: Optional[str] = Field(None, description="Scope for TPA users")
    facility_id: Optional[str] = Field(None, description="Scope for facility users")
    name: Optional[str] = None
    email: Optional[EmailStr] = None

    @property
    def is_admin(self) -> bool:
        return self.role == CallerRole.NHIS_ADMIN


class DocumentReference(BaseModel):
    """Opaque pointer to an uploaded document."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(..., min_length=1, max_length=1000)
    filename: Optional[str] = Field(None, max_length=255)
