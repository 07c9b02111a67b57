"""
schemas/alumni.py
-----------------
Pydantic models for alumni invitations.

Naming convention:
  AlumniInvitation       → stored record (holds the invitation code)
  AlumniInvite           → invite request body
  InvitationVerification → reduced projection returned to code holders
"""

from enum import Enum as PyEnum
from typing import List, Optional, Union

from pydantic import EmailStr, Field, field_validator

from app.schemas.base import CamelModel


class InvitationStatus(str, PyEnum):
    invited = "invited"
    accepted = "accepted"
    rejected = "rejected"


class AlumniInvitation(CamelModel):
    id: str
    institution_domain: str
    email: str
    first_name: str
    last_name: str
    graduation_year: Optional[str] = None
    program: Optional[str] = None
    status: InvitationStatus = InvitationStatus.invited
    invitation_code: str
    invited_by: Optional[str] = None
    invited_at: str
    accepted_at: Optional[str] = None
    rejected_at: Optional[str] = None
    user_id: Optional[str] = None


class AlumniInvite(CamelModel):
    email: EmailStr
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    graduation_year: Optional[Union[int, str]] = None
    program: Optional[str] = Field(default=None, max_length=200)

    @field_validator("first_name", "last_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("graduation_year")
    @classmethod
    def year_as_text(cls, v: Optional[Union[int, str]]) -> Optional[str]:
        if v is None:
            return v
        v = str(v).strip()
        return v or None


class AcceptInvitation(CamelModel):
    invitation_code: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)


class DeclineInvitation(CamelModel):
    invitation_code: str = Field(..., min_length=1)


class InvitationVerification(CamelModel):
    valid: bool = True
    first_name: str
    last_name: str
    email: str
    institution_domain: str
    graduation_year: Optional[str] = None
    program: Optional[str] = None

    @classmethod
    def from_invitation(cls, invitation: AlumniInvitation) -> "InvitationVerification":
        return cls(
            first_name=invitation.first_name,
            last_name=invitation.last_name,
            email=invitation.email,
            institution_domain=invitation.institution_domain,
            graduation_year=invitation.graduation_year,
            program=invitation.program,
        )


class Pagination(CamelModel):
    page: int
    per_page: int
    total: int
    total_pages: int


class AlumniListResponse(CamelModel):
    items: List[AlumniInvitation]
    pagination: Pagination
