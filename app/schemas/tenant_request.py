"""
schemas/tenant_request.py
-------------------------
Pydantic models for an institution's application to onboard.
"""

from enum import Enum as PyEnum
from typing import List, Optional

from pydantic import EmailStr, Field, field_validator

from app.schemas.base import CamelModel
from app.schemas.tenant import TenantRead


class TenantRequestStatus(str, PyEnum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class TenantRequest(CamelModel):
    id: str
    institution_domain: str
    institution_name: str
    admin_name: str
    admin_email: str
    reason: Optional[str] = None
    requesting_user_id: Optional[str] = None
    status: TenantRequestStatus = TenantRequestStatus.pending
    submitted_at: str
    reviewed_at: Optional[str] = None
    rejection_reason: Optional[str] = None
    tenant_id: Optional[str] = None


class TenantRequestCreate(CamelModel):
    institution_name: str = Field(..., min_length=1, max_length=200)
    admin_name: str = Field(..., min_length=1, max_length=200)
    admin_email: EmailStr
    reason: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("institution_name", "admin_name")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class TenantRequestReject(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


class TenantRequestListResponse(CamelModel):
    total: int
    items: List[TenantRequest]


class ApprovalResult(CamelModel):
    request: TenantRequest
    tenant: TenantRead
