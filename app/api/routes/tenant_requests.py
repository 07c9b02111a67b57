"""
api/routes/tenant_requests.py
-----------------------------
System-administrator review of institution onboarding requests.

GET  /admin/tenant-requests               → list (newest first)
POST /admin/tenant-requests/{id}/approve  → spawn an onboarding tenant
POST /admin/tenant-requests/{id}/reject   → terminal, optional reason
"""

from typing import Optional

from fastapi import APIRouter, Body, Query

from app.dependencies import Services, SystemAdmin
from app.schemas.tenant import TenantRead
from app.schemas.tenant_request import (
    ApprovalResult,
    TenantRequest,
    TenantRequestListResponse,
    TenantRequestReject,
    TenantRequestStatus,
)

router = APIRouter(prefix="/admin/tenant-requests", tags=["Admin: Tenant Requests"])


@router.get("", response_model=TenantRequestListResponse, summary="List tenant requests")
async def list_tenant_requests(
    services: Services,
    admin: SystemAdmin,
    status: Optional[TenantRequestStatus] = Query(default=None),
) -> TenantRequestListResponse:
    requests = await services.lifecycle.list_requests(status)
    return TenantRequestListResponse(total=len(requests), items=requests)


@router.post("/{request_id}/approve", response_model=ApprovalResult, summary="Approve a pending request")
async def approve_tenant_request(
    request_id: str,
    services: Services,
    admin: SystemAdmin,
) -> ApprovalResult:
    request, tenant = await services.lifecycle.approve_request(request_id)
    return ApprovalResult(request=request, tenant=TenantRead.from_tenant(tenant))


@router.post("/{request_id}/reject", response_model=TenantRequest, summary="Reject a pending request")
async def reject_tenant_request(
    request_id: str,
    services: Services,
    admin: SystemAdmin,
    body: Optional[TenantRequestReject] = Body(default=None),
) -> TenantRequest:
    return await services.lifecycle.reject_request(request_id, body.reason if body else None)
