"""
api/routes/education_tenant.py
------------------------------
Institution-administrator endpoints.

Every operation acts on the tenant whose institution domain matches the
caller's token; there is no way to name another tenant. These routes sit
outside the hostname gate so an onboarding tenant can still be configured.
"""

from typing import Optional

from fastapi import APIRouter, status

from app.dependencies import EducationalAdmin, Services
from app.schemas.tenant import (
    BrandingUpdate,
    LogoUpload,
    LogoUploadResponse,
    SettingsUpdate,
    TenantRead,
)
from app.schemas.tenant_request import TenantRequest, TenantRequestCreate

router = APIRouter(prefix="/education", tags=["Education: Tenant"])


@router.get("/tenant", response_model=Optional[TenantRead], summary="Get my institution's tenant")
async def get_my_tenant(services: Services, admin: EducationalAdmin) -> Optional[TenantRead]:
    """Returns null when the institution has no tenant yet."""
    tenant = services.lifecycle.get_my_tenant(admin)
    return TenantRead.from_tenant(tenant) if tenant else None


@router.put("/tenant/branding", response_model=TenantRead, summary="Update branding")
async def update_branding(
    body: BrandingUpdate,
    services: Services,
    admin: EducationalAdmin,
) -> TenantRead:
    tenant = await services.lifecycle.update_branding(admin, body)
    return TenantRead.from_tenant(tenant)


@router.put("/tenant/settings", response_model=TenantRead, summary="Update feature settings")
async def update_settings(
    body: SettingsUpdate,
    services: Services,
    admin: EducationalAdmin,
) -> TenantRead:
    tenant = await services.lifecycle.update_settings(admin, body)
    return TenantRead.from_tenant(tenant)


@router.post("/tenant/activate", response_model=TenantRead, summary="Activate an onboarding tenant")
async def activate_tenant(services: Services, admin: EducationalAdmin) -> TenantRead:
    tenant = await services.lifecycle.activate(admin)
    return TenantRead.from_tenant(tenant)


@router.post("/tenant/logo", response_model=LogoUploadResponse, summary="Upload a logo")
async def upload_logo(
    body: LogoUpload,
    services: Services,
    admin: EducationalAdmin,
) -> LogoUploadResponse:
    """Body carries the image as base64 (PNG, JPEG or SVG)."""
    logo_url, tenant = await services.lifecycle.upload_logo(admin, body.logo_data, body.mime_type)
    return LogoUploadResponse(logo_url=logo_url, tenant=TenantRead.from_tenant(tenant))


@router.post(
    "/tenant-request",
    response_model=TenantRequest,
    status_code=status.HTTP_201_CREATED,
    summary="Apply to onboard my institution",
)
async def submit_tenant_request(
    body: TenantRequestCreate,
    services: Services,
    admin: EducationalAdmin,
) -> TenantRequest:
    return await services.lifecycle.submit_request(admin, body)
