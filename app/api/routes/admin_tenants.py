"""
api/routes/admin_tenants.py
---------------------------
System-administrator tenant management.

Every tenant leaving these endpoints is masked: secrets are reduced to
'****' plus their last four characters.
"""

from fastapi import APIRouter, status

from app.core.exceptions import NotFoundError
from app.dependencies import Services, SystemAdmin
from app.schemas.tenant import (
    PartnerAdd,
    TenantCreate,
    TenantListResponse,
    TenantRead,
    TenantStatus,
    TenantUpdate,
)

router = APIRouter(prefix="/admin/tenants", tags=["Admin: Tenants"])


def _get_or_404(services, tenant_id: str):
    tenant = services.registry.by_id(tenant_id)
    if tenant is None:
        raise NotFoundError(f"Tenant '{tenant_id}' not found")
    return tenant


@router.get("", response_model=TenantListResponse, summary="List all tenants")
async def list_tenants(services: Services, admin: SystemAdmin) -> TenantListResponse:
    tenants = services.registry.all()
    return TenantListResponse(
        total=len(tenants),
        items=[TenantRead.from_tenant(t) for t in tenants],
    )


@router.get(
    "/by-domain/{institution_domain}",
    response_model=TenantRead,
    summary="Find the tenant owning an institution domain",
)
async def get_tenant_by_domain(
    institution_domain: str,
    services: Services,
    admin: SystemAdmin,
) -> TenantRead:
    tenant = services.registry.by_institution_domain(institution_domain)
    if tenant is None:
        raise NotFoundError(f"No tenant for institution domain '{institution_domain}'")
    return TenantRead.from_tenant(tenant)


@router.get("/{tenant_id}", response_model=TenantRead, summary="Get a tenant")
async def get_tenant(tenant_id: str, services: Services, admin: SystemAdmin) -> TenantRead:
    return TenantRead.from_tenant(_get_or_404(services, tenant_id))


@router.post(
    "",
    response_model=TenantRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a tenant",
)
async def create_tenant(body: TenantCreate, services: Services, admin: SystemAdmin) -> TenantRead:
    """Administrative creation; marketplace credentials are mandatory here."""
    tenant = await services.registry.create(body)
    return TenantRead.from_tenant(tenant)


@router.put("/{tenant_id}", response_model=TenantRead, summary="Update a tenant")
async def update_tenant(
    tenant_id: str,
    body: TenantUpdate,
    services: Services,
    admin: SystemAdmin,
) -> TenantRead:
    tenant = await services.registry.update(tenant_id, body)
    return TenantRead.from_tenant(tenant)


@router.delete(
    "/{tenant_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a tenant (never the default tenant)",
)
async def delete_tenant(tenant_id: str, services: Services, admin: SystemAdmin) -> None:
    await services.registry.delete(tenant_id)


@router.post("/{tenant_id}/activate", response_model=TenantRead, summary="Activate a tenant")
async def activate_tenant(tenant_id: str, services: Services, admin: SystemAdmin) -> TenantRead:
    tenant = await services.registry.set_status(tenant_id, TenantStatus.active)
    return TenantRead.from_tenant(tenant)


@router.post("/{tenant_id}/deactivate", response_model=TenantRead, summary="Deactivate a tenant")
async def deactivate_tenant(tenant_id: str, services: Services, admin: SystemAdmin) -> TenantRead:
    tenant = await services.registry.set_status(tenant_id, TenantStatus.inactive)
    return TenantRead.from_tenant(tenant)


@router.post(
    "/{tenant_id}/partners",
    response_model=TenantRead,
    summary="Link a corporate partner to a tenant",
)
async def add_partner(
    tenant_id: str,
    body: PartnerAdd,
    services: Services,
    admin: SystemAdmin,
) -> TenantRead:
    tenant = await services.registry.add_partner(tenant_id, body.partner_id)
    return TenantRead.from_tenant(tenant)


@router.delete(
    "/{tenant_id}/partners/{partner_id}",
    response_model=TenantRead,
    summary="Unlink a corporate partner from a tenant",
)
async def remove_partner(
    tenant_id: str,
    partner_id: str,
    services: Services,
    admin: SystemAdmin,
) -> TenantRead:
    tenant = await services.registry.remove_partner(tenant_id, partner_id)
    return TenantRead.from_tenant(tenant)
