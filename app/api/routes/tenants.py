"""
api/routes/tenants.py
---------------------
Public tenant lookups.

GET /tenants/resolve?domain=  → public branding/features of an active tenant, or null
GET /tenants/current          → the tenant resolved for this request's hostname
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from app.dependencies import Services, get_request_tenant
from app.schemas.tenant import Tenant, TenantPublic

router = APIRouter(prefix="/tenants", tags=["Tenants"])


@router.get("/resolve", response_model=Optional[TenantPublic], summary="Resolve a hostname to a tenant")
async def resolve_tenant(
    services: Services,
    domain: str = Query(..., min_length=1, examples=["harvard.campusmarket.io"]),
) -> Optional[TenantPublic]:
    tenant = services.resolver.resolve_public(domain)
    return TenantPublic.from_tenant(tenant) if tenant else None


@router.get("/current", response_model=TenantPublic, summary="The tenant serving this request")
async def current_tenant(
    tenant: Annotated[Tenant, Depends(get_request_tenant)],
) -> TenantPublic:
    return TenantPublic.from_tenant(tenant)
