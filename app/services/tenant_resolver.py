"""
services/tenant_resolver.py
---------------------------
Request-time tenant gate.

Hostname → subdomain → tenant. Unknown subdomains are rejected, not routed to
the default tenant, and only `active` tenants are routable. Handlers behind
the gate may assume `request.state.tenant.status == "active"`.

In non-production environments with TENANT_DEV_OVERRIDE enabled, an explicit
tenant id from the `X-Tenant-Id` header or the `tenant` query parameter
replaces hostname resolution.
"""

from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from app.core.config import Settings
from app.core.exceptions import (
    ControlPlaneError,
    TenantNotFoundError,
    TenantUnavailableError,
    error_body,
)
from app.core.logging import bind_request_context, clear_request_context, get_logger
from app.schemas.tenant import Tenant, TenantStatus
from app.services.tenant_registry import TenantRegistry

logger = get_logger(__name__)

TENANT_ID_HEADER = "X-Tenant-Id"
TENANT_QUERY_PARAM = "tenant"

# Lifecycle, admin and public utility routes look tenants up themselves
EXEMPT_PREFIXES = (
    "/admin",
    "/education/tenant",
    "/tenants/resolve",
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/uploads",
)


def _hostname(host: Optional[str]) -> Optional[str]:
    if not host:
        return None
    host = host.strip().lower()
    # IPv6 literals never carry a subdomain
    if host.startswith("["):
        return None
    host = host.split(":", 1)[0].rstrip(".")
    return host or None


def extract_subdomain(host: Optional[str], base_domain: str) -> Optional[str]:
    """
    Return the routing label of `host`, or None for the default tenant.

        harvard.campusmarket.io:443   → "harvard"
        campusmarket.io / www.…       → None
        localhost, 10.0.0.1, [::1]    → None
        a.b.campusmarket.io           → "b"
    """
    hostname = _hostname(host)
    base = base_domain.lower().strip(".")
    if not hostname or not base:
        return None
    if hostname in (base, f"www.{base}"):
        return None
    suffix = f".{base}"
    if not hostname.endswith(suffix):
        return None
    label = hostname[: -len(suffix)].rsplit(".", 1)[-1]
    return label or None


class TenantResolver:

    def __init__(self, registry: TenantRegistry, settings: Settings) -> None:
        self._registry = registry
        self._settings = settings

    @property
    def override_allowed(self) -> bool:
        return self._settings.TENANT_DEV_OVERRIDE and not self._settings.is_production

    def resolve(self, host: Optional[str], override_id: Optional[str] = None) -> Tenant:
        """
        Resolve the acting tenant or raise.

        Raises:
            TenantNotFoundError: no tenant owns the subdomain.
            TenantUnavailableError: the tenant exists but is not active.
        """
        if override_id and self.override_allowed:
            tenant = self._registry.by_id(override_id) or self._registry.by_subdomain(override_id)
            lookup = override_id
        else:
            lookup = extract_subdomain(host, self._settings.TENANT_BASE_DOMAIN)
            tenant = self._registry.by_subdomain(lookup)

        if tenant is None:
            raise TenantNotFoundError("Marketplace not found")
        if tenant.status != TenantStatus.active:
            logger.info("Non-active tenant requested", tenant_id=tenant.id, status=tenant.status.value)
            raise TenantUnavailableError("Marketplace unavailable")
        return tenant

    def resolve_public(self, domain: Optional[str]) -> Optional[Tenant]:
        """
        Lookup for the public resolve endpoint: the active tenant behind a
        hostname (platform subdomain or institution domain), else None.
        """
        hostname = _hostname(domain)
        if not hostname:
            return None
        base = self._settings.TENANT_BASE_DOMAIN
        subdomain = extract_subdomain(hostname, base)
        if subdomain:
            tenant = self._registry.by_subdomain(subdomain)
        elif hostname in (base, f"www.{base}"):
            tenant = self._registry.default()
        else:
            tenant = self._registry.by_institution_domain(hostname)
        if tenant is None or tenant.status != TenantStatus.active:
            return None
        return tenant


class TenantResolverMiddleware(BaseHTTPMiddleware):
    """
    Applies the tenant gate to every non-exempt request and binds the tenant
    id into the structlog context.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            path = request.url.path
            bind_request_context(path=path, method=request.method)
            if request.method == "OPTIONS" or path.startswith(EXEMPT_PREFIXES):
                return await call_next(request)

            resolver: TenantResolver = request.app.state.services.resolver
            override = (
                request.headers.get(TENANT_ID_HEADER)
                or request.query_params.get(TENANT_QUERY_PARAM)
            )
            try:
                tenant = resolver.resolve(request.headers.get("host"), override)
            except ControlPlaneError as exc:
                logger.warning("Tenant gate rejected request", host=request.headers.get("host"), code=exc.code)
                return JSONResponse(status_code=exc.status_code, content=error_body(exc))

            request.state.tenant = tenant
            bind_request_context(tenant_id=tenant.id)
            return await call_next(request)
        finally:
            clear_request_context()
