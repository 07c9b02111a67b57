"""
dependencies.py
---------------
FastAPI dependency injection functions for authentication and authorisation.

Flow:
  1. HTTPBearer extracts the Bearer token from the Authorization header.
  2. decode_access_token validates and parses the JWT. The marketplace
     platform owns the user record, so the claims are the whole principal.
  3. require_system_admin / require_educational_admin layer a user-type check
     on top; the educational-admin check also demands an institution domain,
     which scopes every tenant and alumni operation the caller performs.
"""

from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from app.core.exceptions import AuthenticationError, AuthorizationError, TenantNotFoundError
from app.core.logging import get_logger
from app.core.security import decode_access_token
from app.schemas.auth import Principal
from app.schemas.tenant import Tenant
from app.services.container import ServiceContainer

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


async def get_optional_principal(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
    services: Annotated[ServiceContainer, Depends(get_services)],
) -> Optional[Principal]:
    if credentials is None:
        return None
    try:
        payload = decode_access_token(services.settings, credentials.credentials)
    except JWTError as exc:
        logger.warning("JWT decode failed", error=str(exc))
        raise AuthenticationError("Could not validate credentials")

    user_id = payload.get("sub")
    user_type = payload.get("user_type")
    if not user_id or not user_type:
        raise AuthenticationError("Could not validate credentials")

    domain = payload.get("institution_domain")
    return Principal(
        user_id=user_id,
        user_type=user_type,
        institution_domain=domain.strip().lower() if domain else None,
        name=payload.get("name"),
    )


async def get_current_principal(
    principal: Annotated[Optional[Principal], Depends(get_optional_principal)],
) -> Principal:
    """Raises 401 if no valid bearer token was presented."""
    if principal is None:
        raise AuthenticationError("Not authenticated")
    return principal


async def require_system_admin(
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> Principal:
    if not principal.is_system_admin:
        raise AuthorizationError("Access denied. System administrator privileges required.")
    return principal


async def require_educational_admin(
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> Principal:
    if not principal.is_educational_admin:
        raise AuthorizationError("Access denied. Educational administrator privileges required.")
    if not principal.institution_domain:
        raise AuthorizationError("No institution domain associated with your account.")
    return principal


def get_request_tenant(request: Request) -> Tenant:
    """The active tenant attached by TenantResolverMiddleware."""
    tenant = getattr(request.state, "tenant", None)
    if tenant is None:
        raise TenantNotFoundError("Marketplace not found")
    return tenant


Services = Annotated[ServiceContainer, Depends(get_services)]
SystemAdmin = Annotated[Principal, Depends(require_system_admin)]
EducationalAdmin = Annotated[Principal, Depends(require_educational_admin)]
