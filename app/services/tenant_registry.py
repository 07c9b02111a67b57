"""
services/tenant_registry.py
---------------------------
In-memory cache of every tenant, hydrated from the record store at startup.

The registry is the only writer of the `tenants` collection. Every mutation:
  1. takes the collection lock,
  2. validates against the current cache and builds a new list,
  3. persists the whole list,
  4. swaps the cache only after the write succeeded.
A failed write leaves both the cache and the stored collection untouched and
raises PersistenceError.
"""

import re
from typing import Callable, List, Optional, Tuple

from pydantic import BaseModel, ValidationError

from app.core.config import Settings
from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    StateError,
    ValidationFailedError,
)
from app.core.logging import get_logger
from app.schemas.base import utcnow_iso
from app.schemas.tenant import (
    Tenant,
    TenantBranding,
    TenantCreate,
    TenantFeatures,
    TenantStatus,
    TenantUpdate,
)
from app.services.record_store import TENANTS, RecordStore

logger = get_logger(__name__)

DEFAULT_TENANT_ID = "default"
SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]{1,28}[a-z0-9]$")
RESERVED_SUBDOMAINS = frozenset({"default", "www", "api"})
NON_NULLABLE_FIELDS = ("name", "display_name", "status", "section_visibility", "corporate_partner_ids")


def validate_subdomain(subdomain: str) -> None:
    if not SUBDOMAIN_PATTERN.match(subdomain):
        raise ValidationFailedError(
            "Subdomain must be 3-30 characters of lowercase letters, digits and "
            "hyphens, and may not start or end with a hyphen"
        )
    if subdomain in RESERVED_SUBDOMAINS:
        raise ValidationFailedError(f"Subdomain '{subdomain}' is reserved")


def _merge(current: BaseModel, patch: Optional[BaseModel]) -> BaseModel:
    """Deep-merge the fields explicitly set on `patch` into `current`."""
    if patch is None:
        return current
    merged = {**current.model_dump(), **patch.model_dump(exclude_unset=True)}
    return type(current).model_validate(merged)


class TenantRegistry:

    def __init__(self, store: RecordStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings
        self._tenants: List[Tenant] = []

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def init(self) -> None:
        """Hydrate the cache, seeding the default tenant when it is missing."""
        async with self._store.lock(TENANTS):
            records = await self._store.load(TENANTS, [])
            try:
                tenants = [Tenant.model_validate(r) for r in records]
            except ValidationError as exc:
                logger.error("Stored tenant records are invalid", error=str(exc))
                raise PersistenceError("Stored tenant records are invalid") from exc

            if not any(t.id == DEFAULT_TENANT_ID for t in tenants):
                tenants.insert(0, self._build_default())
                await self._save(tenants)
                logger.info("Default tenant seeded")

            self._tenants = tenants
        logger.info("Tenant registry hydrated", tenants=len(self._tenants))

    def reset(self) -> None:
        self._tenants = []

    def _build_default(self) -> Tenant:
        s = self._settings
        name = s.DEFAULT_TENANT_NAME or s.PLATFORM_NAME
        now = utcnow_iso()
        return Tenant(
            id=DEFAULT_TENANT_ID,
            subdomain=None,
            name=name,
            display_name=name,
            status=TenantStatus.active,
            sharetribe_client_id=s.SHARETRIBE_CLIENT_ID,
            sharetribe_client_secret=s.SHARETRIBE_CLIENT_SECRET,
            integration_api_key=s.INTEGRATION_API_KEY,
            branding=TenantBranding(marketplace_name=name),
            created_at=now,
            updated_at=now,
        )

    # ── Lookups ───────────────────────────────────────────────────────────────

    def all(self) -> List[Tenant]:
        return list(self._tenants)

    def default(self) -> Optional[Tenant]:
        return self.by_id(DEFAULT_TENANT_ID)

    def by_id(self, tenant_id: str) -> Optional[Tenant]:
        return next((t for t in self._tenants if t.id == tenant_id), None)

    def by_subdomain(self, subdomain: Optional[str]) -> Optional[Tenant]:
        if not subdomain:
            return self.default()
        subdomain = subdomain.lower()
        return next((t for t in self._tenants if t.subdomain == subdomain), None)

    def by_institution_domain(self, domain: Optional[str]) -> Optional[Tenant]:
        if not domain:
            return None
        domain = domain.strip().lower()
        return next((t for t in self._tenants if t.institution_domain == domain), None)

    # ── Mutations ─────────────────────────────────────────────────────────────

    async def create(
        self,
        data: TenantCreate,
        require_credentials: bool = True,
    ) -> Tenant:
        """
        Validate and add a tenant.

        Administrative creation must carry marketplace credentials; tenants
        spawned from an approved request receive them later during onboarding.
        """
        subdomain = data.subdomain.strip().lower()
        validate_subdomain(subdomain)

        sharetribe = data.sharetribe
        if require_credentials and not (
            sharetribe and sharetribe.client_id and sharetribe.client_secret
        ):
            raise ValidationFailedError(
                "Marketplace credentials are required",
                errors=["sharetribe.clientId and sharetribe.clientSecret are required"],
            )

        def build(tenants: List[Tenant]) -> Tuple[List[Tenant], Tenant]:
            self._check_unique(tenants, subdomain=subdomain, tenant_id=subdomain)
            self._check_unique(tenants, institution_domain=data.institution_domain)

            display_name = data.display_name or f"{self._settings.PLATFORM_NAME} at {data.name}"
            branding = data.branding or TenantBranding()
            if not branding.marketplace_name:
                branding = branding.model_copy(update={"marketplace_name": display_name})

            now = utcnow_iso()
            tenant = Tenant(
                id=subdomain,
                subdomain=subdomain,
                name=data.name,
                display_name=display_name,
                status=data.status,
                institution_domain=data.institution_domain,
                contact_email=data.contact_email,
                sharetribe_client_id=sharetribe.client_id if sharetribe else None,
                sharetribe_client_secret=sharetribe.client_secret if sharetribe else None,
                integration_api_key=data.integration_api_key,
                branding=branding,
                features=data.features or TenantFeatures(),
                corporate_partner_ids=list(data.corporate_partner_ids),
                created_at=now,
                updated_at=now,
            )
            return tenants + [tenant], tenant

        tenant = await self._write(build)
        logger.info("Tenant created", tenant_id=tenant.id, status=tenant.status.value)
        return tenant

    async def update(
        self,
        tenant_id: str,
        patch: TenantUpdate,
        guard: Optional[Callable[[Tenant], None]] = None,
    ) -> Tenant:
        """
        Shallow-merge scalar fields, deep-merge branding/features/sharetribe.

        `guard` runs against the current record under the collection lock and
        may raise to abort the update.
        """
        changes = patch.model_dump(
            exclude_unset=True,
            exclude={"branding", "features", "sharetribe"},
        )
        for key in NON_NULLABLE_FIELDS:
            if key in changes and changes[key] is None:
                del changes[key]

        def build(tenants: List[Tenant]) -> Tuple[List[Tenant], Tenant]:
            current = self._require(tenants, tenant_id)
            if guard is not None:
                guard(current)

            if "subdomain" in changes:
                new_subdomain = changes["subdomain"]
                if current.id == DEFAULT_TENANT_ID:
                    if new_subdomain != current.subdomain:
                        raise StateError("The default tenant's subdomain cannot be changed")
                else:
                    if not new_subdomain:
                        raise ValidationFailedError("Subdomain is required")
                    new_subdomain = new_subdomain.strip().lower()
                    validate_subdomain(new_subdomain)
                    self._check_unique(tenants, subdomain=new_subdomain, exclude_id=current.id)
                    changes["subdomain"] = new_subdomain

            if current.id == DEFAULT_TENANT_ID and changes.get("status") not in (None, TenantStatus.active):
                raise StateError("The default tenant must stay active")

            if changes.get("institution_domain"):
                self._check_unique(
                    tenants,
                    institution_domain=changes["institution_domain"],
                    exclude_id=current.id,
                )

            if patch.sharetribe is not None:
                creds = patch.sharetribe.model_dump(exclude_unset=True)
                if "client_id" in creds:
                    changes["sharetribe_client_id"] = creds["client_id"]
                if "client_secret" in creds:
                    changes["sharetribe_client_secret"] = creds["client_secret"]

            updated = current.model_copy(update={
                **changes,
                "branding": _merge(current.branding, patch.branding),
                "features": _merge(current.features, patch.features),
                "updated_at": utcnow_iso(),
            })
            updated = Tenant.model_validate(updated.model_dump())
            return [updated if t.id == current.id else t for t in tenants], updated

        tenant = await self._write(build)
        logger.info("Tenant updated", tenant_id=tenant.id, fields=sorted(patch.model_fields_set))
        return tenant

    async def set_status(
        self,
        tenant_id: str,
        status: TenantStatus,
        guard: Optional[Callable[[Tenant], None]] = None,
    ) -> Tenant:
        return await self.update(tenant_id, TenantUpdate(status=status), guard=guard)

    async def delete(self, tenant_id: str) -> None:
        if tenant_id == DEFAULT_TENANT_ID:
            raise StateError("The default tenant cannot be deleted")

        def build(tenants: List[Tenant]) -> Tuple[List[Tenant], None]:
            self._require(tenants, tenant_id)
            return [t for t in tenants if t.id != tenant_id], None

        await self._write(build)
        logger.info("Tenant deleted", tenant_id=tenant_id)

    async def add_partner(self, tenant_id: str, partner_id: str) -> Tenant:
        def build(tenants: List[Tenant]) -> Tuple[List[Tenant], Tenant]:
            current = self._require(tenants, tenant_id)
            if partner_id in current.corporate_partner_ids:
                raise ConflictError(f"Partner '{partner_id}' is already linked to this tenant")
            updated = current.model_copy(update={
                "corporate_partner_ids": current.corporate_partner_ids + [partner_id],
                "updated_at": utcnow_iso(),
            })
            return [updated if t.id == tenant_id else t for t in tenants], updated

        tenant = await self._write(build)
        logger.info("Corporate partner added", tenant_id=tenant_id, partner_id=partner_id)
        return tenant

    async def remove_partner(self, tenant_id: str, partner_id: str) -> Tenant:
        def build(tenants: List[Tenant]) -> Tuple[List[Tenant], Tenant]:
            current = self._require(tenants, tenant_id)
            if partner_id not in current.corporate_partner_ids:
                raise NotFoundError(f"Partner '{partner_id}' is not linked to this tenant")
            updated = current.model_copy(update={
                "corporate_partner_ids": [p for p in current.corporate_partner_ids if p != partner_id],
                "updated_at": utcnow_iso(),
            })
            return [updated if t.id == tenant_id else t for t in tenants], updated

        tenant = await self._write(build)
        logger.info("Corporate partner removed", tenant_id=tenant_id, partner_id=partner_id)
        return tenant

    # ── Internals ─────────────────────────────────────────────────────────────

    async def _write(self, build: Callable[[List[Tenant]], Tuple[List[Tenant], object]]):
        async with self._store.lock(TENANTS):
            tenants, result = build(list(self._tenants))
            await self._save(tenants)
            self._tenants = tenants
        return result

    async def _save(self, tenants: List[Tenant]) -> None:
        if not await self._store.save(TENANTS, [t.to_record() for t in tenants]):
            raise PersistenceError("Could not persist tenant records; no changes were applied")

    @staticmethod
    def _require(tenants: List[Tenant], tenant_id: str) -> Tenant:
        tenant = next((t for t in tenants if t.id == tenant_id), None)
        if tenant is None:
            raise NotFoundError(f"Tenant '{tenant_id}' not found")
        return tenant

    @staticmethod
    def _check_unique(
        tenants: List[Tenant],
        subdomain: Optional[str] = None,
        institution_domain: Optional[str] = None,
        tenant_id: Optional[str] = None,
        exclude_id: Optional[str] = None,
    ) -> None:
        for t in tenants:
            if t.id == exclude_id:
                continue
            if tenant_id and t.id == tenant_id:
                raise ConflictError(f"Tenant id '{tenant_id}' already exists")
            if subdomain and t.subdomain == subdomain:
                raise ConflictError(f"Subdomain '{subdomain}' is already taken")
            if institution_domain and t.institution_domain == institution_domain:
                raise ConflictError(
                    f"A tenant for institution domain '{institution_domain}' already exists"
                )
