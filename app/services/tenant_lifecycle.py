"""
services/tenant_lifecycle.py
----------------------------
How an institution becomes a tenant, and what its own administrators may
change afterwards.

Request state machine:
    pending --approve--> approved   (spawns an `onboarding` tenant)
    pending --reject---> rejected
Both transitions are terminal; repeating one is a StateError.

Tenant-scoped operations act on the tenant whose institution domain matches
the caller's. Branding, settings and logo changes are refused while the
tenant is suspended, and activation is only legal from `onboarding`.

Tenant records are written exclusively through TenantRegistry. This service
owns the `tenant-requests` collection.
"""

import asyncio
import base64
import binascii
import re
import secrets
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import AnyUrl, TypeAdapter, ValidationError

from app.core.config import Settings
from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    StateError,
    TenantSuspendedError,
    ValidationFailedError,
)
from app.core.logging import get_logger
from app.schemas.auth import Principal
from app.schemas.base import utcnow_iso
from app.schemas.tenant import (
    BrandingUpdate,
    SettingsUpdate,
    Tenant,
    TenantBranding,
    TenantCreate,
    TenantFeatures,
    TenantStatus,
    TenantUpdate,
)
from app.schemas.tenant_request import (
    TenantRequest,
    TenantRequestCreate,
    TenantRequestStatus,
)
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.record_store import TENANT_REQUESTS, RecordStore
from app.services.tenant_registry import TenantRegistry

logger = get_logger(__name__)

HEX_COLOR = re.compile(r"^#([0-9A-Fa-f]{3}|[0-9A-Fa-f]{6})$")
SUBDOMAIN_MAX_LENGTH = 30

SECTION_KEYS = frozenset({
    "hero",
    "statistics",
    "features",
    "howItWorks",
    "videoTestimonial",
    "testimonials",
    "aiCoaching",
    "cta",
})

LOGO_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/svg+xml": "svg",
}
PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
JPEG_SIGNATURE = b"\xff\xd8\xff"
UNSAFE_SVG_PATTERNS = (
    re.compile(r"<script[\s>]", re.I),
    re.compile(r"javascript\s*:", re.I),
    re.compile(r"\son\w+\s*=", re.I),
    re.compile(r"<foreignobject[\s>]", re.I),
)

_url_adapter = TypeAdapter(AnyUrl)


# ── Pure helpers ──────────────────────────────────────────────────────────────

def generate_slug(name: str) -> str:
    """'Howard University (DC)' → 'howard-university-dc', capped at 30 chars."""
    slug = name.lower().strip()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug[:SUBDOMAIN_MAX_LENGTH].rstrip("-")


def is_valid_url(value: str) -> bool:
    try:
        _url_adapter.validate_python(value)
    except ValidationError:
        return False
    return True


def validate_logo(raw: bytes, mime_type: str, max_bytes: int) -> str:
    """Check type, size and content of an uploaded logo; return its extension."""
    ext = LOGO_EXTENSIONS.get(mime_type)
    if ext is None:
        raise ValidationFailedError(
            f'Invalid file type "{mime_type}". Allowed: {", ".join(LOGO_EXTENSIONS)}'
        )
    if not raw:
        raise ValidationFailedError("Logo file is empty")
    if len(raw) > max_bytes:
        raise ValidationFailedError(f"File size exceeds the {max_bytes // (1024 * 1024)}MB limit")

    if ext == "png" and not raw.startswith(PNG_SIGNATURE):
        raise ValidationFailedError("File content does not match PNG format")
    if ext == "jpg" and not raw.startswith(JPEG_SIGNATURE):
        raise ValidationFailedError("File content does not match JPEG format")
    if ext == "svg":
        content = raw.decode("utf-8", errors="replace")
        if any(p.search(content) for p in UNSAFE_SVG_PATTERNS):
            raise ValidationFailedError("SVG file contains potentially unsafe content")
    return ext


def decode_logo(data: str) -> bytes:
    # Accept data URLs as produced by browser file readers
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationFailedError("logoData must be base64 encoded") from exc


def _ensure_not_suspended(tenant: Tenant) -> None:
    if tenant.status == TenantStatus.suspended:
        raise TenantSuspendedError("Tenant is suspended. Contact support for assistance.")
    if tenant.status == TenantStatus.pending_request:
        raise StateError("Tenant is not available for changes yet")


# ── Service ───────────────────────────────────────────────────────────────────

class TenantLifecycleService:

    def __init__(
        self,
        settings: Settings,
        store: RecordStore,
        registry: TenantRegistry,
        dispatcher: NotificationDispatcher,
    ) -> None:
        self._settings = settings
        self._store = store
        self._registry = registry
        self._dispatcher = dispatcher

    # ── Tenant requests ───────────────────────────────────────────────────────

    async def _load_requests(self) -> List[TenantRequest]:
        records = await self._store.load(TENANT_REQUESTS, [])
        return [TenantRequest.model_validate(r) for r in records]

    async def _save_requests(self, requests: List[TenantRequest]) -> None:
        if not await self._store.save(TENANT_REQUESTS, [r.to_record() for r in requests]):
            raise PersistenceError("Could not persist tenant requests; no changes were applied")

    async def submit_request(self, principal: Principal, body: TenantRequestCreate) -> TenantRequest:
        domain = (principal.institution_domain or "").strip().lower()
        if not domain:
            raise AuthorizationError("No institution domain associated with your account")

        if self._registry.by_institution_domain(domain) is not None:
            raise ConflictError("A tenant already exists for your institution")

        async with self._store.lock(TENANT_REQUESTS):
            requests = await self._load_requests()
            if any(
                r.institution_domain == domain and r.status == TenantRequestStatus.pending
                for r in requests
            ):
                raise ConflictError("A tenant request has already been submitted for your institution")

            request = TenantRequest(
                id=f"req_{secrets.token_hex(8)}",
                institution_domain=domain,
                institution_name=body.institution_name,
                admin_name=body.admin_name,
                admin_email=str(body.admin_email).lower(),
                reason=body.reason,
                requesting_user_id=principal.user_id,
                status=TenantRequestStatus.pending,
                submitted_at=utcnow_iso(),
            )
            await self._save_requests(requests + [request])

        logger.info("Tenant request submitted", request_id=request.id, institution_domain=domain)
        self._dispatcher.dispatch(
            "tenantRequestReceived",
            request.admin_email,
            {
                "adminName": request.admin_name,
                "adminEmail": request.admin_email,
                "institutionName": request.institution_name,
                "requestId": request.id,
            },
            metadata={"requestId": request.id},
        )
        return request

    async def list_requests(self, status: Optional[TenantRequestStatus] = None) -> List[TenantRequest]:
        requests = await self._load_requests()
        if status is not None:
            requests = [r for r in requests if r.status == status]
        return sorted(requests, key=lambda r: r.submitted_at, reverse=True)

    @staticmethod
    def _require_pending(requests: List[TenantRequest], request_id: str, action: str) -> TenantRequest:
        request = next((r for r in requests if r.id == request_id), None)
        if request is None:
            raise NotFoundError("Tenant request not found")
        if request.status != TenantRequestStatus.pending:
            raise StateError(
                f"Request has already been {request.status.value}. "
                f"Only pending requests can be {action}."
            )
        return request

    async def approve_request(self, request_id: str) -> tuple[TenantRequest, Tenant]:
        async with self._store.lock(TENANT_REQUESTS):
            requests = await self._load_requests()
            request = self._require_pending(requests, request_id, "approved")

            slug = generate_slug(request.institution_name)
            if not slug:
                raise ValidationFailedError("Could not generate a valid slug from the institution name")

            tenant = await self._registry.create(
                TenantCreate(
                    subdomain=slug,
                    name=request.institution_name,
                    status=TenantStatus.onboarding,
                    institution_domain=request.institution_domain,
                    contact_email=request.admin_email,
                ),
                require_credentials=False,
            )

            approved = request.model_copy(update={
                "status": TenantRequestStatus.approved,
                "reviewed_at": utcnow_iso(),
                "tenant_id": tenant.id,
            })
            try:
                await self._save_requests([approved if r.id == request_id else r for r in requests])
            except PersistenceError:
                # Keep the pair consistent: the request is still pending
                await self._registry.delete(tenant.id)
                raise

        logger.info("Tenant request approved", request_id=request_id, tenant_id=tenant.id)
        self._dispatcher.dispatch(
            "tenantApproved",
            approved.admin_email,
            {
                "adminName": approved.admin_name,
                "adminEmail": approved.admin_email,
                "institutionName": approved.institution_name,
                "tenantId": tenant.id,
            },
            metadata={"requestId": request_id, "tenantId": tenant.id},
        )
        return approved, tenant

    async def reject_request(self, request_id: str, reason: Optional[str] = None) -> TenantRequest:
        async with self._store.lock(TENANT_REQUESTS):
            requests = await self._load_requests()
            request = self._require_pending(requests, request_id, "rejected")
            rejected = request.model_copy(update={
                "status": TenantRequestStatus.rejected,
                "reviewed_at": utcnow_iso(),
                "rejection_reason": reason or None,
            })
            await self._save_requests([rejected if r.id == request_id else r for r in requests])

        logger.info("Tenant request rejected", request_id=request_id)
        self._dispatcher.dispatch(
            "tenantRejected",
            rejected.admin_email,
            {
                "adminName": rejected.admin_name,
                "adminEmail": rejected.admin_email,
                "institutionName": rejected.institution_name,
                "rejectionReason": rejected.rejection_reason,
            },
            metadata={"requestId": request_id},
        )
        return rejected

    # ── Tenant-scoped administration ──────────────────────────────────────────

    def get_my_tenant(self, principal: Principal) -> Optional[Tenant]:
        return self._registry.by_institution_domain(principal.institution_domain)

    def _my_tenant(self, principal: Principal) -> Tenant:
        tenant = self.get_my_tenant(principal)
        if tenant is None:
            raise NotFoundError("No tenant exists for your institution")
        return tenant

    async def update_branding(self, principal: Principal, body: BrandingUpdate) -> Tenant:
        tenant = self._my_tenant(principal)
        _ensure_not_suspended(tenant)

        patch: Dict[str, Any] = body.model_dump(exclude_unset=True)
        errors: List[str] = []

        for field, label in (("marketplace_color", "marketplaceColor"), ("color_primary_button", "colorPrimaryButton")):
            value = patch.get(field)
            if value and not HEX_COLOR.match(value):
                errors.append(f"{label} must be a valid hex color (e.g. #A51C30)")

        current = tenant.branding.model_dump()
        for field, label in (("logo_url", "logoUrl"), ("favicon_url", "faviconUrl"), ("brand_image_url", "brandImageUrl")):
            value = patch.get(field)
            # Previously stored values (e.g. uploaded logo paths) are kept as-is
            if value and value != current.get(field) and not is_valid_url(value):
                errors.append(f"{label} must be a valid URL")

        for i, slide in enumerate(patch.get("hero_carousel") or []):
            if not is_valid_url(slide["image_url"]):
                errors.append(f"heroCarousel[{i}].imageUrl must be a valid URL")
            if slide.get("link_url") and not is_valid_url(slide["link_url"]):
                errors.append(f"heroCarousel[{i}].linkUrl must be a valid URL")

        if errors:
            raise ValidationFailedError("Invalid branding values", errors=errors)

        cleaned = {k: (v if v != "" else None) for k, v in patch.items()}
        if cleaned.get("marketplace_name"):
            cleaned["marketplace_name"] = cleaned["marketplace_name"].strip()[:100] or None

        updated = await self._registry.update(
            tenant.id,
            TenantUpdate(branding=TenantBranding.model_validate(cleaned)),
            guard=_ensure_not_suspended,
        )
        logger.info("Tenant branding updated", tenant_id=tenant.id, fields=sorted(cleaned))
        return updated

    async def update_settings(self, principal: Principal, body: SettingsUpdate) -> Tenant:
        tenant = self._my_tenant(principal)
        _ensure_not_suspended(tenant)

        flags = body.model_dump(exclude_unset=True, exclude={"section_visibility"})
        features = {k: bool(v) for k, v in flags.items()}
        update: Dict[str, Any] = {"features": TenantFeatures.model_validate(features)}

        if body.section_visibility:
            sections = {k: bool(v) for k, v in body.section_visibility.items() if k in SECTION_KEYS}
            update["section_visibility"] = {**tenant.section_visibility, **sections}

        updated = await self._registry.update(
            tenant.id,
            TenantUpdate(**update),
            guard=_ensure_not_suspended,
        )
        logger.info("Tenant settings updated", tenant_id=tenant.id, features=sorted(features))
        return updated

    async def activate(self, principal: Principal) -> Tenant:
        tenant = self._my_tenant(principal)

        def only_from_onboarding(current: Tenant) -> None:
            if current.status != TenantStatus.onboarding:
                raise StateError(
                    f'Tenant cannot be activated. Current status is "{current.status.value}". '
                    'Only tenants with status "onboarding" can be activated.'
                )

        only_from_onboarding(tenant)
        updated = await self._registry.set_status(tenant.id, TenantStatus.active, guard=only_from_onboarding)
        logger.info("Tenant activated", tenant_id=tenant.id)
        return updated

    async def upload_logo(self, principal: Principal, data: str, mime_type: str) -> tuple[str, Tenant]:
        tenant = self._my_tenant(principal)
        _ensure_not_suspended(tenant)

        raw = decode_logo(data)
        ext = validate_logo(raw, mime_type, self._settings.LOGO_MAX_BYTES)

        directory = Path(self._settings.UPLOAD_DIR) / "tenants" / tenant.id
        filename = f"logo.{ext}"
        staged = directory / f".{filename}.{secrets.token_hex(4)}.upload"
        await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(staged.write_bytes, raw)

        # the served file is only replaced once the guarded update has landed
        logo_url = f"/uploads/tenants/{tenant.id}/{filename}"
        try:
            updated = await self._registry.update(
                tenant.id,
                TenantUpdate(branding=TenantBranding(logo_url=logo_url)),
                guard=_ensure_not_suspended,
            )
        except BaseException:
            await asyncio.to_thread(staged.unlink, missing_ok=True)
            raise
        await asyncio.to_thread(staged.replace, directory / filename)
        logger.info("Tenant logo uploaded", tenant_id=tenant.id, logo_url=logo_url, size=len(raw))
        return logo_url, updated
