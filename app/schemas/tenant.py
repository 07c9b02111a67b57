"""
schemas/tenant.py
-----------------
Pydantic models for Tenant.

Naming convention:
  Tenant          → stored record (holds secrets, never returned as-is)
  TenantCreate    → system-admin creation body
  TenantUpdate    → system-admin patch body (branding/features/sharetribe
                    are deep-merged, everything else replaced)
  TenantRead      → outbound representation with masked secrets
  TenantPublic    → branding/feature projection for unauthenticated callers
"""

from enum import Enum as PyEnum
from typing import Any, Dict, List, Optional

from pydantic import EmailStr, Field, field_validator

from app.core.security import mask_secret
from app.schemas.base import CamelModel


class TenantStatus(str, PyEnum):
    pending_request = "pending-request"
    onboarding = "onboarding"
    active = "active"
    suspended = "suspended"
    inactive = "inactive"


class HeroSlide(CamelModel):
    image_url: str
    title: Optional[str] = None
    subtitle: Optional[str] = None
    link_url: Optional[str] = None


class TenantBranding(CamelModel):
    marketplace_color: Optional[str] = None
    color_primary_button: Optional[str] = None
    marketplace_name: Optional[str] = None
    logo_url: Optional[str] = None
    favicon_url: Optional[str] = None
    brand_image_url: Optional[str] = None
    hero_carousel: Optional[List[HeroSlide]] = None


class TenantFeatures(CamelModel):
    ai_coaching: bool = False
    nda: bool = False
    assessments: bool = False
    plan: Optional[str] = None
    plan_expires_at: Optional[str] = None


class SharetribeCredentials(CamelModel):
    client_id: Optional[str] = None
    client_secret: Optional[str] = None


class Tenant(CamelModel):
    id: str
    subdomain: Optional[str] = None
    name: str
    display_name: str
    status: TenantStatus = TenantStatus.active
    institution_domain: Optional[str] = None
    contact_email: Optional[str] = None
    sharetribe_client_id: Optional[str] = None
    sharetribe_client_secret: Optional[str] = None
    integration_api_key: Optional[str] = None
    branding: TenantBranding = Field(default_factory=TenantBranding)
    features: TenantFeatures = Field(default_factory=TenantFeatures)
    section_visibility: Dict[str, bool] = Field(default_factory=dict)
    corporate_partner_ids: List[str] = Field(default_factory=list)
    created_at: str
    updated_at: str


def _normalise_domain(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip().lower()
    return v or None


class TenantCreate(CamelModel):
    subdomain: str = Field(..., examples=["harvard"])
    name: str = Field(..., min_length=1, max_length=200, examples=["Harvard University"])
    display_name: Optional[str] = Field(default=None, max_length=200)
    status: TenantStatus = TenantStatus.active
    institution_domain: Optional[str] = Field(default=None, examples=["harvard.edu"])
    contact_email: Optional[EmailStr] = None
    sharetribe: Optional[SharetribeCredentials] = None
    integration_api_key: Optional[str] = None
    branding: Optional[TenantBranding] = None
    features: Optional[TenantFeatures] = None
    corporate_partner_ids: List[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()

    @field_validator("institution_domain")
    @classmethod
    def normalise_domain(cls, v: Optional[str]) -> Optional[str]:
        return _normalise_domain(v)


class TenantUpdate(CamelModel):
    subdomain: Optional[str] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    display_name: Optional[str] = Field(default=None, max_length=200)
    status: Optional[TenantStatus] = None
    institution_domain: Optional[str] = None
    contact_email: Optional[EmailStr] = None
    sharetribe: Optional[SharetribeCredentials] = None
    integration_api_key: Optional[str] = None
    branding: Optional[TenantBranding] = None
    features: Optional[TenantFeatures] = None
    section_visibility: Optional[Dict[str, bool]] = None
    corporate_partner_ids: Optional[List[str]] = None

    @field_validator("institution_domain")
    @classmethod
    def normalise_domain(cls, v: Optional[str]) -> Optional[str]:
        return _normalise_domain(v)


class TenantRead(Tenant):

    @classmethod
    def from_tenant(cls, tenant: Tenant) -> "TenantRead":
        data = tenant.model_dump()
        data["sharetribe_client_secret"] = mask_secret(tenant.sharetribe_client_secret)
        data["integration_api_key"] = mask_secret(tenant.integration_api_key)
        return cls.model_validate(data)


class TenantPublic(CamelModel):
    id: str
    subdomain: Optional[str] = None
    name: str
    display_name: str
    branding: TenantBranding
    features: TenantFeatures

    @classmethod
    def from_tenant(cls, tenant: Tenant) -> "TenantPublic":
        return cls(
            id=tenant.id,
            subdomain=tenant.subdomain,
            name=tenant.name,
            display_name=tenant.display_name,
            branding=tenant.branding,
            features=tenant.features,
        )


class TenantListResponse(CamelModel):
    total: int
    items: List[TenantRead]


# ── Institution-admin bodies ─────────────────────────────────────────────────

class BrandingUpdate(CamelModel):
    """Raw values; the lifecycle service validates and itemizes errors."""
    marketplace_color: Optional[str] = None
    color_primary_button: Optional[str] = None
    marketplace_name: Optional[str] = Field(default=None, max_length=100)
    logo_url: Optional[str] = None
    favicon_url: Optional[str] = None
    brand_image_url: Optional[str] = None
    hero_carousel: Optional[List[HeroSlide]] = None


class SettingsUpdate(CamelModel):
    """Flags accept any JSON value and are reduced to its truthiness."""

    ai_coaching: Optional[Any] = None
    nda: Optional[Any] = None
    assessments: Optional[Any] = None
    section_visibility: Optional[Dict[str, Any]] = None


class LogoUpload(CamelModel):
    logo_data: str = Field(..., description="Base64 encoded image bytes")
    mime_type: str = "image/png"
    file_name: Optional[str] = None


class LogoUploadResponse(CamelModel):
    logo_url: str
    tenant: TenantRead


class PartnerAdd(CamelModel):
    partner_id: str = Field(..., min_length=1, max_length=100)
