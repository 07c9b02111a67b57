"""
core/config.py
--------------
Centralised settings management using pydantic-settings.
All configuration is loaded from environment variables / .env file.
This is the single source of truth for application configuration.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── App ──────────────────────────────────────────────────────────────
    APP_NAME: str = "Tenant Control Plane"
    APP_ENV: str = "development"
    DEBUG: bool = False

    # ── Security ─────────────────────────────────────────────────────────
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # ── Record store ─────────────────────────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/control_plane.db"

    # ── CORS ─────────────────────────────────────────────────────────────
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    # ── Tenancy ──────────────────────────────────────────────────────────
    PLATFORM_NAME: str = "Campus Marketplace"
    TENANT_BASE_DOMAIN: str = "campusmarket.io"
    # Honoured only outside production
    TENANT_DEV_OVERRIDE: bool = False
    MARKETPLACE_ROOT_URL: str = "https://campusmarket.io"

    # ── Default tenant ───────────────────────────────────────────────────
    DEFAULT_TENANT_NAME: Optional[str] = None
    SHARETRIBE_CLIENT_ID: Optional[str] = None
    SHARETRIBE_CLIENT_SECRET: Optional[str] = None
    INTEGRATION_API_KEY: Optional[str] = None

    # ── Uploads ──────────────────────────────────────────────────────────
    UPLOAD_DIR: str = "uploads"
    LOGO_MAX_BYTES: int = 2 * 1024 * 1024

    # ── Email ────────────────────────────────────────────────────────────
    EMAIL_ENABLED: bool = True
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_SECURE: bool = False  # implicit TLS (port 465)
    SMTP_TIMEOUT_SECONDS: float = 10.0
    EMAIL_FROM: Optional[str] = None
    EMAIL_FROM_NAME: Optional[str] = None
    EMAIL_RATE_LIMIT: int = 50
    EMAIL_MAX_RETRIES: int = 2
    EMAIL_RETRY_BASE_DELAY_MS: int = 1000
    EMAIL_RETRY_MAX_DELAY_MS: int = 5000
    EMAIL_LOG_MAX_ENTRIES: int = 1000

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def parse_origins(cls, v):
        if isinstance(v, str):
            import json
            return json.loads(v)
        return v

    @field_validator("TENANT_BASE_DOMAIN")
    @classmethod
    def normalise_base_domain(cls, v: str) -> str:
        return v.strip().lower().strip(".")

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.lower() == "production"

    @property
    def smtp_configured(self) -> bool:
        return bool(self.SMTP_HOST and self.SMTP_USER and self.SMTP_PASSWORD)

    @property
    def sender_address(self) -> str:
        return self.EMAIL_FROM or self.SMTP_USER or f"noreply@{self.TENANT_BASE_DOMAIN}"

    @property
    def sender_name(self) -> str:
        return self.EMAIL_FROM_NAME or self.PLATFORM_NAME


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings factory.
    Use this everywhere to avoid re-reading .env on every call.
    """
    return Settings()
