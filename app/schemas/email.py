"""
schemas/email.py
----------------
Pydantic models for the notification gateway and its admin endpoints.
"""

from enum import Enum as PyEnum
from typing import Any, Dict, List, Optional

from pydantic import EmailStr, Field

from app.schemas.base import CamelModel


class EmailStatus(str, PyEnum):
    sent = "sent"
    failed = "failed"
    logged = "logged"
    disabled = "disabled"
    rate_limited = "rate_limited"


class EmailLogEntry(CamelModel):
    id: str
    to: str
    subject: str
    template_name: Optional[str] = None
    status: EmailStatus
    message_id: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str


class RateLimitStatus(CamelModel):
    sent: int
    limit: int
    remaining: int
    reset_ms: int


class SendResult(CamelModel):
    success: bool
    reason: Optional[str] = None
    mode: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None
    rate_limit_status: Optional[RateLimitStatus] = None


class RenderedEmail(CamelModel):
    subject: str
    html: str
    template_name: str


class ServiceStatus(CamelModel):
    enabled: bool
    smtp_configured: bool
    smtp_ready: bool
    smtp_host: Optional[str] = None
    from_email: str
    rate_limit: RateLimitStatus
    templates: List[str] = Field(default_factory=list)


class ConnectionCheck(CamelModel):
    connected: bool
    reason: Optional[str] = None


class EmailTestRequest(CamelModel):
    to: EmailStr
    template_name: str = "alumniInvitation"


class PreviewResponse(CamelModel):
    template_name: str
    subject: str
    html: str
    sample_data: Dict[str, Any]


class EmailLogResponse(CamelModel):
    total: int
    items: List[EmailLogEntry]
