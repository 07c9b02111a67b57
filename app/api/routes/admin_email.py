"""
api/routes/admin_email.py
-------------------------
System-administrator view of the notification gateway.

GET  /admin/email/status            → configuration and rate window
POST /admin/email/verify            → SMTP connectivity check
GET  /admin/email/preview/{name}    → render a template with sample data
POST /admin/email/test              → send a sample to an address
GET  /admin/email/log               → delivery log, newest first
"""

from typing import Optional, Union

from fastapi import APIRouter, Query
from fastapi.responses import HTMLResponse

from app.dependencies import Services, SystemAdmin
from app.schemas.email import (
    ConnectionCheck,
    EmailLogResponse,
    EmailStatus,
    EmailTestRequest,
    PreviewResponse,
    SendResult,
    ServiceStatus,
)
from app.services.email_templates import SAMPLE_DATA

router = APIRouter(prefix="/admin/email", tags=["Admin: Email"])


@router.get("/status", response_model=ServiceStatus, summary="Email service status")
async def email_status(services: Services, admin: SystemAdmin) -> ServiceStatus:
    result = services.gateway.status()
    result.templates = services.templates.names()
    return result


@router.post("/verify", response_model=ConnectionCheck, summary="Verify the SMTP connection")
async def verify_connection(services: Services, admin: SystemAdmin) -> ConnectionCheck:
    return await services.gateway.verify_connection()


@router.get(
    "/preview/{template_name}",
    response_model=None,
    summary="Preview a template with sample data",
)
async def preview_template(
    template_name: str,
    services: Services,
    admin: SystemAdmin,
    format: Optional[str] = Query(default=None, pattern="^(html|json)$"),
) -> Union[PreviewResponse, HTMLResponse]:
    sample = SAMPLE_DATA.get(template_name, {})
    rendered = services.templates.render(template_name, sample)
    if format == "html":
        return HTMLResponse(rendered.html)
    return PreviewResponse(
        template_name=rendered.template_name,
        subject=rendered.subject,
        html=rendered.html,
        sample_data=sample,
    )


@router.post("/test", response_model=SendResult, summary="Send a test email")
async def send_test_email(
    body: EmailTestRequest,
    services: Services,
    admin: SystemAdmin,
) -> SendResult:
    """Sends synchronously so the caller sees the real delivery outcome."""
    rendered = services.templates.render(body.template_name, SAMPLE_DATA.get(body.template_name, {}))
    return await services.gateway.send(
        to=str(body.to),
        subject=f"[TEST] {rendered.subject}",
        html=rendered.html,
        template_name=f"test_{rendered.template_name}",
        metadata={"test": True, "sentBy": admin.user_id},
    )


@router.get("/log", response_model=EmailLogResponse, summary="Email delivery log")
async def email_log(
    services: Services,
    admin: SystemAdmin,
    limit: int = Query(default=50, ge=1, le=200),
    status: Optional[EmailStatus] = Query(default=None),
    template_name: Optional[str] = Query(default=None, alias="templateName"),
) -> EmailLogResponse:
    entries = await services.gateway.log.entries(
        limit=limit,
        status=status.value if status else None,
        template_name=template_name,
    )
    return EmailLogResponse(total=len(entries), items=entries)
