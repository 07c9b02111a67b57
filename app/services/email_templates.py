"""
services/email_templates.py
---------------------------
Template registry: template name → (data) → subject + branded HTML.

Bodies live in app/templates/email/<name>.html and extend base.html, which
applies the tenant's branding (primary colour, marketplace name, logo).
Rendering is pure: no I/O beyond reading the template files.
"""

import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping

from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.core.config import Settings
from app.core.exceptions import NotFoundError
from app.schemas.email import RenderedEmail

TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), "..", "templates", "email")
DEFAULT_PRIMARY_COLOR = "#1c7881"


def _institution(data: Mapping[str, Any]) -> str:
    branding = data.get("branding") or {}
    return data.get("institutionName") or branding.get("marketplaceName") or "your institution"


# Subject line per template; receives the data and the platform name
SUBJECTS: Dict[str, Callable[[Mapping[str, Any], str], str]] = {
    "alumniInvitation": lambda d, p: f"You're invited to join {_institution(d)} on {p}",
    "alumniWelcome": lambda d, p: f"Welcome to {p}, {d.get('firstName', '')}!",
    "alumniReminder": lambda d, p: f"Reminder: You're invited to join {_institution(d)} on {p}",
    "tenantRequestReceived": lambda d, p: f"Tenant Request Received - {d.get('institutionName', '')}",
    "tenantApproved": lambda d, p: f"Your tenant request has been approved - {d.get('institutionName', '')}",
    "tenantRejected": lambda d, p: f"Tenant request update - {d.get('institutionName', '')}",
}

_SAMPLE_BRANDING = {
    "marketplaceColor": "#A51C30",
    "marketplaceName": "Harvard x Campus Marketplace",
    "logoUrl": None,
}

SAMPLE_DATA: Dict[str, Dict[str, Any]] = {
    "alumniInvitation": {
        "firstName": "Jane",
        "lastName": "Doe",
        "email": "jane.doe@example.com",
        "institutionName": "Harvard University",
        "invitationCode": "abc123def456",
        "graduationYear": "2020",
        "program": "Computer Science",
        "invitedByName": "Dr. Smith",
        "branding": _SAMPLE_BRANDING,
    },
    "alumniWelcome": {
        "firstName": "Jane",
        "lastName": "Doe",
        "institutionName": "Harvard University",
        "branding": _SAMPLE_BRANDING,
    },
    "alumniReminder": {
        "firstName": "Jane",
        "email": "jane.doe@example.com",
        "institutionName": "Harvard University",
        "invitationCode": "abc123def456",
        "branding": _SAMPLE_BRANDING,
    },
    "tenantRequestReceived": {
        "adminName": "Dr. Smith",
        "adminEmail": "smith@harvard.edu",
        "institutionName": "Harvard University",
        "requestId": "req_abc123",
    },
    "tenantApproved": {
        "adminName": "Dr. Smith",
        "adminEmail": "smith@harvard.edu",
        "institutionName": "Harvard University",
        "tenantId": "harvard",
    },
    "tenantRejected": {
        "adminName": "Dr. Smith",
        "adminEmail": "smith@harvard.edu",
        "institutionName": "Example University",
        "rejectionReason": "Institution not yet verified. Please submit documentation.",
    },
}


class TemplateRegistry:

    def __init__(self, settings: Settings, template_dir: str = TEMPLATE_DIR) -> None:
        self._settings = settings
        self._env = Environment(
            loader=FileSystemLoader(searchpath=template_dir),
            autoescape=select_autoescape(["html"]),
        )

    def names(self) -> List[str]:
        return list(SUBJECTS)

    def render(self, name: str, data: Mapping[str, Any]) -> RenderedEmail:
        """
        Render a template by name.

        Raises:
            NotFoundError: unknown template; the message lists the available set.
        """
        subject_for = SUBJECTS.get(name)
        if subject_for is None:
            raise NotFoundError(
                f'Unknown email template: "{name}". Available: {", ".join(self.names())}'
            )

        platform = self._settings.PLATFORM_NAME
        subject = subject_for(data, platform)
        context = {
            **data,
            **self._layout_context(name, data),
            "subject": subject,
            "institution_name": _institution(data),
        }
        html = self._env.get_template(f"{name}.html").render(context)
        return RenderedEmail(subject=subject, html=html, template_name=name)

    def _layout_context(self, name: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        root = self._settings.MARKETPLACE_ROOT_URL.rstrip("/")
        branding = data.get("branding") or {}
        logo_url = branding.get("logoUrl")
        if logo_url and not logo_url.startswith("http"):
            logo_url = f"{root}{logo_url}"
        code = data.get("invitationCode", "")
        area = "education" if name.startswith("tenant") else "alumni"
        return {
            "primary_color": branding.get("marketplaceColor") or DEFAULT_PRIMARY_COLOR,
            "marketplace_name": branding.get("marketplaceName") or self._settings.PLATFORM_NAME,
            "logo_url": logo_url,
            "platform_name": self._settings.PLATFORM_NAME,
            "root_url": root,
            "join_url": f"{root}/alumni/join/{code}",
            "dashboard_url": f"{root}/{area}/dashboard",
            "year": datetime.now(timezone.utc).year,
        }
