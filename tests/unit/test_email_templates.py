import pytest

from app.core.exceptions import NotFoundError
from app.services.email_templates import DEFAULT_PRIMARY_COLOR, SAMPLE_DATA, TemplateRegistry

TEMPLATE_NAMES = [
    "alumniInvitation",
    "alumniWelcome",
    "alumniReminder",
    "tenantRequestReceived",
    "tenantApproved",
    "tenantRejected",
]


@pytest.fixture
def templates(settings):
    return TemplateRegistry(settings)


def test_names(templates):
    assert templates.names() == TEMPLATE_NAMES


@pytest.mark.parametrize("name", TEMPLATE_NAMES)
def test_every_template_renders_sample_data(templates, name):
    rendered = templates.render(name, SAMPLE_DATA[name])

    assert rendered.template_name == name
    assert rendered.subject
    assert rendered.html.lstrip().lower().startswith("<!doctype html>")
    assert "Campus Marketplace" in rendered.html


def test_invitation_subject_and_join_link(templates):
    rendered = templates.render("alumniInvitation", SAMPLE_DATA["alumniInvitation"])

    assert rendered.subject == "You're invited to join Harvard University on Campus Marketplace"
    assert "https://campusmarket.io/alumni/join/abc123def456" in rendered.html
    assert "#A51C30" in rendered.html


def test_missing_branding_uses_platform_defaults(templates):
    rendered = templates.render("alumniWelcome", {"firstName": "Jane"})

    assert rendered.subject == "Welcome to Campus Marketplace, Jane!"
    assert DEFAULT_PRIMARY_COLOR in rendered.html


def test_relative_logo_is_made_absolute(templates):
    data = {"firstName": "Jane", "branding": {"logoUrl": "/uploads/tenants/harvard/logo.png"}}
    rendered = templates.render("alumniWelcome", data)

    assert "https://campusmarket.io/uploads/tenants/harvard/logo.png" in rendered.html


def test_values_are_escaped(templates):
    rendered = templates.render("alumniWelcome", {"firstName": "<script>alert(1)</script>"})

    assert "<script>alert(1)</script>" not in rendered.html
    assert "&lt;script&gt;" in rendered.html


def test_rejection_reason_is_included(templates):
    rendered = templates.render("tenantRejected", SAMPLE_DATA["tenantRejected"])
    assert "Institution not yet verified" in rendered.html


def test_unknown_template_lists_available(templates):
    with pytest.raises(NotFoundError) as exc_info:
        templates.render("nope", {})

    assert 'Unknown email template: "nope"' in exc_info.value.message
    assert "alumniInvitation" in exc_info.value.message
