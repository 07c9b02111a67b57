"""
tests/conftest.py
-----------------
Shared fixtures: isolated settings (temp SQLite file, temp upload dir, no
SMTP), a started ServiceContainer, an httpx client over ASGI, and bearer
token helpers.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-the-suite")

from typing import AsyncIterator, Dict, Optional  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from app.core.config import Settings  # noqa: E402
from app.core.security import create_access_token  # noqa: E402
from app.services.container import ServiceContainer  # noqa: E402
from main import create_application  # noqa: E402

SYSTEM_ADMIN = "system-admin"
EDUCATIONAL_ADMIN = "educational-admin"


class FakeTransport:
    """Stands in for SmtpTransport; raises queued failures before succeeding."""

    def __init__(self) -> None:
        self.failures = []
        self.sent = []
        self.attempts = 0

    async def send(self, message) -> str:
        self.attempts += 1
        if self.failures:
            raise self.failures.pop(0)
        self.sent.append(message)
        return f"<msg-{len(self.sent)}@test.local>"

    async def verify(self) -> None:
        if self.failures:
            raise self.failures.pop(0)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        SECRET_KEY="test-secret-key-for-the-suite",
        APP_ENV="test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'control_plane.db'}",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        PLATFORM_NAME="Campus Marketplace",
        TENANT_BASE_DOMAIN="campusmarket.io",
        TENANT_DEV_OVERRIDE=False,
        MARKETPLACE_ROOT_URL="https://campusmarket.io",
        SHARETRIBE_CLIENT_ID="default-client-id",
        SHARETRIBE_CLIENT_SECRET="default-client-secret",
        EMAIL_ENABLED=True,
        SMTP_HOST=None,
        SMTP_USER=None,
        SMTP_PASSWORD=None,
        EMAIL_RATE_LIMIT=50,
    )


@pytest.fixture
async def container(settings) -> AsyncIterator[ServiceContainer]:
    services = ServiceContainer(settings)
    await services.start()
    yield services
    await services.stop()


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def app(settings, container):
    application = create_application(settings)
    # ASGITransport does not run lifespan; attach the started container
    application.state.services = container
    return application


@pytest.fixture
async def client(app) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
def make_headers(settings):
    def _make(
        user_type: str,
        institution_domain: Optional[str] = None,
        user_id: str = "user-1",
        name: Optional[str] = None,
    ) -> Dict[str, str]:
        token = create_access_token(
            settings,
            subject=user_id,
            user_type=user_type,
            institution_domain=institution_domain,
            name=name,
        )
        return {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def system_admin(make_headers) -> Dict[str, str]:
    return make_headers(SYSTEM_ADMIN, user_id="sysadmin-1")


@pytest.fixture
def harvard_admin(make_headers) -> Dict[str, str]:
    return make_headers(EDUCATIONAL_ADMIN, "harvard.edu", user_id="edu-harvard", name="Dr. Smith")


@pytest.fixture
def yale_admin(make_headers) -> Dict[str, str]:
    return make_headers(EDUCATIONAL_ADMIN, "yale.edu", user_id="edu-yale")


@pytest.fixture
def tenant_payload():
    def _payload(subdomain: str = "harvard", institution_domain: str = "harvard.edu", **extra):
        body = {
            "subdomain": subdomain,
            "name": subdomain.title() + " University",
            "institutionDomain": institution_domain,
            "sharetribe": {"clientId": f"{subdomain}-client", "clientSecret": "supersecretvalue"},
            "integrationApiKey": "integration-key-1234",
        }
        body.update(extra)
        return body

    return _payload
