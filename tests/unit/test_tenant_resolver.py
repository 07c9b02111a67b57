import pytest

from app.core.exceptions import TenantNotFoundError, TenantUnavailableError
from app.schemas.tenant import SharetribeCredentials, TenantCreate, TenantStatus
from app.services.tenant_resolver import TenantResolver, extract_subdomain

BASE = "campusmarket.io"


@pytest.mark.parametrize(
    "host, expected",
    [
        ("harvard.campusmarket.io", "harvard"),
        ("harvard.campusmarket.io:443", "harvard"),
        ("HARVARD.CampusMarket.io", "harvard"),
        ("harvard.campusmarket.io.", "harvard"),
        ("a.b.campusmarket.io", "b"),
        ("campusmarket.io", None),
        ("www.campusmarket.io", None),
        ("localhost", None),
        ("localhost:3000", None),
        ("10.0.0.1", None),
        ("[::1]:8000", None),
        ("evilcampusmarket.io", None),
        ("harvard.example.com", None),
        ("", None),
        (None, None),
    ],
)
def test_extract_subdomain(host, expected):
    assert extract_subdomain(host, BASE) == expected


async def _add(container, subdomain, status=TenantStatus.active, domain=None):
    return await container.registry.create(
        TenantCreate(
            subdomain=subdomain,
            name=subdomain.title(),
            status=status,
            institution_domain=domain,
            sharetribe=SharetribeCredentials(client_id="id", client_secret="secret"),
        )
    )


async def test_base_domain_resolves_to_default(container):
    assert container.resolver.resolve("campusmarket.io").id == "default"
    assert container.resolver.resolve("localhost:8000").id == "default"


async def test_active_subdomain_resolves(container):
    await _add(container, "harvard")
    assert container.resolver.resolve("harvard.campusmarket.io").id == "harvard"


async def test_unknown_subdomain_is_not_found(container):
    with pytest.raises(TenantNotFoundError):
        container.resolver.resolve("nobody.campusmarket.io")


@pytest.mark.parametrize("status", [TenantStatus.onboarding, TenantStatus.suspended, TenantStatus.inactive])
async def test_non_active_tenant_is_unavailable(container, status):
    await _add(container, "harvard", status=status)
    with pytest.raises(TenantUnavailableError):
        container.resolver.resolve("harvard.campusmarket.io")


async def test_override_ignored_unless_enabled(container):
    await _add(container, "harvard")
    assert container.resolver.resolve("campusmarket.io", override_id="harvard").id == "default"


async def test_override_honoured_outside_production(container, settings):
    await _add(container, "harvard")
    dev = settings.model_copy(update={"TENANT_DEV_OVERRIDE": True})
    assert TenantResolver(container.registry, dev).resolve("campusmarket.io", "harvard").id == "harvard"

    prod = settings.model_copy(update={"TENANT_DEV_OVERRIDE": True, "APP_ENV": "production"})
    assert TenantResolver(container.registry, prod).resolve("campusmarket.io", "harvard").id == "default"


async def test_resolve_public(container):
    await _add(container, "harvard", domain="harvard.edu")
    await _add(container, "yale", status=TenantStatus.onboarding, domain="yale.edu")

    assert container.resolver.resolve_public("harvard.campusmarket.io").id == "harvard"
    assert container.resolver.resolve_public("harvard.edu").id == "harvard"
    assert container.resolver.resolve_public("www.campusmarket.io").id == "default"
    assert container.resolver.resolve_public("yale.campusmarket.io") is None
    assert container.resolver.resolve_public("yale.edu") is None
    assert container.resolver.resolve_public("unknown.org") is None
