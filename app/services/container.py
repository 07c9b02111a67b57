"""
services/container.py
---------------------
Per-process service graph.

One ServiceContainer is built per application instance and stored on
`app.state.services`. It owns every piece of mutable process state (engine,
tenant cache, rate-limit window, notification queue), so each test can build
its own isolated instance.

    store ← registry ← resolver
          ← gateway  ← dispatcher ← lifecycle, alumni
"""

from typing import Any, Optional

from app.core.config import Settings
from app.core.logging import get_logger
from app.db.session import build_engine, build_session_factory
from app.services.alumni_service import AlumniService
from app.services.email_service import NotificationGateway
from app.services.email_templates import TemplateRegistry
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.record_store import RecordStore
from app.services.tenant_lifecycle import TenantLifecycleService
from app.services.tenant_registry import TenantRegistry
from app.services.tenant_resolver import TenantResolver

logger = get_logger(__name__)


class ServiceContainer:

    def __init__(self, settings: Settings, transport: Optional[Any] = None, **gateway_options: Any) -> None:
        self.settings = settings
        self.engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
        self.session_factory = build_session_factory(self.engine)

        self.store = RecordStore(self.session_factory)
        self.registry = TenantRegistry(self.store, settings)
        self.resolver = TenantResolver(self.registry, settings)

        self.templates = TemplateRegistry(settings)
        self.gateway = NotificationGateway(settings, self.store, transport=transport, **gateway_options)
        self.dispatcher = NotificationDispatcher(self.gateway, self.templates)

        self.lifecycle = TenantLifecycleService(settings, self.store, self.registry, self.dispatcher)
        self.alumni = AlumniService(self.store, self.registry, self.dispatcher)

    async def start(self) -> None:
        await self.store.init()
        await self.registry.init()
        self.dispatcher.start()
        logger.info(
            "Services started",
            tenants=len(self.registry.all()),
            email_mode="smtp" if self.gateway.transport else "console",
        )

    async def stop(self) -> None:
        await self.dispatcher.stop()
        logger.info("Disposing DB engine")
        await self.engine.dispose()

    async def reset(self) -> None:
        """Drop in-memory state and re-hydrate from the store."""
        await self.dispatcher.drain()
        self.gateway.reset()
        self.registry.reset()
        await self.registry.init()
