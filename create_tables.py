"""
create_tables.py
----------------
One-shot script to create the record store schema and seed the default
tenant. The application also does this on startup; use the script to
prepare a database ahead of the first deploy.

Usage:
    python create_tables.py
"""

import asyncio

from app.core.config import get_settings
from app.core.logging import configure_logging, get_logger
from app.db.session import build_engine, build_session_factory
from app.services.record_store import RecordStore
from app.services.tenant_registry import TenantRegistry

logger = get_logger(__name__)


async def create_all_tables() -> None:
    settings = get_settings()
    configure_logging(settings.DEBUG)
    engine = build_engine(settings.DATABASE_URL, echo=True)
    try:
        store = RecordStore(build_session_factory(engine))
        await store.init()
        await TenantRegistry(store, settings).init()
    finally:
        await engine.dispose()
    logger.info("All tables created", database_url=engine.url.render_as_string(hide_password=True))


if __name__ == "__main__":
    asyncio.run(create_all_tables())
