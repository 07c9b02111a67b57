"""
services/record_store.py
------------------------
Durable load/save of named JSON collections with a backup-on-write safety net.

Guarantees consumed by every service above it:
  - save() is atomic: one transaction replaces the payload, so either the
    whole new collection is durable or the previous value remains.
  - The previous payload is kept in `backup` whenever it was still valid
    JSON, so `backup` always holds the last-known-good value.
  - load() recovers a corrupt primary payload from the backup and restores
    the primary from it.

The store does not merge concurrent writers. Callers that read-modify-write a
collection hold `lock(name)` for the whole sequence.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.logging import get_logger
from app.models import Base, RecordCollection

logger = get_logger(__name__)

TENANTS = "tenants"
TENANT_REQUESTS = "tenant-requests"
ALUMNI = "alumni"
EMAIL_LOG = "email-log"


def _parse(raw: str | None) -> tuple[bool, Any]:
    if raw is None or not raw.strip():
        return False, None
    try:
        return True, json.loads(raw)
    except ValueError:
        return False, None


class RecordStore:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._locks: Dict[str, asyncio.Lock] = {}

    async def init(self) -> None:
        """Create the backing table if it does not exist yet."""
        async with self._session_factory() as session:
            conn = await session.connection()
            await conn.run_sync(Base.metadata.create_all)
            await session.commit()

    @asynccontextmanager
    async def lock(self, name: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(name, asyncio.Lock())
        async with lock:
            yield

    async def load(self, name: str, default: Any) -> Any:
        """
        Return the stored value of a collection.

        Falls back to the backup when the primary payload is unreadable and
        to `default` when nothing usable exists. Read errors from the database
        itself propagate: a caller must never mistake an outage for an empty
        collection.
        """
        async with self._session_factory() as session:
            record = await session.get(RecordCollection, name)
            if record is None:
                return default

            ok, value = _parse(record.payload)
            if ok:
                return value

            logger.error("Primary payload unreadable", collection=name)
            ok, value = _parse(record.backup)
            if not ok:
                logger.error("Backup payload unreadable too", collection=name)
                return default

            logger.warning("Falling back to backup payload", collection=name)
            record.payload = record.backup
            try:
                await session.commit()
                logger.info("Primary payload restored from backup", collection=name)
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.warning("Could not restore primary payload", collection=name, error=str(exc))
            return value

    async def save(self, name: str, value: Any) -> bool:
        """Persist a whole collection. Returns False when the write failed."""
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as exc:
            logger.error("Collection is not JSON serialisable", collection=name, error=str(exc))
            return False

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        select(RecordCollection)
                        .where(RecordCollection.name == name)
                        .with_for_update()
                    )
                    record = result.scalar_one_or_none()
                    if record is None:
                        session.add(RecordCollection(name=name, payload=payload))
                    else:
                        previous_ok, _ = _parse(record.payload)
                        if previous_ok:
                            record.backup = record.payload
                        record.payload = payload
            return True
        except SQLAlchemyError as exc:
            logger.error("Error writing collection", collection=name, error=str(exc))
            return False
