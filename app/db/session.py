"""
db/session.py
-------------
Async SQLAlchemy engine and session factory builders.

Design decisions:
  - AsyncEngine (asyncpg for PostgreSQL, aiosqlite for local/dev) for
    non-blocking I/O.
  - The engine is owned by the per-process ServiceContainer, never a module
    global, so tests get an isolated database per container.
  - Pool sizing only applies to server databases; SQLite uses its own pool.
  - expire_on_commit=False: avoids lazy-load errors after commit in async
    context.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        if url.database and url.database != ":memory:":
            from pathlib import Path
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        return create_async_engine(database_url, echo=echo)

    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=3600,             # Recycle connections every hour
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
