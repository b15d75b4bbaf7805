"""Async SQLite catalog storage for the Recollect service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from sqlalchemy import MetaData, event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base shared by the catalog tables."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


def _prepare_sqlite_path(database_url: str) -> bool:
    """Create the parent directory of a file-backed SQLite URL.

    Returns ``True`` when the URL points at SQLite so the caller can enable
    foreign key enforcement on each connection.
    """

    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return False
    if url.database and url.database != ":memory:":
        parent = Path(url.database).expanduser().parent
        if not parent.exists():
            logger.info("Creating database directory %s", parent)
            parent.mkdir(parents=True, exist_ok=True)
    return True


class Database:
    """Owns the async engine and hands out sessions to the catalog adapter."""

    def __init__(self, database_url: str):
        is_sqlite = _prepare_sqlite_path(database_url)
        self._engine: AsyncEngine = create_async_engine(database_url)
        if is_sqlite:
            event.listen(self._engine.sync_engine, "connect", _enable_foreign_keys)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create the catalog tables if they do not yet exist."""

        # Importing registers the mapped classes on Base.metadata.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
        logger.debug("Catalog schema ready (%d tables)", len(Base.metadata.tables))

    async def dispose(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Session scope that rolls back when the block raises."""

        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise


def _enable_foreign_keys(dbapi_connection, _connection_record) -> None:
    # SQLite ignores ON DELETE CASCADE unless enforcement is switched on per connection.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
