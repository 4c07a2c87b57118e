"""Async database manager for the billing ledger."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from openword_admin.common.config import AdminSettings, get_settings
from openword_admin.common.models import Base

# Every table must be on Base.metadata before create_all().
import openword_admin.organisations.models  # noqa: F401
import openword_admin.price_migration.models  # noqa: F401
import openword_admin.usage.models  # noqa: F401
import openword_admin.jobs.models  # noqa: F401


def ensure_sqlite_directory(db_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    url = make_url(db_url)
    if url.get_backend_name() != "sqlite":
        return
    database = url.database
    if not database or database == ":memory:":
        return
    Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)


def apply_sqlite_busy_timeout(engine: AsyncEngine, timeout_ms: int) -> None:
    """Make SQLite wait for a held write lock instead of failing at once.

    Lease claims and per-customer commits from a second process would
    otherwise hit "database is locked" immediately.
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine.sync_engine, "connect")
    def _set_busy_timeout(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {int(timeout_ms)}")
        cursor.close()


class DatabaseManager:
    """Owns the ledger engine and hands out sessions.

    ``get_session()`` commits when the block exits cleanly and rolls back
    on error. Services may also commit inside the block to make progress
    durable customer by customer.
    """

    def __init__(self, settings: AdminSettings | None = None):
        self._settings = settings or get_settings()
        self.engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def init(self) -> None:
        url = self._settings.db_url
        ensure_sqlite_directory(url)
        self.engine = create_async_engine(url, echo=False)
        apply_sqlite_busy_timeout(self.engine, self._settings.db_busy_timeout_ms)
        self._session_factory = async_sessionmaker(
            self.engine, expire_on_commit=False
        )

    def _require_engine(self) -> AsyncEngine:
        if self.engine is None or self._session_factory is None:
            raise RuntimeError("DatabaseManager not initialized, call init() first")
        return self.engine

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        self._require_engine()
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        async with self._require_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self._session_factory = None
