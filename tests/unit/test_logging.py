"""Tests for JSON logging and ledger setup helpers."""

import json
import logging

import pytest
from sqlalchemy import text

from openword_admin.common.config import AdminSettings
from openword_admin.common.database import DatabaseManager, ensure_sqlite_directory
from openword_admin.common.logging import JSONFormatter, setup_logging


def _record(**extra):
    record = logging.LogRecord(
        "openword_admin.price_migration.service", logging.INFO, __file__, 1,
        "Price migration completed: %d completed", (3,), None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(_record()))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "openword_admin.price_migration.service"
        assert entry["message"] == "Price migration completed: 3 completed"
        assert "migration_id" not in entry

    def test_context_fields(self):
        entry = json.loads(JSONFormatter().format(_record(migration_id="mig-1", job="price_migrations")))
        assert entry["migration_id"] == "mig-1"
        assert entry["job"] == "price_migrations"


class TestSetupLogging:
    def test_idempotent(self):
        logger = logging.getLogger("openword_admin")
        try:
            setup_logging("debug")
            setup_logging("debug")
            assert len([h for h in logger.handlers if isinstance(h.formatter, JSONFormatter)]) == 1
            assert logger.level == logging.DEBUG
        finally:
            logger.handlers.clear()
            logger.propagate = True
            logger.setLevel(logging.NOTSET)


class TestEnsureSqliteDirectory:
    def test_creates_parent(self, tmp_path):
        target = tmp_path / "nested" / "ledger.db"
        ensure_sqlite_directory(f"sqlite+aiosqlite:///{target}")
        assert target.parent.is_dir()

    def test_memory_and_other_backends_ignored(self):
        ensure_sqlite_directory("sqlite+aiosqlite://")
        ensure_sqlite_directory("postgresql+asyncpg://user:pw@localhost/openword")


class TestDatabaseManager:
    async def test_sqlite_busy_timeout(self, tmp_path):
        settings = AdminSettings(
            db_url=f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", db_busy_timeout_ms=2500,
        )
        manager = DatabaseManager(settings)
        await manager.init()
        try:
            async with manager.get_session() as session:
                assert await session.scalar(text("PRAGMA busy_timeout")) == 2500
        finally:
            await manager.close()

    async def test_session_requires_init(self, settings):
        manager = DatabaseManager(settings)
        with pytest.raises(RuntimeError, match="init"):
            async with manager.get_session():
                pass
