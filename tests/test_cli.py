"""Tests for the openword-admin command line."""

import json
import logging
import re

import pytest
from typer.testing import CliRunner

from openword_admin.cli import app

runner = CliRunner()
UUID_RE = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}")


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setenv("OPENWORD_DB_URL", f"sqlite+aiosqlite:///{tmp_path / 'admin.db'}")
    monkeypatch.setenv("OPENWORD_STRIPE_SECRET_KEY", "sk_test_cli")
    monkeypatch.setenv("OPENWORD_EMAIL_SEND_DELAY_MS", "0")
    monkeypatch.setenv("OPENWORD_LOG_LEVEL", "WARNING")

    from openword_admin.common.config import get_settings
    from openword_admin.deps import reset_singletons

    get_settings.cache_clear()
    reset_singletons()
    assert runner.invoke(app, ["init-db"]).exit_code == 0
    yield
    get_settings.cache_clear()
    reset_singletons()
    logger = logging.getLogger("openword_admin")
    logger.handlers.clear()
    logger.propagate = True


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "migration.json"
    path.write_text(json.dumps({
        "old_pricing": {"basic_gbp": 1200, "credit_gbp": 250},
        "new_pricing": {"basic_gbp": 1400, "credit_gbp": 300},
        "new_price_ids": {"basic_gbp": "price_basic_gbp_v2"},
    }))
    return path


def _create(config_file, name="CLI pricing"):
    result = runner.invoke(app, [
        "migrations", "create", "--name", name, "--config", str(config_file),
    ])
    assert result.exit_code == 0, result.output
    return UUID_RE.search(result.output).group(0)


class TestMigrationCommands:
    def test_create_reports_missing_price_ids(self, config_file):
        result = runner.invoke(app, [
            "migrations", "create", "--name", "CLI pricing", "--config", str(config_file),
        ])
        assert result.exit_code == 0
        assert "Created" in result.output
        assert "pro_eur" in result.output

    def test_create_blank_name_fails(self, config_file):
        result = runner.invoke(app, [
            "migrations", "create", "--name", " ", "--config", str(config_file),
        ])
        assert result.exit_code == 1
        assert "Migration name is required" in result.output

    def test_list(self, config_file):
        _create(config_file)
        result = runner.invoke(app, ["migrations", "list"])
        assert result.exit_code == 0

    def test_show(self, config_file):
        migration_id = _create(config_file)
        result = runner.invoke(app, ["migrations", "show", migration_id])
        assert result.exit_code == 0
        assert migration_id in result.output

    def test_send_emails_then_cancel(self, config_file):
        migration_id = _create(config_file)
        sent = runner.invoke(app, ["migrations", "send-emails", migration_id])
        assert sent.exit_code == 0
        assert "0 sent" in sent.output

        again = runner.invoke(app, ["migrations", "send-emails", migration_id])
        assert again.exit_code == 1
        assert "INVALID_STATE" in again.output

        cancelled = runner.invoke(app, ["migrations", "cancel", migration_id])
        assert cancelled.exit_code == 0

    def test_execute_then_cancel_refused(self, config_file):
        migration_id = _create(config_file)
        executed = runner.invoke(app, ["migrations", "execute", migration_id])
        assert executed.exit_code == 0
        assert "0 completed" in executed.output

        cancelled = runner.invoke(app, ["migrations", "cancel", migration_id])
        assert cancelled.exit_code == 1
        assert "Cannot cancel completed migration" in cancelled.output

    def test_unknown_migration(self):
        result = runner.invoke(app, ["migrations", "execute", "does-not-exist"])
        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output

    def test_run_due_dry_run(self):
        result = runner.invoke(app, ["migrations", "run-due", "--dry-run"])
        assert result.exit_code == 0

    def test_run_due_nothing_due(self):
        result = runner.invoke(app, ["migrations", "run-due"])
        assert result.exit_code == 0
        assert "No migrations due" in result.output


class TestJobCommands:
    def test_consolidate(self):
        result = runner.invoke(app, ["consolidate"])
        assert result.exit_code == 0
        assert "Consolidated 0 sessions" in result.output

    def test_run_job(self):
        result = runner.invoke(app, ["run-job", "usage_consolidation"])
        assert result.exit_code == 0
        assert "consolidated" in result.output

    def test_run_unknown_job(self):
        result = runner.invoke(app, ["run-job", "nightly-report"])
        assert result.exit_code == 1
