"""Tests for admin settings."""

import pytest

from openword_admin.common.config import AdminSettings, get_settings


class TestAdminSettings:
    def test_defaults(self):
        settings = AdminSettings()
        assert settings.migration_notice_days == 7
        assert settings.email_send_delay == 0.1
        assert settings.provider_call_delay == 0.05
        assert settings.migration_tiers == ["basic", "standard", "pro"]
        assert settings.consolidation_age_days == 60
        assert settings.consolidation_batch_size == 50
        assert settings.consolidation_min_rows == 5

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("OPENWORD_MIGRATION_NOTICE_DAYS", "14")
        monkeypatch.setenv("OPENWORD_EMAIL_PROVIDER", "resend")
        settings = AdminSettings()
        assert settings.migration_notice_days == 14
        assert settings.email_provider == "resend"

    def test_production_requires_stripe(self):
        settings = AdminSettings(environment="production", stripe_secret_key="")
        with pytest.raises(RuntimeError, match="OPENWORD_STRIPE_SECRET_KEY"):
            settings.validate_for_production()

    def test_development_warns(self):
        settings = AdminSettings(environment="development", stripe_secret_key="")
        with pytest.warns(UserWarning):
            settings.validate_for_production()

    def test_configured_passes(self):
        AdminSettings(environment="production", stripe_secret_key="sk_live_x").validate_for_production()

    def test_get_settings_cached(self, monkeypatch):
        monkeypatch.setenv("OPENWORD_STRIPE_SECRET_KEY", "sk_test_cached")
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
            assert get_settings().stripe_secret_key == "sk_test_cached"
        finally:
            get_settings.cache_clear()
