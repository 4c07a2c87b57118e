"""OpenWord admin configuration via pydantic-settings."""

import warnings
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class AdminSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="OPENWORD_")

    environment: str = "development"
    log_level: str = "INFO"

    # Database
    db_url: str = "sqlite+aiosqlite:///./data/openword_admin.db"
    db_busy_timeout_ms: int = 5000

    # Stripe
    stripe_secret_key: str = ""
    stripe_api_version: str = ""

    # Email delivery ("sendgrid", "resend", or empty to log only)
    email_provider: str = ""
    email_api_key: str = ""
    sender_email: str = "support@openword.live"
    sender_name: str = "Open Word Support"
    support_email: str = "support@openword.live"
    alert_email: str = "alerts@openword.live"
    site_url: str = "https://openword.live"

    # Price migrations
    migration_notice_days: int = 7
    email_send_delay_ms: int = 100
    provider_call_delay_ms: int = 50
    migration_tiers: list[str] = ["basic", "standard", "pro"]
    migration_currencies: list[str] = ["gbp", "usd", "eur"]

    # Usage consolidation
    consolidation_age_days: int = 60
    consolidation_batch_size: int = 50
    consolidation_min_rows: int = 5

    # Scheduler (UTC)
    scheduler_hour: int = 3
    scheduler_minute: int = 0
    job_lease_ttl: int = 3600  # seconds
    startup_check_delay: int = 10  # seconds

    @property
    def email_send_delay(self) -> float:
        return self.email_send_delay_ms / 1000

    @property
    def provider_call_delay(self) -> float:
        return self.provider_call_delay_ms / 1000

    def validate_for_production(self) -> None:
        """Raise if Stripe is unconfigured outside development."""
        if self.stripe_secret_key:
            return

        if self.environment != "development":
            raise RuntimeError(
                f"Stripe is not configured in '{self.environment}' environment. "
                "Set OPENWORD_STRIPE_SECRET_KEY before running price migrations."
            )

        warnings.warn(
            "OPENWORD_STRIPE_SECRET_KEY is not set; subscription updates will fail",
            UserWarning,
            stacklevel=2,
        )


@lru_cache
def get_settings() -> AdminSettings:
    settings = AdminSettings()
    settings.validate_for_production()
    return settings
