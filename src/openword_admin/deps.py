"""Dependency injection singletons for the OpenWord admin jobs."""

from openword_admin.billing.stripe_provider import StripeSubscriptionProvider
from openword_admin.common.config import get_settings
from openword_admin.common.database import DatabaseManager
from openword_admin.jobs.scheduler import JobScheduler
from openword_admin.notifications.email_delivery import EmailSender
from openword_admin.price_migration.scheduler import run_price_migration_job
from openword_admin.price_migration.service import PriceMigrationService
from openword_admin.usage.service import UsageConsolidationService

PRICE_MIGRATION_JOB = "price_migrations"
USAGE_CONSOLIDATION_JOB = "usage_consolidation"

_db: DatabaseManager | None = None
_email: EmailSender | None = None
_provider: StripeSubscriptionProvider | None = None
_migrations: PriceMigrationService | None = None
_consolidation: UsageConsolidationService | None = None
_scheduler: JobScheduler | None = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
    return _db


def get_email_sender() -> EmailSender:
    global _email
    if _email is None:
        settings = get_settings()
        _email = EmailSender(
            provider=settings.email_provider,
            api_key=settings.email_api_key,
            from_email=settings.sender_email,
            from_name=settings.sender_name,
            support_email=settings.support_email,
            alert_email=settings.alert_email,
            site_url=settings.site_url,
        )
    return _email


def get_subscription_provider() -> StripeSubscriptionProvider:
    global _provider
    if _provider is None:
        settings = get_settings()
        _provider = StripeSubscriptionProvider(
            settings.stripe_secret_key, settings.stripe_api_version,
        )
    return _provider


def get_migration_service() -> PriceMigrationService:
    global _migrations
    if _migrations is None:
        _migrations = PriceMigrationService(
            get_settings(),
            get_subscription_provider(),
            get_email_sender(),
        )
    return _migrations


def get_consolidation_service() -> UsageConsolidationService:
    global _consolidation
    if _consolidation is None:
        _consolidation = UsageConsolidationService(get_settings())
    return _consolidation


async def _run_price_migrations():
    return await run_price_migration_job(
        get_db(), get_migration_service(), get_email_sender(),
    )


async def _run_usage_consolidation():
    async with get_db().get_session() as session:
        return await get_consolidation_service().consolidate_old_sessions(session)


def get_scheduler() -> JobScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = JobScheduler(get_db(), get_settings())
        _scheduler.add_daily_job(PRICE_MIGRATION_JOB, _run_price_migrations)
        _scheduler.add_daily_job(USAGE_CONSOLIDATION_JOB, _run_usage_consolidation)
    return _scheduler


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _email, _provider, _migrations, _consolidation, _scheduler
    _db = None
    _email = None
    _provider = None
    _migrations = None
    _consolidation = None
    _scheduler = None
