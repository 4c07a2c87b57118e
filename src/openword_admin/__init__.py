"""OpenWord admin: price migrations and usage consolidation for the billing ledger."""

from openword_admin.price_migration.service import PriceMigrationService
from openword_admin.usage.service import UsageConsolidationService, aggregate_by_language
from openword_admin.jobs.scheduler import DailyJob, JobScheduler

__all__ = [
    "PriceMigrationService",
    "UsageConsolidationService",
    "aggregate_by_language",
    "DailyJob",
    "JobScheduler",
]
__version__ = "0.1.0"
