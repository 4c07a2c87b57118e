"""SQLAlchemy models for price migration campaigns."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from openword_admin.common.models import Base, TimestampMixin, generate_uuid
from openword_admin.organisations.models import OrganisationModel

# Migration.status
PENDING = "pending"
EMAILS_SENT = "emails_sent"
COMPLETED = "completed"
CANCELLED = "cancelled"

# MigrationCustomer.email_status
EMAIL_UNSENT = "unsent"
EMAIL_SENT = "sent"
EMAIL_FAILED = "failed"
EMAIL_SKIPPED = "skipped"

# MigrationCustomer.migration_status (PENDING and COMPLETED shared with the campaign)
CUSTOMER_FAILED = "failed"
CUSTOMER_SKIPPED = "skipped"


class PriceMigrationModel(Base, TimestampMixin):
    __tablename__ = "price_migrations"
    __table_args__ = (
        Index("ix_price_migrations_status_scheduled", "status", "migration_scheduled_for"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PENDING, index=True)

    # Display-only pricing in minor units (1400 = £14.00)
    old_basic_gbp: Mapped[int | None] = mapped_column(Integer, nullable=True)
    old_standard_gbp: Mapped[int | None] = mapped_column(Integer, nullable=True)
    old_pro_gbp: Mapped[int | None] = mapped_column(Integer, nullable=True)
    old_credit_gbp: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_basic_gbp: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_standard_gbp: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_pro_gbp: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_credit_gbp: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # {tier: {currency: stripe price id}}
    new_price_ids: Mapped[dict] = mapped_column(JSON, default=dict)
    # None means every eligible organisation
    selected_organisation_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)

    emails_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    migration_scheduled_for: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    migration_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    total_customers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    emails_sent_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    migrations_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    migrations_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def tier_pricing(self, tier: str) -> tuple[int | None, int | None]:
        """(old, new) monthly amount for a tier; unknown tiers fall back to basic."""
        if tier not in ("basic", "standard", "pro"):
            tier = "basic"
        return getattr(self, f"old_{tier}_gbp"), getattr(self, f"new_{tier}_gbp")

    def price_id_for(self, tier: str | None, currency: str | None) -> str | None:
        if not tier or not currency:
            return None
        return (self.new_price_ids or {}).get(tier, {}).get(currency) or None


class PriceMigrationCustomerModel(Base, TimestampMixin):
    __tablename__ = "price_migration_customers"
    __table_args__ = (
        UniqueConstraint("migration_id", "organisation_id", name="uq_migration_customer"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    migration_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("price_migrations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    organisation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False,
    )

    # Snapshot at enrollment
    current_tier: Mapped[str | None] = mapped_column(String(20), nullable=True)
    current_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    current_price_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_subscription_item_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    new_price_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    email_status: Mapped[str] = mapped_column(String(20), nullable=False, default=EMAIL_UNSENT)
    email_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    email_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    migration_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PENDING, index=True
    )
    migration_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    migration_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    organisation: Mapped[OrganisationModel] = relationship(lazy="raise")
