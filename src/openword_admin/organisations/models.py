"""SQLAlchemy model for customer organisations."""

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from openword_admin.common.models import Base, TimestampMixin, generate_uuid


class OrganisationModel(Base, TimestampMixin):
    __tablename__ = "organisations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    billing_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    subscription_tier: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    subscription_status: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    preferred_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    discount_percent: Mapped[int | None] = mapped_column(Integer, nullable=True)
    discount_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    charity_discount_percent: Mapped[int | None] = mapped_column(Integer, nullable=True)
    charity_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_charity: Mapped[bool] = mapped_column(Boolean, default=False)
