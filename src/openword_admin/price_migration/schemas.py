"""Pydantic schemas for price migration campaigns."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TierPricing(BaseModel):
    """Display prices in minor units (pence/cents)."""

    basic_gbp: Optional[int] = Field(default=None, ge=0)
    standard_gbp: Optional[int] = Field(default=None, ge=0)
    pro_gbp: Optional[int] = Field(default=None, ge=0)
    credit_gbp: Optional[int] = Field(default=None, ge=0)


class MigrationCreate(BaseModel):
    name: str = Field(default="", validate_default=True)
    old_pricing: TierPricing = Field(default_factory=TierPricing)
    new_pricing: TierPricing = Field(default_factory=TierPricing)
    new_price_ids: dict[str, dict[str, str]] = Field(default_factory=dict)
    selected_organisation_ids: Optional[list[str]] = None

    @field_validator("name")
    @classmethod
    def name_required(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("Migration name is required")
        return value

    @field_validator("new_price_ids", mode="before")
    @classmethod
    def nest_flat_price_keys(cls, value: Any) -> Any:
        """Accept {"basic_gbp": "price_..."} as well as {"basic": {"gbp": ...}}."""
        if not isinstance(value, dict):
            return value
        nested: dict[str, dict[str, Any]] = {}
        for key, entry in value.items():
            if isinstance(entry, dict):
                nested.setdefault(str(key).lower(), {}).update(
                    {str(c).lower(): v for c, v in entry.items()}
                )
                continue
            tier, sep, currency = str(key).rpartition("_")
            if not sep or not tier:
                raise ValueError(f"Price id key '{key}' must look like '<tier>_<currency>'")
            nested.setdefault(tier.lower(), {})[currency.lower()] = entry
        return nested

    @field_validator("new_price_ids")
    @classmethod
    def price_ids_not_blank(cls, value: dict[str, dict[str, str]]) -> dict[str, dict[str, str]]:
        cleaned: dict[str, dict[str, str]] = {}
        for tier, by_currency in value.items():
            for currency, price_id in by_currency.items():
                price_id = (price_id or "").strip()
                if not price_id:
                    raise ValueError(f"Price id for {tier}/{currency} is blank")
                cleaned.setdefault(tier, {})[currency] = price_id
        return cleaned

    @field_validator("selected_organisation_ids")
    @classmethod
    def dedupe_allowlist(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return None
        return list(dict.fromkeys(v for v in value if v))


class MigrationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    status: str
    old_basic_gbp: Optional[int] = None
    old_standard_gbp: Optional[int] = None
    old_pro_gbp: Optional[int] = None
    old_credit_gbp: Optional[int] = None
    new_basic_gbp: Optional[int] = None
    new_standard_gbp: Optional[int] = None
    new_pro_gbp: Optional[int] = None
    new_credit_gbp: Optional[int] = None
    new_price_ids: dict[str, dict[str, str]] = Field(default_factory=dict)
    selected_organisation_ids: Optional[list[str]] = None
    total_customers: int = 0
    emails_sent_count: int = 0
    migrations_completed: int = 0
    migrations_failed: int = 0
    created_by: Optional[str] = None
    created_at: datetime
    emails_sent_at: Optional[datetime] = None
    migration_scheduled_for: Optional[datetime] = None
    migration_completed_at: Optional[datetime] = None


class MigrationCustomerRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    migration_id: str
    organisation_id: str
    organisation_name: Optional[str] = None
    current_tier: Optional[str] = None
    current_currency: Optional[str] = None
    current_price_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    stripe_subscription_item_id: Optional[str] = None
    new_price_id: Optional[str] = None
    email_status: str
    email_sent_at: Optional[datetime] = None
    email_error: Optional[str] = None
    migration_status: str
    migration_completed_at: Optional[datetime] = None
    migration_error: Optional[str] = None


class MigrationCandidate(BaseModel):
    """An organisation resolved for enrollment, enriched from Stripe."""

    organisation_id: str
    name: str
    email: Optional[str] = None
    tier: str
    currency: str = "gbp"
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    subscription_item_id: Optional[str] = None
    current_price_id: Optional[str] = None
    new_price_id: Optional[str] = None

    @property
    def has_valid_new_price(self) -> bool:
        return bool(self.new_price_id)

    def as_dict(self) -> dict[str, Any]:
        data = self.model_dump()
        data["has_valid_new_price"] = self.has_valid_new_price
        return data
