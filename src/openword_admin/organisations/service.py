"""Organisation queries used to scope price migrations."""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from openword_admin.organisations.models import OrganisationModel

DEFAULT_CHARITY_DISCOUNT = 50


class OrganisationService:
    """Read-side lookups over the organisations relation."""

    def _migratable_query(self, tiers, organisation_ids=None):
        query = select(OrganisationModel).where(
            OrganisationModel.subscription_tier.in_(list(tiers)),
            OrganisationModel.subscription_status == "active",
            OrganisationModel.stripe_subscription_id.is_not(None),
        )
        if organisation_ids is not None:
            query = query.where(OrganisationModel.id.in_(list(organisation_ids)))
        return query

    async def list_migratable(
        self,
        session: AsyncSession,
        tiers: list[str],
        organisation_ids: list[str] | None = None,
    ) -> list[OrganisationModel]:
        """Active subscribers in the given tiers, optionally limited to an allowlist."""
        query = self._migratable_query(tiers, organisation_ids).order_by(OrganisationModel.name)
        result = await session.execute(query)
        return list(result.scalars().all())

    async def count_migratable(
        self,
        session: AsyncSession,
        tiers: list[str],
        organisation_ids: list[str] | None = None,
    ) -> int:
        subquery = self._migratable_query(tiers, organisation_ids).subquery()
        result = await session.execute(select(func.count()).select_from(subquery))
        return result.scalar() or 0

    async def list_selectable(
        self,
        session: AsyncSession,
        tiers: list[str],
    ) -> list[dict]:
        """Organisations an admin can pick when scoping a migration.

        Includes trialing subscriptions and reports each organisation's
        effective discount: verified charities get their charity rate,
        everyone else their negotiated discount.
        """
        result = await session.execute(
            select(OrganisationModel)
            .where(
                OrganisationModel.subscription_tier.in_(list(tiers)),
                OrganisationModel.subscription_status.in_(["active", "trialing"]),
                OrganisationModel.stripe_subscription_id.is_not(None),
            )
            .order_by(OrganisationModel.name)
        )

        customers = []
        for org in result.scalars():
            if org.charity_verified:
                discount = org.charity_discount_percent or DEFAULT_CHARITY_DISCOUNT
                discount_type = "charity"
            else:
                discount = org.discount_percent or 0
                discount_type = org.discount_type
            customers.append({
                "id": org.id,
                "name": org.name,
                "tier": org.subscription_tier,
                "status": org.subscription_status,
                "currency": org.preferred_currency or "gbp",
                "discount_percent": discount,
                "discount_type": discount_type,
                "is_charity": bool(org.charity_verified or org.is_charity),
                "has_subscription": bool(org.stripe_subscription_id),
            })
        return customers
