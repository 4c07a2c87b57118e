"""Tests for organisation lookups used to scope migrations."""

import pytest

from openword_admin.organisations.service import OrganisationService

TIERS = ["basic", "standard", "pro"]


@pytest.fixture
def svc():
    return OrganisationService()


class TestMigratable:
    async def test_filters_and_orders(self, db, svc, add_org):
        await add_org("Zeta")
        await add_org("Alpha", subscription_tier="pro")
        await add_org("Paused", subscription_status="past_due")
        await add_org("Free", subscription_tier="free")
        async with db.get_session() as session:
            orgs = await svc.list_migratable(session, TIERS)
            count = await svc.count_migratable(session, TIERS)
        assert [o.name for o in orgs] == ["Alpha", "Zeta"]
        assert count == 2

    async def test_allowlist(self, db, svc, add_org):
        keep = await add_org("Keep")
        await add_org("Other")
        async with db.get_session() as session:
            orgs = await svc.list_migratable(session, TIERS, [keep])
        assert [o.id for o in orgs] == [keep]

    async def test_empty_allowlist_matches_nothing(self, db, svc, add_org):
        await add_org("Acme")
        async with db.get_session() as session:
            assert await svc.count_migratable(session, TIERS, []) == 0


class TestSelectable:
    async def test_includes_trialing(self, db, svc, add_org):
        await add_org("Active")
        await add_org("Trial", subscription_status="trialing")
        async with db.get_session() as session:
            customers = await svc.list_selectable(session, TIERS)
        assert [c["status"] for c in customers] == ["active", "trialing"]

    async def test_charity_discount(self, db, svc, add_org):
        await add_org("Verified", charity_verified=True, is_charity=True)
        await add_org("Custom", charity_verified=True, charity_discount_percent=30)
        await add_org("Discounted", discount_percent=15, discount_type="early_adopter")
        await add_org("Plain", preferred_currency="eur")
        async with db.get_session() as session:
            customers = {c["name"]: c for c in await svc.list_selectable(session, TIERS)}

        assert customers["Verified"]["discount_percent"] == 50
        assert customers["Verified"]["discount_type"] == "charity"
        assert customers["Verified"]["is_charity"] is True
        assert customers["Custom"]["discount_percent"] == 30
        assert customers["Discounted"]["discount_percent"] == 15
        assert customers["Discounted"]["discount_type"] == "early_adopter"
        assert customers["Plain"]["discount_percent"] == 0
        assert customers["Plain"]["currency"] == "eur"
        assert customers["Discounted"]["currency"] == "gbp"
        assert customers["Plain"]["has_subscription"] is True
