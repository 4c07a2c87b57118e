"""Shared test fixtures for the OpenWord admin jobs."""

import pytest

from openword_admin.common.config import AdminSettings
from openword_admin.common.database import DatabaseManager
from openword_admin.common.exceptions import SubscriptionProviderError
from openword_admin.notifications.email_delivery import EmailResult
from openword_admin.organisations.models import OrganisationModel


def make_settings(**overrides) -> AdminSettings:
    defaults = {
        "db_url": "sqlite+aiosqlite://",
        "email_send_delay_ms": 0,
        "provider_call_delay_ms": 0,
        "startup_check_delay": 0,
    }
    defaults.update(overrides)
    return AdminSettings(**defaults)


class FakeSubscriptionProvider:
    """In-memory stand-in for the Stripe subscription API."""

    def __init__(self):
        self.subscriptions: dict[str, dict] = {}
        self.updates: list[dict] = []
        self.retrieve_calls: list[str] = []
        self.fail_retrieve: set[str] = set()
        self.fail_update: dict[str, str] = {}
        self.prices: dict = {}

    def add_subscription(self, subscription_id, price_id, currency="gbp", item_id=None):
        self.subscriptions[subscription_id] = {
            "id": subscription_id,
            "items": [{
                "id": item_id or f"si_{subscription_id}",
                "price": {"id": price_id, "currency": currency},
            }],
        }

    async def retrieve_subscription(self, subscription_id):
        self.retrieve_calls.append(subscription_id)
        if subscription_id in self.fail_retrieve or subscription_id not in self.subscriptions:
            raise SubscriptionProviderError(f"No such subscription: '{subscription_id}'")
        return self.subscriptions[subscription_id]

    async def update_subscription_item_price(
        self, subscription_id, item_id, new_price_id, proration="none",
    ):
        if subscription_id in self.fail_update:
            raise SubscriptionProviderError(self.fail_update[subscription_id])
        self.updates.append({
            "subscription_id": subscription_id,
            "item_id": item_id,
            "price_id": new_price_id,
            "proration": proration,
        })

    async def list_tier_prices(self, tiers):
        return self.prices


class FakeEmailSender:
    """Records emails instead of sending them."""

    def __init__(self):
        self.sent: list[dict] = []
        self.alerts: list[dict] = []
        self.fail_for: dict[str, str] = {}

    async def send_email(self, to_email, subject, html_body, display_name="Customer"):
        if to_email in self.fail_for:
            return EmailResult(success=False, error=self.fail_for[to_email])
        self.sent.append({
            "to": to_email, "subject": subject, "html": html_body, "name": display_name,
        })
        return EmailResult(success=True)

    async def send_alert(self, subject, message, priority="info"):
        self.alerts.append({"subject": subject, "message": message, "priority": priority})
        return EmailResult(success=True)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
async def db(settings):
    manager = DatabaseManager(settings)
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def provider():
    return FakeSubscriptionProvider()


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def add_org(db):
    """Insert an organisation; returns its id."""

    async def _add_org(name, **fields):
        values = {
            "billing_email": f"billing@{name.lower().replace(' ', '-')}.example",
            "subscription_tier": "basic",
            "subscription_status": "active",
            "stripe_customer_id": f"cus_{name.lower().replace(' ', '_')}",
            "stripe_subscription_id": f"sub_{name.lower().replace(' ', '_')}",
        }
        values.update(fields)
        async with db.get_session() as session:
            org = OrganisationModel(name=name, **values)
            session.add(org)
            await session.flush()
            return org.id

    return _add_org
