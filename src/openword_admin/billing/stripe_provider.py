"""Stripe-backed subscription provider for price migrations."""

import asyncio
import logging
from typing import Any

import stripe

from openword_admin.common.exceptions import SubscriptionProviderError

logger = logging.getLogger(__name__)


def _normalize_subscription(subscription: Any) -> dict[str, Any]:
    """Reduce a Stripe subscription to the fields migrations rely on."""
    items = (subscription.get("items") or {}).get("data") or []
    normalized = []
    for item in items:
        price = item.get("price") or {}
        normalized.append({
            "id": item.get("id"),
            "price": {"id": price.get("id"), "currency": price.get("currency")},
        })
    return {"id": subscription.get("id"), "items": normalized}


class StripeSubscriptionProvider:
    """Reads and mutates customer subscriptions through the Stripe SDK.

    The SDK is synchronous, so each call runs in a worker thread to keep
    the event loop free during batch runs.
    """

    def __init__(self, api_key: str, api_version: str = ""):
        self.api_key = api_key
        self.api_version = api_version

    def _request_options(self) -> dict[str, Any]:
        if not self.api_key:
            raise SubscriptionProviderError("Stripe not configured")
        options: dict[str, Any] = {"api_key": self.api_key}
        if self.api_version:
            options["stripe_version"] = self.api_version
        return options

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        options = self._request_options()
        try:
            subscription = await asyncio.to_thread(
                stripe.Subscription.retrieve, subscription_id, **options
            )
        except stripe.StripeError as e:
            raise SubscriptionProviderError(str(e.user_message or e)) from e
        return _normalize_subscription(subscription)

    async def update_subscription_item_price(
        self,
        subscription_id: str,
        item_id: str,
        new_price_id: str,
        proration: str = "none",
    ) -> None:
        """Swap an item's price; with proration "none" it applies next cycle."""
        options = self._request_options()
        try:
            await asyncio.to_thread(
                stripe.Subscription.modify,
                subscription_id,
                items=[{"id": item_id, "price": new_price_id}],
                proration_behavior=proration,
                **options,
            )
        except stripe.StripeError as e:
            raise SubscriptionProviderError(str(e.user_message or e)) from e

    async def list_tier_prices(self, tiers: list[str]) -> dict[str, dict[str, dict]]:
        """Active recurring prices grouped tier -> currency.

        A price belongs to a tier when its product name contains the tier
        name; the first matching tier wins.
        """
        options = self._request_options()
        try:
            prices = await asyncio.to_thread(
                stripe.Price.list, active=True, type="recurring", limit=100, **options
            )
            products = await asyncio.to_thread(
                stripe.Product.list, active=True, limit=50, **options
            )
        except stripe.StripeError as e:
            raise SubscriptionProviderError(str(e.user_message or e)) from e

        product_map = {product["id"]: product for product in products["data"]}
        by_tier: dict[str, dict[str, dict]] = {tier: {} for tier in tiers}

        for price in prices["data"]:
            product = product_map.get(price.get("product"))
            if product is None:
                continue
            product_name = (product.get("name") or "").lower()
            tier = next((t for t in tiers if t in product_name), None)
            if tier is None:
                continue
            recurring = price.get("recurring") or {}
            by_tier[tier][price["currency"].lower()] = {
                "price_id": price["id"],
                "amount": price.get("unit_amount"),
                "interval": recurring.get("interval") or "month",
                "product_id": product["id"],
                "product_name": product.get("name"),
            }

        return by_tier
