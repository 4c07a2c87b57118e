"""Price-change notice rendering."""

import html
from datetime import datetime

CURRENCY_SYMBOLS = {"gbp": "£", "usd": "$", "eur": "€"}

TIER_DISPLAY_NAMES = {
    "basic": "Basic",
    "standard": "Standard",
    "pro": "Professional",
}

_CELL = "padding: 12px; border: 1px solid #e5e7eb;"
_CENTRED = "padding: 12px; text-align: center; border: 1px solid #e5e7eb;"


def format_price(minor_units: int | None, currency: str | None = "gbp") -> str:
    """Render minor units as a price, e.g. 1400 -> £14.00."""
    if minor_units is None:
        return "-"
    symbol = CURRENCY_SYMBOLS.get((currency or "gbp").lower(), "£")
    return f"{symbol}{minor_units / 100:.2f}"


def effective_date_label(when: datetime) -> str:
    return f"{when.day} {when:%B %Y}"


def notice_subject(effective_label: str) -> str:
    return f"Important: Open Word Pricing Update - Effective {effective_label}"


def render_price_change_notice(
    org_name: str,
    tier: str,
    effective_label: str,
    current_price: str,
    new_price: str,
    current_credit: str,
    new_credit: str,
) -> str:
    """HTML body comparing a customer's current and new pricing."""
    tier_name = html.escape(TIER_DISPLAY_NAMES.get(tier, tier))
    effective = html.escape(effective_label)
    current_price, new_price = html.escape(current_price), html.escape(new_price)
    current_credit, new_credit = html.escape(current_credit), html.escape(new_credit)

    return f"""
<p>Dear {html.escape(org_name)},</p>

<p>We're writing to let you know about upcoming changes to Open Word pricing,
effective from <strong>{effective}</strong>.</p>

<h3 style="color: #2563eb; margin-top: 25px;">Your Current Plan: {tier_name}</h3>

<table style="width: 100%; border-collapse: collapse; margin: 20px 0;">
  <tr style="background: #f3f4f6;">
    <th style="{_CELL}"></th>
    <th style="{_CENTRED}">Current</th>
    <th style="{_CENTRED}">New (from {effective})</th>
  </tr>
  <tr>
    <td style="{_CELL}"><strong>Monthly Subscription</strong></td>
    <td style="{_CENTRED}">{current_price}/month</td>
    <td style="{_CENTRED}">{new_price}/month</td>
  </tr>
  <tr style="background: #f9fafb;">
    <td style="{_CELL}"><strong>Credit Price</strong></td>
    <td style="{_CENTRED}">{current_credit}/credit</td>
    <td style="{_CENTRED}">{new_credit}/credit</td>
  </tr>
  <tr>
    <td style="{_CELL}"><strong>~30 mins streaming</strong></td>
    <td style="{_CENTRED}">{current_credit} (1 credit)</td>
    <td style="{_CENTRED}">{new_credit} (1 credit)</td>
  </tr>
</table>

<p style="margin-top: 20px;">The new pricing will apply to your next billing cycle after
<strong>{effective}</strong>.</p>

<p style="margin-top: 20px;">If you have any questions about these changes, please don't
hesitate to contact us.</p>

<p style="margin-top: 30px;">Thank you for being an Open Word customer.</p>
"""
