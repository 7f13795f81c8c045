# Breakdown presentation
# Currency formatting and display rows / HTML card for a CostBreakdown

from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List

import bleach

from cost_calculator import CostBreakdown, to_decimal
from payout_config import DEFAULT_CURRENCY, get_currency_symbol

CENT = Decimal("0.01")

# HTML sanitization config for breakdown cards
ALLOWED_TAGS = ['div', 'span', 'h4']
ALLOWED_ATTRIBUTES = {'div': ['class'], 'span': ['class'], 'h4': ['class']}


def format_currency(value, currency: str = DEFAULT_CURRENCY) -> str:
    """Format an amount to 2 decimals with its currency symbol, e.g. -$4.80"""
    amount = to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    return f"{sign}{get_currency_symbol(currency)}{abs(amount):,.2f}"


def format_rate(rate: Decimal) -> str:
    """0.15 -> '15%', 0.035 -> '3.5%'"""
    percent = (to_decimal(rate) * 100).normalize()
    return f"{percent:f}%"


def breakdown_rows(breakdown: CostBreakdown, currency: str = DEFAULT_CURRENCY) -> List[Dict]:
    """
    Ordered display rows for a breakdown.

    Deductions are shown as negative contributions; the net payout row is
    toned 'total-negative' when the order is under-priced.
    """
    deductions = [
        ("producer_cost", "Producer Cost", breakdown.producer_cost),
        ("shipping_cost", "Shipping", breakdown.shipping_cost),
        ("platform_fee", f"Platform Fee ({format_rate(breakdown.platform_fee_rate)})", breakdown.platform_fee),
        (
            "payment_gateway_fee",
            f"Payment Gateway Fee ({format_rate(breakdown.payment_gateway_fee_rate)})",
            breakdown.payment_gateway_fee,
        ),
    ]

    rows = [{
        "key": "base_price",
        "label": "Base Price",
        "value": breakdown.base_price,
        "display": format_currency(breakdown.base_price, currency),
        "tone": "positive",
    }]
    for key, label, value in deductions:
        rows.append({
            "key": key,
            "label": label,
            "value": -value,
            "display": format_currency(-value, currency),
            "tone": "negative",
        })
    rows.append({
        "key": "net_payout",
        "label": "Net Payout",
        "value": breakdown.net_payout,
        "display": format_currency(breakdown.net_payout, currency),
        "tone": "total-negative" if breakdown.is_negative_payout else "total-positive",
    })
    return rows


def render_breakdown_html(breakdown: CostBreakdown, currency: str = DEFAULT_CURRENCY) -> str:
    """Render the breakdown as a sanitized HTML card"""
    items = []
    for row in breakdown_rows(breakdown, currency):
        if row["key"] == "net_payout":
            items.append('<div class="cost-divider"></div>')
            items.append(
                f'<div class="cost-item total"><span class="cost-label">{row["label"]}</span>'
                f'<span class="cost-value total-amount {row["tone"]}">{row["display"]}</span></div>'
            )
        else:
            items.append(
                f'<div class="cost-item"><span class="cost-label">{row["label"]}</span>'
                f'<span class="cost-value {row["tone"]}">{row["display"]}</span></div>'
            )

    html = (
        '<div class="cost-breakdown-card">'
        '<h4 class="cost-breakdown-title">Cost Breakdown</h4>'
        f'<div class="cost-items">{"".join(items)}</div>'
        '</div>'
    )
    return bleach.clean(html, tags=ALLOWED_TAGS, attributes=ALLOWED_ATTRIBUTES, strip=True)
