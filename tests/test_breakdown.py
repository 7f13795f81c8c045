"""
Tests for breakdown presentation: currency formatting, display rows and the HTML card
"""
from decimal import Decimal

import pytest

from breakdown import breakdown_rows, format_currency, format_rate, render_breakdown_html
from cost_calculator import calculate_cost


class TestFormatCurrency:
    @pytest.mark.parametrize("value, expected", [
        (Decimal("67"), "$67.00"),
        (Decimal("-4.8"), "-$4.80"),
        (Decimal("1.005"), "$1.01"),
        (Decimal("1234.5"), "$1,234.50"),
        (0, "$0.00"),
        (7.5, "$7.50"),
    ])
    def test_usd(self, value, expected):
        assert format_currency(value) == expected

    def test_other_currencies(self):
        assert format_currency(Decimal("12"), "EUR") == "€12.00"
        assert format_currency(Decimal("12"), "gbp") == "£12.00"
        assert format_currency(Decimal("12"), "CHF") == "CHF 12.00"

    def test_rate_labels(self):
        assert format_rate(Decimal("0.15")) == "15%"
        assert format_rate(Decimal("0.035")) == "3.5%"
        assert format_rate(Decimal("0")) == "0%"


class TestBreakdownRows:
    def test_row_order_and_tones(self):
        rows = breakdown_rows(calculate_cost(100, 10, 5))

        assert [r["key"] for r in rows] == [
            "base_price", "producer_cost", "shipping_cost", "platform_fee", "payment_gateway_fee", "net_payout"
        ]
        assert rows[0]["tone"] == "positive"
        assert all(r["tone"] == "negative" for r in rows[1:5])
        assert rows[-1]["tone"] == "total-positive"

    def test_deductions_are_negative_contributions(self):
        rows = {r["key"]: r for r in breakdown_rows(calculate_cost(100, 10, 5))}

        assert rows["producer_cost"]["value"] == Decimal("-10")
        assert rows["producer_cost"]["display"] == "-$10.00"
        assert rows["platform_fee"]["label"] == "Platform Fee (15%)"
        assert rows["platform_fee"]["display"] == "-$15.00"
        assert rows["payment_gateway_fee"]["label"] == "Payment Gateway Fee (3%)"
        assert rows["net_payout"]["display"] == "$67.00"

    def test_negative_payout_is_highlighted(self):
        rows = breakdown_rows(calculate_cost(10, 8, 5))
        net = rows[-1]

        assert net["tone"] == "total-negative"
        assert net["display"] == "-$4.80"
        assert net["value"] == Decimal("-4.8")


class TestBreakdownHtml:
    def test_card_contains_every_row(self):
        html = render_breakdown_html(calculate_cost(100, 10, 5))

        for label in ["Base Price", "Producer Cost", "Shipping", "Platform Fee (15%)",
                      "Payment Gateway Fee (3%)", "Net Payout"]:
            assert label in html, f"{label} missing from card"
        assert "$67.00" in html
        assert 'class="cost-value total-amount total-positive"' in html

    def test_negative_card(self):
        html = render_breakdown_html(calculate_cost(10, 8, 5))
        assert "total-negative" in html
        assert "-$4.80" in html

    def test_html_is_sanitized(self):
        """Only div/span/h4 with class attributes survive"""
        html = render_breakdown_html(calculate_cost(1, 0, 0))
        assert "<script" not in html
        assert "style=" not in html
        assert html.startswith('<div class="cost-breakdown-card">')


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
