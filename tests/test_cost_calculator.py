"""
Tests for the cost calculator
Covers: default fee rates, exact arithmetic, negative payouts, monotonicity, stored-record rebuild
"""
from decimal import Decimal

import pytest

from cost_calculator import calculate_cost, breakdown_from_payment, to_decimal


class TestDefaultRates:
    """calculate_cost with the default 15% platform / 3% gateway rates"""

    def test_default_rates_breakdown(self):
        """100 base, 10 producer, 5 shipping -> 15 / 3 / 33 / 67"""
        result = calculate_cost(100, 10, 5)

        assert result.platform_fee == Decimal("15")
        assert result.payment_gateway_fee == Decimal("3")
        assert result.total_cost == Decimal("33")
        assert result.total_deductions == Decimal("33")
        assert result.net_payout == Decimal("67")
        print("✅ Default rates produce 15/3/33/67")

    def test_inputs_are_carried_through(self):
        result = calculate_cost(100, 10, 5)
        assert result.base_price == Decimal("100")
        assert result.producer_cost == Decimal("10")
        assert result.shipping_cost == Decimal("5")
        assert result.platform_fee_rate == Decimal("0.15")
        assert result.payment_gateway_fee_rate == Decimal("0.03")

    def test_float_rates_do_not_drift(self):
        """Floats are converted through str, so 0.1 + 0.2 style drift never appears"""
        result = calculate_cost(0.3, 0.1, 0.1, 0.0, 0.0)
        assert result.net_payout == Decimal("0.1")


class TestExactArithmetic:
    @pytest.mark.parametrize("base, producer, shipping, platform_rate, gateway_rate", [
        ("100", "10", "5", "0.15", "0.03"),
        ("19.99", "7.45", "3.99", "0.15", "0.03"),
        ("0", "0", "0", "0.5", "0.25"),
        ("1234.56", "0.01", "12.34", "0.099", "0.029"),
        ("49.95", "60", "0", "0", "0"),
    ])
    def test_net_payout_formula(self, base, producer, shipping, platform_rate, gateway_rate):
        """net = base - producer - shipping - base*platform - base*gateway, with no rounding"""
        base, producer, shipping = Decimal(base), Decimal(producer), Decimal(shipping)
        platform_rate, gateway_rate = Decimal(platform_rate), Decimal(gateway_rate)

        result = calculate_cost(base, producer, shipping, platform_rate, gateway_rate)

        expected = base - producer - shipping - base * platform_rate - base * gateway_rate
        assert result.net_payout == expected

    @pytest.mark.parametrize("price", ["0", "1", "19.99", "1000000.01"])
    def test_no_deductions_is_full_pass_through(self, price):
        result = calculate_cost(Decimal(price), 0, 0, 0, 0)
        assert result.net_payout == Decimal(price)

    def test_zero_inputs_do_not_raise(self):
        result = calculate_cost(0, 0, 0)
        assert result.net_payout == 0
        assert not result.is_negative_payout

    def test_no_hidden_rounding(self):
        """Fees keep sub-cent precision; rounding is a display concern"""
        result = calculate_cost(Decimal("10.01"), 0, 0)
        assert result.platform_fee == Decimal("1.5015")
        assert result.payment_gateway_fee == Decimal("0.3003")


class TestNegativePayout:
    def test_under_priced_order(self):
        """10 - 8 - 5 - 1.5 - 0.3 = -4.8, not clamped"""
        result = calculate_cost(10, 8, 5)

        assert result.net_payout == Decimal("-4.8")
        assert result.is_negative_payout
        assert result.as_dict()["net_payout"] == Decimal("-4.8")
        print("✅ Negative payout -4.8 is kept as is")


class TestMonotonicity:
    BASE = dict(base_price=Decimal("100"), producer_cost=Decimal("10"), shipping_cost=Decimal("5"),
                platform_fee_rate=Decimal("0.15"), payment_gateway_fee_rate=Decimal("0.03"))

    @pytest.mark.parametrize("field, bump", [
        ("producer_cost", Decimal("1")),
        ("shipping_cost", Decimal("0.01")),
        ("platform_fee_rate", Decimal("0.01")),
        ("payment_gateway_fee_rate", Decimal("0.001")),
    ])
    def test_raising_a_deduction_lowers_payout(self, field, bump):
        before = calculate_cost(**self.BASE)
        raised = dict(self.BASE)
        raised[field] += bump
        after = calculate_cost(**raised)

        assert after.net_payout < before.net_payout

    def test_rates_have_no_effect_on_zero_price(self):
        low = calculate_cost(0, 1, 1, Decimal("0.1"), Decimal("0.01"))
        high = calculate_cost(0, 1, 1, Decimal("0.9"), Decimal("0.5"))
        assert low.net_payout == high.net_payout == Decimal("-2")


class TestPurity:
    def test_identical_calls_give_identical_results(self):
        first = calculate_cost("19.99", "7.45", "3.99")
        second = calculate_cost("19.99", "7.45", "3.99")

        assert first == second
        assert first.as_dict() == second.as_dict()
        assert str(first.net_payout) == str(second.net_payout)

    def test_breakdown_is_immutable(self):
        result = calculate_cost(100, 10, 5)
        with pytest.raises(Exception):
            result.net_payout = Decimal("1000")


class TestStoredBreakdown:
    def test_rebuild_uses_stored_values(self):
        """Stored fees win even if they would not match today's rates"""
        payment = {
            "amount": Decimal("50"),
            "producer_cost": Decimal("20"),
            "shipping_cost": Decimal("5"),
            "platform_fee_rate": Decimal("0.10"),
            "payment_gateway_fee_rate": Decimal("0.02"),
            "platform_fee": Decimal("5.0"),
            "payment_gateway_fee": Decimal("1.0"),
            "total_deductions": Decimal("31"),
            "net_payout": Decimal("19"),
        }
        breakdown = breakdown_from_payment(payment)

        assert breakdown.base_price == Decimal("50")
        assert breakdown.platform_fee_rate == Decimal("0.10")
        assert breakdown.net_payout == Decimal("19")

    def test_to_decimal_handles_none_and_strings(self):
        assert to_decimal(None) == Decimal("0")
        assert to_decimal("12.50") == Decimal("12.50")
        assert to_decimal(0.15) == Decimal("0.15")


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
