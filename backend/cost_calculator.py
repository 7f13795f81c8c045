# Cost Calculator
# Platform fee, payment gateway fee and net payout for an order

from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Any, Dict, Union

from payout_config import DEFAULT_PLATFORM_FEE_RATE, DEFAULT_PAYMENT_GATEWAY_FEE_RATE

Number = Union[Decimal, int, float, str]


def to_decimal(value: Any) -> Decimal:
    """
    Convert a numeric value to Decimal without binary float drift.

    Floats go through str() so 0.15 becomes Decimal("0.15"). BSON Decimal128
    values (anything with a to_decimal() method) are unwrapped. None is zero.
    """
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if hasattr(value, "to_decimal"):
        return value.to_decimal()
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


@dataclass(frozen=True)
class CostBreakdown:
    base_price: Decimal
    producer_cost: Decimal
    shipping_cost: Decimal
    platform_fee_rate: Decimal
    payment_gateway_fee_rate: Decimal
    platform_fee: Decimal
    payment_gateway_fee: Decimal
    total_deductions: Decimal
    net_payout: Decimal

    @property
    def total_cost(self) -> Decimal:
        return self.total_deductions

    @property
    def is_negative_payout(self) -> bool:
        return self.net_payout < 0

    def as_dict(self) -> Dict[str, Decimal]:
        return asdict(self)


def calculate_cost(
    base_price: Number,
    producer_cost: Number,
    shipping_cost: Number,
    platform_fee_rate: Number = DEFAULT_PLATFORM_FEE_RATE,
    payment_gateway_fee_rate: Number = DEFAULT_PAYMENT_GATEWAY_FEE_RATE,
) -> CostBreakdown:
    """
    Compute the fee breakdown and net payout for an order.

    Args:
        base_price: Amount charged for the order
        producer_cost: Pass-through production cost
        shipping_cost: Pass-through shipping cost
        platform_fee_rate: Fraction of base_price kept by the platform
        payment_gateway_fee_rate: Fraction of base_price kept by the payment processor

    Returns:
        CostBreakdown with unrounded Decimal values. A negative net payout is
        returned as is; rounding happens only when formatting for display.
    """
    base = to_decimal(base_price)
    producer = to_decimal(producer_cost)
    shipping = to_decimal(shipping_cost)
    platform_rate = to_decimal(platform_fee_rate)
    gateway_rate = to_decimal(payment_gateway_fee_rate)

    platform_fee = base * platform_rate
    gateway_fee = base * gateway_rate
    total_deductions = producer + shipping + platform_fee + gateway_fee

    return CostBreakdown(
        base_price=base,
        producer_cost=producer,
        shipping_cost=shipping,
        platform_fee_rate=platform_rate,
        payment_gateway_fee_rate=gateway_rate,
        platform_fee=platform_fee,
        payment_gateway_fee=gateway_fee,
        total_deductions=total_deductions,
        net_payout=base - total_deductions,
    )


def breakdown_from_payment(payment: Dict[str, Any]) -> CostBreakdown:
    """Rebuild the breakdown frozen into a stored payment record (no recomputation)"""
    return CostBreakdown(
        base_price=to_decimal(payment.get("amount")),
        producer_cost=to_decimal(payment.get("producer_cost")),
        shipping_cost=to_decimal(payment.get("shipping_cost")),
        platform_fee_rate=to_decimal(payment.get("platform_fee_rate")),
        payment_gateway_fee_rate=to_decimal(payment.get("payment_gateway_fee_rate")),
        platform_fee=to_decimal(payment.get("platform_fee")),
        payment_gateway_fee=to_decimal(payment.get("payment_gateway_fee")),
        total_deductions=to_decimal(payment.get("total_deductions")),
        net_payout=to_decimal(payment.get("net_payout")),
    )
