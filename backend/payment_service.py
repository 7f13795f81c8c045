# Payment distribution service
# Computes an order's payout split, stores it once, and drives the payout lifecycle

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from cost_calculator import CostBreakdown, calculate_cost, breakdown_from_payment, to_decimal
from payout_errors import (
    DuplicateOrderError,
    InvalidInputError,
    InvalidStatusTransitionError,
    NotFoundError,
    PayoutGatewayError,
    PersistenceError,
)
from payment_store import PaymentStore
from payout_config import (
    PAYMENT_STATUSES,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    Settings,
    can_update_externally,
)
from payout_gateway import PayoutGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """Authenticated caller plus the collaborators an operation may touch"""
    user_id: str
    store: PaymentStore
    settings: Settings


@dataclass(frozen=True)
class DistributionResult:
    payment: dict
    breakdown: CostBreakdown
    created: bool


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _require_non_negative(values: Dict[str, Decimal]) -> None:
    negative = [name for name, value in values.items() if value < 0]
    if negative:
        raise InvalidInputError(f"Negative amounts are not allowed: {', '.join(negative)}")


# ============ DISTRIBUTION ============

async def distribute_payment(ctx: RequestContext, order_id: str, producer_id: str) -> DistributionResult:
    """
    Split an order's charged amount into producer cost, shipping, fees and net
    payout, and store it as a pending payment.

    At most one payment exists per order: a repeated call returns the stored
    payment with created=False and writes nothing.
    """
    order = await ctx.store.get_order(order_id, ctx.user_id)
    if not order:
        raise NotFoundError("Order not found")

    producer = await ctx.store.get_producer(producer_id, ctx.user_id)
    if not producer:
        raise NotFoundError("Producer not found")

    base_price = to_decimal(order.get("total_amount"))
    producer_cost = to_decimal(producer.get("base_cost"))
    if producer.get("shipping_cost") is not None:
        shipping_cost = to_decimal(producer["shipping_cost"])
    else:
        shipping_cost = to_decimal(order.get("shipping_cost"))

    _require_non_negative({
        "total_amount": base_price,
        "base_cost": producer_cost,
        "shipping_cost": shipping_cost,
    })

    breakdown = calculate_cost(
        base_price,
        producer_cost,
        shipping_cost,
        ctx.settings.platform_fee_rate,
        ctx.settings.payment_gateway_fee_rate,
    )

    now = _now()
    payment = {
        "id": str(uuid.uuid4()),
        "order_id": order_id,
        "producer_id": producer_id,
        "user_id": ctx.user_id,
        "amount": breakdown.base_price,
        "producer_cost": breakdown.producer_cost,
        "shipping_cost": breakdown.shipping_cost,
        "platform_fee_rate": breakdown.platform_fee_rate,
        "payment_gateway_fee_rate": breakdown.payment_gateway_fee_rate,
        "platform_fee": breakdown.platform_fee,
        "payment_gateway_fee": breakdown.payment_gateway_fee,
        "total_deductions": breakdown.total_deductions,
        "net_payout": breakdown.net_payout,
        "currency": order.get("currency") or ctx.settings.default_currency,
        "status": STATUS_PENDING,
        "payout_reference": None,
        "error_message": None,
        "settlement_date": None,
        "created_at": now,
        "updated_at": now,
    }

    stored, created = await ctx.store.insert_payment_once(payment)

    if not created and stored.get("user_id") != ctx.user_id:
        # Order ids are unique across accounts
        logger.warning(f"Order {order_id} already has a payment under another account")
        raise DuplicateOrderError(f"Order {order_id} already has a payment")

    if not created:
        logger.info(f"Order {order_id} already distributed as payment {stored['id']}")
        return DistributionResult(payment=stored, breakdown=breakdown_from_payment(stored), created=False)

    if breakdown.is_negative_payout:
        logger.warning(f"Order {order_id} is under-priced: net payout {breakdown.net_payout}")
    logger.info(f"Distributed order {order_id} to producer {producer_id} as payment {stored['id']}")
    return DistributionResult(payment=stored, breakdown=breakdown, created=True)


# ============ QUERIES ============

async def get_payment(ctx: RequestContext, payment_id: str) -> dict:
    payment = await ctx.store.get_payment(payment_id, ctx.user_id)
    if not payment:
        raise NotFoundError("Payment not found")
    return payment


async def list_payments(
    ctx: RequestContext,
    status: Optional[str] = None,
    days: Optional[int] = None,
    limit: int = 50
) -> List[dict]:
    if status and status not in PAYMENT_STATUSES:
        raise InvalidInputError(f"Unknown payment status: {status}")
    since = None
    if days:
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
    return await ctx.store.list_payments(ctx.user_id, status=status, since=since, limit=limit)


def compute_payment_stats(payments: List[dict]) -> dict:
    """Revenue, payout totals, margin and status counts for a set of payments"""
    counts = {status: 0 for status in PAYMENT_STATUSES}
    total_revenue = Decimal("0")
    pending_payouts = Decimal("0")
    completed_payouts = Decimal("0")
    margins = []

    for p in payments:
        amount = to_decimal(p.get("amount"))
        net_payout = to_decimal(p.get("net_payout"))
        status = p.get("status")
        if status in counts:
            counts[status] += 1

        total_revenue += amount
        if status == STATUS_PENDING:
            pending_payouts += net_payout
        elif status == STATUS_COMPLETED:
            completed_payouts += net_payout
            producer_cost = to_decimal(p.get("producer_cost"))
            if amount > 0 and producer_cost > 0:
                margins.append((amount - producer_cost) / amount * 100)

    average_margin = Decimal("0")
    if margins:
        average_margin = (sum(margins) / len(margins)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)

    return {
        "total_revenue": total_revenue,
        "pending_payouts": pending_payouts,
        "completed_payouts": completed_payouts,
        "average_margin": average_margin,
        "pending_count": counts[STATUS_PENDING],
        "counts": counts,
        "total": len(payments),
    }


# ============ LIFECYCLE ============

async def update_payment_status(ctx: RequestContext, payment_id: str, status: str) -> dict:
    """
    Apply an externally driven status change (marketplace sync, refunds, retries).
    A payment in processing belongs to process_payout and cannot be moved from here.
    """
    if status not in PAYMENT_STATUSES:
        raise InvalidInputError(f"Unknown payment status: {status}")

    payment = await get_payment(ctx, payment_id)
    current = payment["status"]
    if current == STATUS_PROCESSING:
        raise InvalidStatusTransitionError(f"Payment {payment_id} is being paid out")
    if not can_update_externally(current, status):
        raise InvalidStatusTransitionError(f"Cannot move payment from {current} to {status}")

    fields = {"updated_at": _now()}
    if status == STATUS_COMPLETED:
        fields["settlement_date"] = fields["updated_at"]
    if status == STATUS_PENDING:
        fields["error_message"] = None

    updated = await ctx.store.transition_payment(payment_id, ctx.user_id, current, status, fields)
    if not updated:
        raise InvalidStatusTransitionError(f"Payment {payment_id} changed status concurrently")

    logger.info(f"Payment {payment_id}: {current} -> {status}")
    return updated


async def process_payout(ctx: RequestContext, payment_id: str, gateway: PayoutGateway) -> dict:
    """
    Pay out a pending payment through the gateway.

    The payment is claimed with a pending -> processing compare-and-set, so two
    concurrent calls cannot both send money. The result is only recorded once
    the gateway answers; if the caller goes away first the claim is released.
    """
    payment = await get_payment(ctx, payment_id)
    if payment["status"] != STATUS_PENDING:
        raise InvalidStatusTransitionError(f"Only pending payments can be processed (status: {payment['status']})")
    if to_decimal(payment["net_payout"]) < 0:
        raise InvalidInputError("Cannot process a negative payout")

    claimed = await ctx.store.transition_payment(
        payment_id, ctx.user_id, STATUS_PENDING, STATUS_PROCESSING, {"updated_at": _now()}
    )
    if not claimed:
        raise InvalidStatusTransitionError(f"Payment {payment_id} is already being processed")

    try:
        reference = await gateway.send_payout(claimed)
    except asyncio.CancelledError:
        logger.warning(f"Payout for payment {payment_id} cancelled, releasing claim")
        await ctx.store.transition_payment(
            payment_id, ctx.user_id, STATUS_PROCESSING, STATUS_PENDING, {"updated_at": _now()}
        )
        raise
    except PayoutGatewayError as e:
        logger.error(f"Payout failed for payment {payment_id}: {e.message}")
        await ctx.store.transition_payment(
            payment_id, ctx.user_id, STATUS_PROCESSING, STATUS_FAILED,
            {"error_message": e.message, "updated_at": _now()}
        )
        raise

    now = _now()
    completed = await ctx.store.transition_payment(
        payment_id, ctx.user_id, STATUS_PROCESSING, STATUS_COMPLETED,
        {"payout_reference": reference, "settlement_date": now, "updated_at": now, "error_message": None}
    )
    if not completed:
        # Money has left; the record must be reconciled by hand
        logger.error(f"Payment {payment_id} was paid out ({reference}) but left processing during the payout")
        raise PersistenceError(f"Payment {payment_id} was paid out ({reference}) but its record changed concurrently")
    logger.info(f"Payment {payment_id} paid out ({reference})")
    return completed
