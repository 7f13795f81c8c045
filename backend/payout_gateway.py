# Payout Gateway
# Sends a settled payout to the payout provider and returns its reference

import logging
import uuid
from decimal import ROUND_HALF_UP
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from breakdown import CENT
from cost_calculator import to_decimal
from payout_errors import PayoutGatewayError

logger = logging.getLogger(__name__)


class PayoutGateway(ABC):
    @abstractmethod
    async def send_payout(self, payment: dict) -> str:
        """
        Send the payment's net payout to the producer.

        Returns:
            Provider reference for the transfer
        Raises:
            PayoutGatewayError if the provider rejects or cannot be reached
        """
        pass


class ManualPayoutGateway(PayoutGateway):
    """Used when no payout API is configured: the operator settles outside the system"""

    async def send_payout(self, payment: dict) -> str:
        reference = f"manual-{uuid.uuid4().hex[:12]}"
        logger.info(f"Payment {payment['id']} marked as settled manually ({reference})")
        return reference


class HttpPayoutGateway(PayoutGateway):
    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 10.0, transport=None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def send_payout(self, payment: dict) -> str:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload = {
            "payment_id": payment["id"],
            "producer_id": payment["producer_id"],
            "amount": str(to_decimal(payment["net_payout"]).quantize(CENT, rounding=ROUND_HALF_UP)),
            "currency": payment.get("currency", "USD"),
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}/payouts", headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Payout request failed for payment {payment['id']}: {str(e)}")
            raise PayoutGatewayError(f"Payout provider unreachable: {str(e)}")

        if response.status_code not in [200, 201]:
            logger.error(f"Payout rejected for payment {payment['id']}: {response.text[:500]}")
            raise PayoutGatewayError(f"Payout rejected ({response.status_code})")

        try:
            data = response.json() if response.text else {}
        except ValueError:
            logger.error(f"Unreadable payout response for payment {payment['id']}: {response.text[:500]}")
            raise PayoutGatewayError("Payout provider returned an unreadable response")
        if not isinstance(data, dict):
            raise PayoutGatewayError("Payout provider returned an unexpected response")

        reference = data.get("reference") or data.get("id")
        if not reference:
            raise PayoutGatewayError("Payout provider returned no reference")
        return str(reference)


def build_payout_gateway(settings) -> PayoutGateway:
    if settings.payout_api_url:
        return HttpPayoutGateway(settings.payout_api_url, settings.payout_api_key)
    return ManualPayoutGateway()
