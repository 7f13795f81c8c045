# Payment storage
# Orders and producers are read-only collaborators; payments are written once per order

import copy
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from bson.decimal128 import Decimal128
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from cost_calculator import to_decimal
from payout_errors import PersistenceError

logger = logging.getLogger(__name__)


class PaymentStore(ABC):
    @abstractmethod
    async def get_order(self, order_id: str, user_id: str) -> Optional[dict]:
        pass

    @abstractmethod
    async def get_producer(self, producer_id: str, user_id: str) -> Optional[dict]:
        pass

    @abstractmethod
    async def insert_payment_once(self, payment: dict) -> Tuple[dict, bool]:
        """
        Insert a payment unless one already exists for its order.

        Returns:
            Tuple of (stored payment, created: bool)
        """
        pass

    @abstractmethod
    async def get_payment(self, payment_id: str, user_id: str) -> Optional[dict]:
        pass

    @abstractmethod
    async def list_payments(
        self,
        user_id: str,
        status: Optional[str] = None,
        since: Optional[str] = None,
        limit: int = 50
    ) -> List[dict]:
        """List payments newest first, optionally filtered by status and created_at >= since"""
        pass

    @abstractmethod
    async def transition_payment(
        self,
        payment_id: str,
        user_id: str,
        from_status: str,
        to_status: str,
        fields: Optional[Dict[str, Any]] = None
    ) -> Optional[dict]:
        """
        Compare-and-set a payment's status.
        Returns the updated payment, or None if it was not in from_status.
        """
        pass

    async def ensure_indexes(self) -> None:
        pass

    def close(self) -> None:
        pass


# ============ MONGODB ============

def _to_mongo(doc: dict) -> dict:
    return {k: Decimal128(str(v)) if isinstance(v, Decimal) else v for k, v in doc.items()}


def _from_mongo(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    return {k: to_decimal(v) if isinstance(v, Decimal128) else v for k, v in doc.items()}


class MongoPaymentStore(PaymentStore):
    def __init__(self, mongo_url: str, db_name: str, client: Optional[AsyncIOMotorClient] = None):
        self.client = client or AsyncIOMotorClient(mongo_url)
        self.db = self.client[db_name]

    async def ensure_indexes(self) -> None:
        # One payment per order
        await self.db.payments.create_index("order_id", unique=True)
        await self.db.payments.create_index("id", unique=True)
        await self.db.payments.create_index([("user_id", 1), ("created_at", -1)])

    async def get_order(self, order_id: str, user_id: str) -> Optional[dict]:
        order = await self.db.orders.find_one({"id": order_id, "user_id": user_id}, {"_id": 0})
        return _from_mongo(order)

    async def get_producer(self, producer_id: str, user_id: str) -> Optional[dict]:
        producer = await self.db.producers.find_one({"id": producer_id, "user_id": user_id}, {"_id": 0})
        return _from_mongo(producer)

    async def insert_payment_once(self, payment: dict) -> Tuple[dict, bool]:
        doc = _to_mongo(payment)
        doc.pop("order_id")

        try:
            result = await self.db.payments.find_one_and_update(
                {"order_id": payment["order_id"]},
                {"$setOnInsert": doc},
                upsert=True,
                projection={"_id": 0},
                return_document=True
            )
        except DuplicateKeyError:
            # Lost a concurrent upsert race on the unique index
            result = await self.db.payments.find_one({"order_id": payment["order_id"]}, {"_id": 0})
            if result is None:
                raise PersistenceError(f"Payment for order {payment['order_id']} could not be stored")
        except PyMongoError as e:
            logger.error(f"Payment insert failed for order {payment['order_id']}: {str(e)}")
            raise PersistenceError(f"Failed to store payment: {str(e)}")

        stored = _from_mongo(result)
        return stored, stored["id"] == payment["id"]

    async def get_payment(self, payment_id: str, user_id: str) -> Optional[dict]:
        payment = await self.db.payments.find_one({"id": payment_id, "user_id": user_id}, {"_id": 0})
        return _from_mongo(payment)

    async def list_payments(
        self,
        user_id: str,
        status: Optional[str] = None,
        since: Optional[str] = None,
        limit: int = 50
    ) -> List[dict]:
        query = {"user_id": user_id}
        if status:
            query["status"] = status
        if since:
            query["created_at"] = {"$gte": since}

        cursor = self.db.payments.find(query, {"_id": 0}).sort("created_at", -1)
        payments = await cursor.to_list(limit)
        return [_from_mongo(p) for p in payments]

    async def transition_payment(
        self,
        payment_id: str,
        user_id: str,
        from_status: str,
        to_status: str,
        fields: Optional[Dict[str, Any]] = None
    ) -> Optional[dict]:
        update_data = _to_mongo(dict(fields or {}))
        update_data["status"] = to_status

        try:
            result = await self.db.payments.find_one_and_update(
                {"id": payment_id, "user_id": user_id, "status": from_status},
                {"$set": update_data},
                projection={"_id": 0},
                return_document=True
            )
        except PyMongoError as e:
            logger.error(f"Payment {payment_id} status update failed: {str(e)}")
            raise PersistenceError(f"Failed to update payment: {str(e)}")

        return _from_mongo(result)

    def close(self) -> None:
        self.client.close()


# ============ IN-MEMORY ============

class InMemoryPaymentStore(PaymentStore):
    """
    Dict-backed store for local runs and tests.

    Every write completes without awaiting, so check-then-write sequences
    are atomic on the event loop.
    """

    def __init__(self, orders: Optional[List[dict]] = None, producers: Optional[List[dict]] = None):
        self.orders: Dict[str, dict] = {}
        self.producers: Dict[str, dict] = {}
        self.payments: Dict[str, dict] = {}
        for order in orders or []:
            self.add_order(order)
        for producer in producers or []:
            self.add_producer(producer)

    def add_order(self, order: dict) -> None:
        self.orders[order["id"]] = copy.deepcopy(order)

    def add_producer(self, producer: dict) -> None:
        self.producers[producer["id"]] = copy.deepcopy(producer)

    @staticmethod
    def _owned(doc: Optional[dict], user_id: str) -> Optional[dict]:
        if doc is None or doc.get("user_id") != user_id:
            return None
        return copy.deepcopy(doc)

    async def get_order(self, order_id: str, user_id: str) -> Optional[dict]:
        return self._owned(self.orders.get(order_id), user_id)

    async def get_producer(self, producer_id: str, user_id: str) -> Optional[dict]:
        return self._owned(self.producers.get(producer_id), user_id)

    async def insert_payment_once(self, payment: dict) -> Tuple[dict, bool]:
        for existing in self.payments.values():
            if existing["order_id"] == payment["order_id"]:
                return copy.deepcopy(existing), False
        self.payments[payment["id"]] = copy.deepcopy(payment)
        return copy.deepcopy(payment), True

    async def get_payment(self, payment_id: str, user_id: str) -> Optional[dict]:
        return self._owned(self.payments.get(payment_id), user_id)

    async def list_payments(
        self,
        user_id: str,
        status: Optional[str] = None,
        since: Optional[str] = None,
        limit: int = 50
    ) -> List[dict]:
        payments = [
            p for p in self.payments.values()
            if p["user_id"] == user_id
            and (not status or p["status"] == status)
            and (not since or p["created_at"] >= since)
        ]
        payments.sort(key=lambda p: p["created_at"], reverse=True)
        return [copy.deepcopy(p) for p in payments[:limit]]

    async def transition_payment(
        self,
        payment_id: str,
        user_id: str,
        from_status: str,
        to_status: str,
        fields: Optional[Dict[str, Any]] = None
    ) -> Optional[dict]:
        payment = self.payments.get(payment_id)
        if payment is None or payment["user_id"] != user_id or payment["status"] != from_status:
            return None
        payment.update(fields or {})
        payment["status"] = to_status
        return copy.deepcopy(payment)
