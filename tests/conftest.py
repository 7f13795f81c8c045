import os

# server.py builds a module-level app from the environment on import
os.environ["STORAGE_BACKEND"] = "memory"

import pytest
from fastapi.testclient import TestClient

from payment_store import InMemoryPaymentStore
from payout_config import Settings
from server import create_app, create_jwt_token

TEST_SECRET = "test-secret-for-the-payout-service"
OWNER_ID = "user-1"


@pytest.fixture
def settings():
    return Settings(
        storage_backend="memory",
        jwt_secret=TEST_SECRET,
        admin_password="admin123",
        owner_id=OWNER_ID,
    )


@pytest.fixture
def store():
    """Store seeded with one order/producer pair per scenario"""
    return InMemoryPaymentStore(
        orders=[
            {"id": "order-1", "user_id": OWNER_ID, "total_amount": 50, "shipping_cost": 5, "currency": "USD"},
            {"id": "order-cheap", "user_id": OWNER_ID, "total_amount": 10, "shipping_cost": 5},
            {"id": "order-other-user", "user_id": "user-2", "total_amount": 80, "shipping_cost": 4},
        ],
        producers=[
            {"id": "producer-1", "user_id": OWNER_ID, "base_cost": 20, "shipping_cost": None},
            {"id": "producer-own-shipping", "user_id": OWNER_ID, "base_cost": 8, "shipping_cost": 5},
            {"id": "producer-other-user", "user_id": "user-2", "base_cost": 10},
        ],
    )


@pytest.fixture
def client(settings, store):
    app = create_app(settings=settings, store=store)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers():
    token = create_jwt_token({"sub": OWNER_ID, "role": "admin"}, TEST_SECRET)
    return {"Authorization": f"Bearer {token}"}
