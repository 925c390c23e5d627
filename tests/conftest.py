"""Shared fixtures: seeded in-memory repositories, fake auth service, app client."""
import asyncio
import json
import os
import uuid
from dataclasses import dataclass
from uuid import UUID

# Provide default settings so tests never touch a real database or Stripe.
os.environ.setdefault("ENV_MODE", "development")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTH_SERVICE_URL", "http://auth.test/api/v1/auth/authorize")

import httpx
import pytest
from fastapi.testclient import TestClient

from dining.main import create_app
from dining.models import StaffRole
from dining.repository import InMemoryOrdersRepository, InMemoryPaymentsRepository
from dining.services.auth import AuthServiceClient
from dining.services.orders import OrdersService
from dining.services.payment import MockPaymentProvider

PIZZA_PRICE = 1500
WINE_PRICE = 800


@dataclass
class Seed:
    restaurant_id: UUID
    other_restaurant_id: UUID
    table_id: UUID
    other_table_id: UUID
    pizza_id: UUID
    wine_id: UUID
    foreign_item_id: UUID
    waiter_id: UUID
    manager_id: UUID
    outsider_id: UUID


@pytest.fixture
def repo() -> InMemoryOrdersRepository:
    return InMemoryOrdersRepository()


@pytest.fixture
def seed(repo: InMemoryOrdersRepository) -> Seed:
    restaurant_id = repo.add_restaurant("Trattoria", currency="eur")
    other_restaurant_id = repo.add_restaurant("Diner", currency="usd")

    waiter_id = uuid.uuid4()
    manager_id = uuid.uuid4()
    repo.add_staff(waiter_id, restaurant_id, StaffRole.WAITER)
    repo.add_staff(manager_id, restaurant_id, StaffRole.MANAGER)

    return Seed(
        restaurant_id=restaurant_id,
        other_restaurant_id=other_restaurant_id,
        table_id=repo.add_table(restaurant_id, "T1"),
        other_table_id=repo.add_table(restaurant_id, "T2"),
        pizza_id=repo.add_menu_item(restaurant_id, "Pizza", PIZZA_PRICE),
        wine_id=repo.add_menu_item(restaurant_id, "Wine", WINE_PRICE),
        foreign_item_id=repo.add_menu_item(other_restaurant_id, "Burger", 1200),
        waiter_id=waiter_id,
        manager_id=manager_id,
        outsider_id=uuid.uuid4(),
    )


@pytest.fixture
def service(repo: InMemoryOrdersRepository) -> OrdersService:
    return OrdersService(repo)


@pytest.fixture
def payments_repo() -> InMemoryPaymentsRepository:
    return InMemoryPaymentsRepository()


@pytest.fixture
def provider() -> MockPaymentProvider:
    return MockPaymentProvider()


# =============================================================================
# AUTH SERVICE
# =============================================================================

@pytest.fixture
def tokens(seed: Seed) -> dict[str, dict]:
    """Bearer token -> claims the fake auth service answers with."""
    return {
        "waiter-token": {"user_id": str(seed.waiter_id), "email": "w@example.com", "role": StaffRole.WAITER.value},
        "manager-token": {"user_id": str(seed.manager_id), "email": "m@example.com", "role": StaffRole.MANAGER.value},
        "outsider-token": {"user_id": str(seed.outsider_id), "email": "o@example.com", "role": StaffRole.WAITER.value},
        "customer-token": {"user_id": str(uuid.uuid4()), "email": "c@example.com", "role": 3},
    }


@pytest.fixture
def auth_client(tokens: dict[str, dict]) -> AuthServiceClient:
    def handler(request: httpx.Request) -> httpx.Response:
        token = request.headers.get("authorization", "").removeprefix("Bearer ")
        claims = tokens.get(token)
        if claims is None:
            return httpx.Response(401, json={"success": False, "error": "unauthorized"})
        return httpx.Response(200, json={"message": "ok", "data": claims})

    return AuthServiceClient(transport=httpx.MockTransport(handler))


# =============================================================================
# APPLICATION
# =============================================================================

@pytest.fixture
def app(repo, payments_repo, provider, auth_client):
    return create_app(
        orders_repository=repo,
        payments_repository=payments_repo,
        payment_provider=provider,
        auth_client=auth_client,
    )


@pytest.fixture
def client(app, seed):
    with TestClient(app) as test_client:
        yield test_client


# =============================================================================
# WEBSOCKETS
# =============================================================================

class FakeWebSocket:
    """Records frames; can be told to fail or stall on send."""

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.sent: list[str] = []
        self.close_codes: list[int] = []

    async def send_text(self, text: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("peer went away")
        self.sent.append(text)

    async def close(self, code: int = 1000) -> None:
        self.close_codes.append(code)

    def messages(self) -> list[dict]:
        return [json.loads(text) for text in self.sent]
