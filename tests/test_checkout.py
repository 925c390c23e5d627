"""Checkout gating and payment webhook handling with the mock provider."""
import asyncio
import json
import uuid

import pytest

from dining.errors import (
    InvalidWebhookPayload,
    OrderFinalized,
    OrderNotFound,
    OrderPriceIsZero,
    PaymentVerificationError,
    UnhandledWebhookEvent,
)
from dining.models import OrderStatus
from dining.schemas import TokenClaims, UpdateOrderRequest
from dining.services.checkout import CheckoutService

from conftest import PIZZA_PRICE

SUCCESS_URL = "https://guest.example.com/paid"
CANCEL_URL = "https://guest.example.com/cancelled"


@pytest.fixture
def checkout(service, payments_repo, provider) -> CheckoutService:
    return CheckoutService(service, payments_repo, provider)


@pytest.fixture
async def order_id(service, seed):
    return (await service.get_or_create_current_order(seed.table_id)).id


def webhook(order_id, payment_id: str = "pi_123", amount: int = PIZZA_PRICE, event_type: str = "payment_intent.succeeded") -> bytes:
    return json.dumps({
        "type": event_type,
        "data": {
            "object": {
                "id": payment_id,
                "amount": amount,
                "currency": "eur",
                "metadata": {"order_id": str(order_id)} if order_id else {},
            }
        },
    }).encode()


# =============================================================================
# CHECKOUT SESSION
# =============================================================================

async def test_zero_total_order_cannot_be_paid(checkout, order_id):
    with pytest.raises(OrderPriceIsZero):
        await checkout.create_checkout(order_id, SUCCESS_URL, CANCEL_URL)


async def test_tip_only_order_can_be_paid(checkout, service, order_id, provider):
    await service.update_order(order_id, UpdateOrderRequest(tip_amount_in_cents=500), TokenClaims.anonymous())

    session = await checkout.create_checkout(order_id, SUCCESS_URL, CANCEL_URL)

    assert provider.sessions[session.session_id]["amount_in_cents"] == 500


async def test_checkout_charges_items_and_tip(checkout, service, order_id, provider, seed):
    await service.add_item_to_order(order_id, seed.pizza_id)
    await service.update_order(order_id, UpdateOrderRequest(tip_amount_in_cents=200), TokenClaims.anonymous())

    session = await checkout.create_checkout(order_id, SUCCESS_URL, CANCEL_URL)

    assert session.session_id.startswith("cs_mock_")
    assert session.url.endswith(session.session_id)
    charged = provider.sessions[session.session_id]
    assert charged["amount_in_cents"] == PIZZA_PRICE + 200
    assert charged["currency"] == "eur"
    assert charged["success_url"] == SUCCESS_URL


async def test_finalized_order_cannot_be_paid(checkout, service, order_id, seed):
    await service.add_item_to_order(order_id, seed.pizza_id)
    await service.update_order(
        order_id, UpdateOrderRequest(status=OrderStatus.CANCELLED), TokenClaims(user_id=seed.waiter_id, role=2)
    )

    with pytest.raises(OrderFinalized):
        await checkout.create_checkout(order_id, SUCCESS_URL, CANCEL_URL)


async def test_checkout_unknown_order(checkout):
    with pytest.raises(OrderNotFound):
        await checkout.create_checkout(uuid.uuid4(), SUCCESS_URL, CANCEL_URL)


# =============================================================================
# WEBHOOK
# =============================================================================

async def test_webhook_stores_payment_and_completes_order(checkout, service, order_id, payments_repo, seed):
    await service.add_item_to_order(order_id, seed.pizza_id)

    record, order = await checkout.handle_webhook_success(webhook(order_id), {})

    assert record.id is not None
    assert record.order_id == order_id
    assert record.amount_in_cents == PIZZA_PRICE
    assert record.provider == "mock"
    assert list(payments_repo.payments) == ["pi_123"]
    assert order.status == OrderStatus.COMPLETED
    assert (await service.get_order(order_id)).status == OrderStatus.COMPLETED


async def test_redelivered_webhook_is_idempotent(checkout, order_id, payments_repo):
    first, _ = await checkout.handle_webhook_success(webhook(order_id), {})
    second, order = await checkout.handle_webhook_success(webhook(order_id), {})

    assert first.id == second.id
    assert order.status == OrderStatus.COMPLETED
    assert len(payments_repo.payments) == 1


async def test_paid_order_is_no_longer_current(checkout, service, order_id, seed):
    await checkout.handle_webhook_success(webhook(order_id), {})

    next_order = await service.get_or_create_current_order(seed.table_id)

    assert next_order.id != order_id


async def test_payment_for_cancelled_order_keeps_it_cancelled(checkout, service, order_id, payments_repo, seed):
    await service.add_item_to_order(order_id, seed.pizza_id)
    await checkout.create_checkout(order_id, SUCCESS_URL, CANCEL_URL)
    await service.update_order(
        order_id, UpdateOrderRequest(status=OrderStatus.CANCELLED), TokenClaims(user_id=seed.waiter_id, role=2)
    )

    record, order = await checkout.handle_webhook_success(webhook(order_id), {})

    assert record.provider_payment_id in payments_repo.payments
    assert order.status == OrderStatus.CANCELLED
    assert (await service.get_order(order_id)).status == OrderStatus.CANCELLED


async def test_payment_completes_locked_order(checkout, service, order_id, seed):
    await service.add_item_to_order(order_id, seed.pizza_id)
    await service.update_order(order_id, UpdateOrderRequest(status=OrderStatus.LOCKED), TokenClaims.anonymous())

    _, order = await checkout.handle_webhook_success(webhook(order_id), {})

    assert order.status == OrderStatus.COMPLETED


async def test_payment_completion_waits_for_running_order_mutation(checkout, service, order_id):
    async with service._order_locks.hold(order_id):
        delivery = asyncio.create_task(checkout.handle_webhook_success(webhook(order_id), {}))
        await asyncio.sleep(0.01)

        assert not delivery.done()
        assert (await service.get_order(order_id)).status == OrderStatus.OPEN

    _, order = await delivery

    assert order.status == OrderStatus.COMPLETED
    assert len(service._order_locks) == 0


async def test_empty_webhook(checkout):
    with pytest.raises(InvalidWebhookPayload):
        await checkout.handle_webhook_success(b"", {})


async def test_unhandled_event(checkout, order_id, payments_repo):
    with pytest.raises(UnhandledWebhookEvent):
        await checkout.handle_webhook_success(webhook(order_id, event_type="charge.refunded"), {})

    assert payments_repo.payments == {}


@pytest.mark.parametrize("payload", [b"{oops", b"[1, 2]", webhook(None), webhook("not-a-uuid")])
async def test_unverifiable_webhook(checkout, payload, payments_repo):
    with pytest.raises(PaymentVerificationError):
        await checkout.handle_webhook_success(payload, {})

    assert payments_repo.payments == {}


async def test_webhook_for_unknown_order_stores_nothing(checkout, payments_repo):
    with pytest.raises(OrderNotFound):
        await checkout.handle_webhook_success(webhook(uuid.uuid4()), {})

    assert payments_repo.payments == {}


async def test_mock_provider_health(provider):
    assert await provider.health_check() is True
