"""HTTP and websocket surface, driven through the FastAPI test client."""
import json
import uuid

import pytest
from starlette.websockets import WebSocketDisconnect

from conftest import PIZZA_PRICE, WINE_PRICE
from dining.services.realtime.handler import UNMARSHAL_ERROR

API = "/api/v1"


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def current_order_id(client, table_id) -> str:
    response = client.get(f"{API}/orders/current", params={"tableId": str(table_id)})
    assert response.status_code == 200
    return response.json()["data"]["id"]


def add_item(client, order_id, item_id):
    return client.post(f"{API}/orders/{order_id}/items", json={"item_id": str(item_id)})


def lock(client, order_id):
    response = client.patch(f"{API}/orders/{order_id}", json={"status": "locked"})
    assert response.status_code == 200
    return response


def ready(ws) -> None:
    """Round-trip one frame so the connection is known to be subscribed."""
    ws.send_text("ping")
    assert ws.receive_json() == {"type": "error", "data": UNMARSHAL_ERROR}


# =============================================================================
# ORDERS
# =============================================================================

def test_current_order_is_stable(client, seed):
    first = current_order_id(client, seed.table_id)

    assert current_order_id(client, seed.table_id) == first
    assert current_order_id(client, seed.other_table_id) != first


def test_current_order_for_unknown_table(client):
    response = client.get(f"{API}/orders/current", params={"tableId": str(uuid.uuid4())})

    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "table with this id does not exist"


def test_current_order_requires_table_id(client):
    assert client.get(f"{API}/orders/current").status_code == 422


def test_get_order(client, seed):
    order_id = current_order_id(client, seed.table_id)

    response = client.get(f"{API}/orders/{order_id}")

    assert response.status_code == 200
    order = response.json()["data"]
    assert order["id"] == order_id
    assert order["status"] == "open"
    assert order["currency"] == "eur"
    assert order["total_price_in_cents"] == 0
    assert order["items"] == []


def test_get_unknown_order(client):
    response = client.get(f"{API}/orders/{uuid.uuid4()}")

    assert response.status_code == 404
    assert response.json()["error"] == "order with this id does not exist"


def test_add_and_delete_items(client, seed):
    order_id = current_order_id(client, seed.table_id)

    add_item(client, order_id, seed.pizza_id)
    response = add_item(client, order_id, seed.wine_id)

    assert response.status_code == 200
    order = response.json()["data"]
    assert order["total_price_in_cents"] == PIZZA_PRICE + WINE_PRICE
    assert "restaurant_id" not in order["items"][0]

    pizza_line = next(i for i in order["items"] if i["name"] == "Pizza")
    response = client.request("DELETE", f"{API}/orders/{order_id}/items", json={"item_id": pizza_line["id"]})

    assert response.status_code == 200
    assert response.json()["data"]["total_price_in_cents"] == WINE_PRICE


def test_add_foreign_item(client, seed):
    order_id = current_order_id(client, seed.table_id)

    response = add_item(client, order_id, seed.foreign_item_id)

    assert response.status_code == 400
    assert response.json()["error"] == "item does not belong to this restaurant"


def test_add_item_to_locked_order(client, seed):
    order_id = current_order_id(client, seed.table_id)
    lock(client, order_id)

    response = add_item(client, order_id, seed.pizza_id)

    assert response.status_code == 409
    assert response.json()["error"] == "order is not open"


def test_empty_patch(client, seed):
    order_id = current_order_id(client, seed.table_id)

    response = client.patch(f"{API}/orders/{order_id}", json={})

    assert response.status_code == 400
    assert response.json()["error"] == "payload is empty"


def test_tip_validation(client, seed):
    order_id = current_order_id(client, seed.table_id)

    assert client.patch(f"{API}/orders/{order_id}", json={"tip_amount_in_cents": -1}).status_code == 422
    assert client.patch(f"{API}/orders/{order_id}", json={"status": "eaten"}).status_code == 422


def test_anonymous_cannot_complete_locked_order(client, seed):
    order_id = current_order_id(client, seed.table_id)
    lock(client, order_id)

    response = client.patch(f"{API}/orders/{order_id}", json={"status": "completed"})
    assert response.status_code == 403
    assert response.json()["error"] == "user cannot edit status of this order"

    response = client.patch(
        f"{API}/orders/{order_id}", json={"status": "completed"}, headers=bearer("waiter-token")
    )
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "completed"

    response = client.patch(f"{API}/orders/{order_id}", json={"tip_amount_in_cents": 100})
    assert response.status_code == 409


def test_rejected_token_falls_back_to_anonymous(client, seed):
    order_id = current_order_id(client, seed.table_id)

    response = client.patch(
        f"{API}/orders/{order_id}", json={"status": "locked"}, headers=bearer("not-a-token")
    )

    assert response.status_code == 200


def test_outsider_cannot_cancel_locked_order(client, seed):
    order_id = current_order_id(client, seed.table_id)
    lock(client, order_id)

    response = client.patch(
        f"{API}/orders/{order_id}", json={"status": "cancelled"}, headers=bearer("outsider-token")
    )

    assert response.status_code == 403
    assert response.json()["error"] == "this user cannot edit locked orders"


# =============================================================================
# WAITERS
# =============================================================================

def test_waiter_assigns_and_removes_self(client, seed):
    order_id = current_order_id(client, seed.table_id)

    response = client.post(f"{API}/orders/{order_id}/waiters", headers=bearer("waiter-token"))
    assert response.status_code == 200
    [assignment] = response.json()["data"]["waiters"]
    assert assignment["user_id"] == str(seed.waiter_id)

    response = client.request(
        "DELETE",
        f"{API}/orders/{order_id}/waiters",
        json={"assign_id": assignment["id"]},
        headers=bearer("waiter-token"),
    )
    assert response.status_code == 200
    assert response.json()["data"]["waiters"] == []


@pytest.mark.parametrize(
    "headers, status_code",
    [({}, 401), (bearer("bogus"), 401), (bearer("customer-token"), 403), (bearer("outsider-token"), 403)],
)
def test_waiter_assignment_access(client, seed, headers, status_code):
    order_id = current_order_id(client, seed.table_id)

    response = client.post(f"{API}/orders/{order_id}/waiters", headers=headers)

    assert response.status_code == status_code
    assert response.json()["success"] is False


def test_remove_unknown_assignment(client, seed):
    order_id = current_order_id(client, seed.table_id)

    response = client.request(
        "DELETE",
        f"{API}/orders/{order_id}/waiters",
        json={"assign_id": str(uuid.uuid4())},
        headers=bearer("manager-token"),
    )

    assert response.status_code == 404


# =============================================================================
# PAYMENTS
# =============================================================================

def test_checkout_session(client, seed, provider):
    order_id = current_order_id(client, seed.table_id)
    add_item(client, order_id, seed.pizza_id)

    response = client.post(
        f"{API}/orders/{order_id}/payments",
        json={"success_url": "https://ok", "cancel_url": "https://cancel"},
    )

    assert response.status_code == 200
    session = response.json()["data"]
    assert session["url"].endswith(session["session_id"])
    assert provider.sessions[session["session_id"]]["amount_in_cents"] == PIZZA_PRICE


def test_checkout_of_empty_order(client, seed):
    order_id = current_order_id(client, seed.table_id)

    response = client.post(
        f"{API}/orders/{order_id}/payments",
        json={"success_url": "https://ok", "cancel_url": "https://cancel"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "order total price and tip amount are 0"


def test_webhook_completes_order_and_notifies_subscribers(client, seed):
    order_id = current_order_id(client, seed.table_id)
    add_item(client, order_id, seed.pizza_id)
    payload = json.dumps({
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": "pi_1", "amount": PIZZA_PRICE, "currency": "eur", "metadata": {"order_id": order_id}}},
    })

    with client.websocket_connect(f"{API}/orders/{order_id}/ws") as ws:
        ready(ws)

        response = client.post(f"{API}/payments/webhook", content=payload)

        assert response.status_code == 200
        assert response.json()["data"]["provider_payment_id"] == "pi_1"
        message = ws.receive_json()
        assert message["type"] == "update_order"
        assert message["data"]["status"] == "completed"

    assert current_order_id(client, seed.table_id) != order_id


def test_webhook_for_cancelled_order_keeps_it_cancelled(client, seed):
    order_id = current_order_id(client, seed.table_id)
    add_item(client, order_id, seed.pizza_id)
    response = client.patch(
        f"{API}/orders/{order_id}", json={"status": "cancelled"}, headers=bearer("waiter-token")
    )
    assert response.status_code == 200
    payload = json.dumps({
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": "pi_2", "amount": PIZZA_PRICE, "currency": "eur", "metadata": {"order_id": order_id}}},
    })

    with client.websocket_connect(f"{API}/orders/{order_id}/ws") as ws:
        ready(ws)

        response = client.post(f"{API}/payments/webhook", content=payload)

        assert response.status_code == 200
        assert ws.receive_json()["data"]["status"] == "cancelled"

    assert client.get(f"{API}/orders/{order_id}").json()["data"]["status"] == "cancelled"


def test_webhook_rejects_bad_payloads(client):
    assert client.post(f"{API}/payments/webhook", content=b"").status_code == 400
    assert client.post(f"{API}/payments/webhook", content=b'{"type": "charge.refunded"}').status_code == 400


# =============================================================================
# HEALTH
# =============================================================================

def test_health(client, seed):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "operational"
    assert body["database"] == "healthy"
    assert body["payment_service"] == "healthy"
    assert body["realtime_orders"] == 0


# =============================================================================
# WEBSOCKETS
# =============================================================================

def test_websocket_for_unknown_order_is_rejected(client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect(f"{API}/orders/{uuid.uuid4()}/ws"):
            pass

    assert exc_info.value.code == 1008


def test_http_mutation_reaches_websocket(client, seed):
    order_id = current_order_id(client, seed.table_id)

    with client.websocket_connect(f"{API}/orders/{order_id}/ws") as ws:
        ready(ws)

        add_item(client, order_id, seed.pizza_id)

        message = ws.receive_json()
        assert message["type"] == "add_item"
        assert message["data"]["total_price_in_cents"] == PIZZA_PRICE


def test_websocket_mutation_reaches_every_subscriber(client, seed):
    order_id = current_order_id(client, seed.table_id)

    with client.websocket_connect(f"{API}/orders/{order_id}/ws") as first, \
            client.websocket_connect(f"{API}/orders/{order_id}/ws") as second:
        ready(first)
        ready(second)

        first.send_json({"type": "add_item", "data": {"item_id": str(seed.wine_id)}})

        for ws in (first, second):
            message = ws.receive_json()
            assert message["type"] == "add_item"
            assert message["data"]["total_price_in_cents"] == WINE_PRICE

        assert client.get("/health").json()["realtime_orders"] == 1


def test_websocket_errors_stay_private(client, seed):
    order_id = current_order_id(client, seed.table_id)

    with client.websocket_connect(f"{API}/orders/{order_id}/ws") as first, \
            client.websocket_connect(f"{API}/orders/{order_id}/ws") as second:
        ready(first)
        ready(second)

        first.send_json({"type": "add_item", "data": {"item_id": str(seed.foreign_item_id)}})
        assert first.receive_json() == {"type": "error", "data": "item does not belong to this restaurant"}

        first.send_json({"type": "add_item", "data": {"item_id": str(seed.pizza_id)}})
        assert first.receive_json()["type"] == "add_item"
        # The rejected request never reached the second subscriber
        assert second.receive_json()["type"] == "add_item"


def test_websocket_token_query_parameter(client, seed):
    order_id = current_order_id(client, seed.table_id)
    lock(client, order_id)

    with client.websocket_connect(f"{API}/orders/{order_id}/ws") as anonymous:
        anonymous.send_json({"type": "update_order", "data": {"status": "completed"}})
        assert anonymous.receive_json()["type"] == "error"

    with client.websocket_connect(f"{API}/orders/{order_id}/ws?token=waiter-token") as waiter:
        waiter.send_json({"type": "update_order", "data": {"status": "completed"}})
        message = waiter.receive_json()
        assert message["type"] == "update_order"
        assert message["data"]["status"] == "completed"
