"""Websocket message dispatch: broadcasts on success, private error replies otherwise."""
import json
import uuid

import pytest

from conftest import PIZZA_PRICE, FakeWebSocket
from dining.errors import RepositoryError
from dining.schemas import TokenClaims
from dining.services.realtime import BroadcastHub, OrderConnection, OrderWebsocketHandler
from dining.services.realtime.handler import SERVER_ERROR_REPLIES, UNKNOWN_TYPE_ERROR, UNMARSHAL_ERROR
from dining.services.realtime.schemas import WSMessageType


@pytest.fixture
def hub() -> BroadcastHub:
    return BroadcastHub(send_timeout=1.0)


@pytest.fixture
def handler(hub, service) -> OrderWebsocketHandler:
    return OrderWebsocketHandler(hub, service)


@pytest.fixture
async def order_id(service, seed):
    return (await service.get_or_create_current_order(seed.table_id)).id


@pytest.fixture
async def peers(hub, order_id):
    sender = OrderConnection(FakeWebSocket(), order_id, TokenClaims.anonymous())
    watcher = OrderConnection(FakeWebSocket(), order_id)
    await hub.join(order_id, sender)
    await hub.join(order_id, watcher)
    return sender, watcher


def frame(message_type: str, data) -> str:
    return json.dumps({"type": message_type, "data": data})


async def test_add_item_is_broadcast_to_all_peers(handler, peers, seed):
    sender, watcher = peers

    await handler.handle_message(sender, frame("add_item", {"item_id": str(seed.pizza_id)}))

    for peer in peers:
        [message] = peer.websocket.messages()
        assert message["type"] == "add_item"
        assert message["data"]["total_price_in_cents"] == PIZZA_PRICE
        assert message["data"]["items"][0]["name"] == "Pizza"


async def test_delete_item_is_broadcast(handler, peers, service, order_id, seed):
    sender, watcher = peers
    order = await service.add_item_to_order(order_id, seed.pizza_id)

    await handler.handle_message(sender, frame("delete_item", {"item_id": str(order.items[0].id)}))

    [message] = watcher.websocket.messages()
    assert message["type"] == "delete_item"
    assert message["data"]["items"] == []
    assert message["data"]["total_price_in_cents"] == 0


async def test_update_order_uses_connection_claims(handler, peers):
    sender, watcher = peers

    await handler.handle_message(sender, frame("update_order", {"status": "cancelled"}))

    assert sender.websocket.messages() == [{"type": "error", "data": "user cannot edit status of this order"}]
    assert watcher.websocket.sent == []

    await handler.handle_message(sender, frame("update_order", {"status": "locked", "tip_amount_in_cents": 200}))

    [message] = watcher.websocket.messages()
    assert message["type"] == "update_order"
    assert message["data"]["status"] == "locked"
    assert message["data"]["tip_amount_in_cents"] == 200


@pytest.mark.parametrize("raw", ["not json", "[]", '{"data": {}}', b"\xff\xfe"])
async def test_malformed_envelope(handler, peers, raw):
    sender, watcher = peers

    await handler.handle_message(sender, raw)

    assert sender.websocket.messages() == [{"type": "error", "data": UNMARSHAL_ERROR}]
    assert watcher.websocket.sent == []


async def test_unknown_type(handler, peers):
    sender, watcher = peers

    await handler.handle_message(sender, frame("refund", {}))

    assert sender.websocket.messages() == [{"type": "error", "data": UNKNOWN_TYPE_ERROR}]
    assert watcher.websocket.sent == []


async def test_invalid_payload_is_reported_to_sender(handler, peers):
    sender, watcher = peers

    await handler.handle_message(sender, frame("add_item", {"item_id": "nope"}))

    [message] = sender.websocket.messages()
    assert message["type"] == "error"
    assert "item_id" in message["data"]
    assert watcher.websocket.sent == []


async def test_missing_payload_is_reported_to_sender(handler, peers):
    sender, _ = peers

    await handler.handle_message(sender, frame("update_order", None))

    [message] = sender.websocket.messages()
    assert message["type"] == "error"


async def test_domain_error_goes_to_sender_only(handler, peers, seed):
    sender, watcher = peers

    await handler.handle_message(sender, frame("add_item", {"item_id": str(seed.foreign_item_id)}))

    assert sender.websocket.messages() == [{"type": "error", "data": "item does not belong to this restaurant"}]
    assert watcher.websocket.sent == []


async def test_empty_update_payload(handler, peers):
    sender, _ = peers

    await handler.handle_message(sender, frame("update_order", {}))

    assert sender.websocket.messages() == [{"type": "error", "data": "payload is empty"}]


async def test_storage_failure_gets_generic_reply(handler, peers, repo, seed):
    sender, watcher = peers

    async def broken(order_id, item):
        raise RepositoryError(detail="connection reset")

    repo.add_item_to_order = broken

    await handler.handle_message(sender, frame("add_item", {"item_id": str(seed.pizza_id)}))

    assert sender.websocket.messages() == [
        {"type": "error", "data": SERVER_ERROR_REPLIES[WSMessageType.ADD_ITEM]}
    ]
    assert watcher.websocket.sent == []


async def test_unexpected_failure_gets_generic_reply(handler, peers, repo):
    sender, _ = peers

    async def broken(order_id, request):
        raise KeyError("boom")

    repo.update_order = broken

    await handler.handle_message(sender, frame("update_order", {"tip_amount_in_cents": 10}))

    assert sender.websocket.messages() == [
        {"type": "error", "data": SERVER_ERROR_REPLIES[WSMessageType.UPDATE_ORDER]}
    ]


async def test_bytes_frames_are_accepted(handler, peers, seed):
    sender, watcher = peers

    await handler.handle_message(sender, frame("add_item", {"item_id": str(seed.wine_id)}).encode())

    assert watcher.websocket.messages()[0]["type"] == "add_item"


async def test_unknown_order_is_rejected_before_accept(handler, hub):
    class Socket(FakeWebSocket):
        accepted = False

        async def accept(self):
            self.accepted = True

    websocket = Socket()

    await handler.serve(websocket, uuid.uuid4(), TokenClaims.anonymous())

    assert websocket.close_codes == [1008]
    assert websocket.accepted is False
    assert await hub.order_ids() == []


async def test_storage_failure_on_connect_closes_with_internal_error(handler, hub, repo, order_id):
    class Socket(FakeWebSocket):
        accepted = False

        async def accept(self):
            self.accepted = True

    async def broken(order_id):
        raise RepositoryError(detail="connection reset")

    repo.get_order = broken
    websocket = Socket()

    await handler.serve(websocket, order_id, TokenClaims.anonymous())

    assert websocket.close_codes == [1011]
    assert websocket.accepted is False
    assert await hub.order_ids() == []
