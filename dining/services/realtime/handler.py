"""
Order Websocket Handler

Lifecycle of one websocket connection to ``/orders/{order_id}/ws``:

    1. Unknown order -> close with policy violation, never accepted;
       storage failure -> close with internal error
    2. Accept and join the hub
    3. Read loop: decode the envelope, dispatch by type, validate the payload
    4. Success -> broadcast the resulting order to every subscriber
       Failure -> ``error`` envelope to the sender only, the loop continues
    5. Disconnect -> leave the hub and close

Supported Types:
    - add_item: add a menu item to the order
    - delete_item: remove an order item
    - update_order: change status and/or tip
"""

import logging
from typing import Any, Awaitable, Callable
from uuid import UUID

from pydantic import ValidationError
from starlette import status
from starlette.websockets import WebSocket, WebSocketDisconnect

from dining.errors import DiningError, OrderNotFound
from dining.schemas import OrderItemRequest, OrderResponse, TokenClaims, UpdateOrderRequest
from dining.services.orders import OrdersService
from dining.services.realtime.hub import BroadcastHub, OrderConnection
from dining.services.realtime.schemas import WSMessageType, WSRequestMessage

logger = logging.getLogger(__name__)

MessageHandler = Callable[[OrderConnection, Any], Awaitable[OrderResponse]]

UNMARSHAL_ERROR = "failed to unmarshal message"
UNKNOWN_TYPE_ERROR = "unknown request type"

# Replies for server-side failures; details stay in the log
SERVER_ERROR_REPLIES = {
    WSMessageType.ADD_ITEM: "failed to add item to order",
    WSMessageType.DELETE_ITEM: "failed to delete item from an order",
    WSMessageType.UPDATE_ORDER: "failed to update an order",
}


def validation_message(error: ValidationError) -> str:
    """Compact, client-facing summary of a payload validation error."""
    parts = []
    for err in error.errors():
        location = ".".join(str(p) for p in err["loc"]) or "data"
        parts.append(f"{location}: {err['msg']}")
    return "; ".join(parts)


class OrderWebsocketHandler:
    """
    Serves websocket connections for the orders of one process.

    Example:
        >>> handler = OrderWebsocketHandler(hub, orders_service)
        >>> await handler.serve(websocket, order_id, claims)
    """

    def __init__(self, hub: BroadcastHub, orders: OrdersService):
        self.hub = hub
        self.orders = orders
        self._handlers: dict[str, tuple[WSMessageType, MessageHandler]] = {
            WSMessageType.ADD_ITEM.value: (WSMessageType.ADD_ITEM, self._add_item),
            WSMessageType.DELETE_ITEM.value: (WSMessageType.DELETE_ITEM, self._delete_item),
            WSMessageType.UPDATE_ORDER.value: (WSMessageType.UPDATE_ORDER, self._update_order),
        }

    async def serve(self, websocket: WebSocket, order_id: UUID, claims: TokenClaims) -> None:
        try:
            await self.orders.get_order(order_id)
        except OrderNotFound:
            logger.info(f"Rejected websocket for unknown order {order_id}")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        except DiningError as e:
            if e.is_server_error:
                logger.exception(f"Websocket for order {order_id} refused, order lookup failed: {e}")
                await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
            else:
                logger.info(f"Rejected websocket for order {order_id}: {e}")
                await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()
        connection = OrderConnection(websocket, order_id, claims)
        await self.hub.join(order_id, connection)

        try:
            await self._read_loop(connection)
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.info(f"Websocket on order {order_id} ended: {type(e).__name__}: {e}")
        finally:
            await self.hub.leave(order_id, connection)
            await connection.close()

    async def _read_loop(self, connection: OrderConnection) -> None:
        while True:
            message = await connection.websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.debug(f"Client left order {connection.order_id} ({message.get('code')})")
                return

            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""

            await self.handle_message(connection, raw)

    async def handle_message(self, connection: OrderConnection, raw: str | bytes) -> None:
        """Dispatch one client frame; never raises for bad input."""
        try:
            request = WSRequestMessage.model_validate_json(raw)
        except ValidationError:
            await connection.send_message(WSMessageType.ERROR, UNMARSHAL_ERROR)
            return

        entry = self._handlers.get(request.type)
        if entry is None:
            logger.info(f"Unknown websocket message type {request.type!r} on order {connection.order_id}")
            await connection.send_message(WSMessageType.ERROR, UNKNOWN_TYPE_ERROR)
            return

        message_type, handler = entry

        try:
            order = await handler(connection, request.data)
        except ValidationError as e:
            logger.info(f"Invalid {message_type.value} payload on order {connection.order_id}: {e.error_count()} error(s)")
            await connection.send_message(WSMessageType.ERROR, validation_message(e))
            return
        except DiningError as e:
            if e.is_server_error:
                logger.exception(f"{message_type.value} failed on order {connection.order_id}: {e}")
                await connection.send_message(WSMessageType.ERROR, SERVER_ERROR_REPLIES[message_type])
            else:
                logger.info(f"{message_type.value} rejected on order {connection.order_id}: {e}")
                await connection.send_message(WSMessageType.ERROR, e.message)
            return
        except Exception as e:
            logger.exception(f"Unexpected error handling {message_type.value} on order {connection.order_id}: {e}")
            await connection.send_message(WSMessageType.ERROR, SERVER_ERROR_REPLIES[message_type])
            return

        await self.hub.broadcast(connection.order_id, message_type, order)

    # =========================================================================
    # MESSAGE HANDLERS
    # =========================================================================

    async def _add_item(self, connection: OrderConnection, data: Any) -> OrderResponse:
        request = OrderItemRequest.model_validate(data)
        return await self.orders.add_item_to_order(connection.order_id, request.item_id)

    async def _delete_item(self, connection: OrderConnection, data: Any) -> OrderResponse:
        request = OrderItemRequest.model_validate(data)
        return await self.orders.delete_order_item(connection.order_id, request.item_id)

    async def _update_order(self, connection: OrderConnection, data: Any) -> OrderResponse:
        request = UpdateOrderRequest.model_validate(data)
        return await self.orders.update_order(connection.order_id, request, connection.claims)
