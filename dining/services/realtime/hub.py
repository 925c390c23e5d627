"""
Realtime Broadcast Hub

In-memory registry of websocket subscribers grouped by order id, plus the
fan-out that pushes every order change to all of them.

One hub instance is created in the application lifespan and kept on
``app.state.hub``; the HTTP routes and every websocket handler share it.
A single ``asyncio.Lock`` guards the registry and is held for the whole
fan-out, so a connection never joins or leaves halfway through a broadcast.
"""

import asyncio
import logging
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel
from starlette.websockets import WebSocket

from dining.schemas import TokenClaims
from dining.services.realtime.schemas import WSMessageType, WSResponseMessage

logger = logging.getLogger(__name__)


def encode_message(message_type: WSMessageType, payload: Any) -> str:
    """Serialize a ``{"type", "data"}`` envelope."""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    return WSResponseMessage(type=message_type, data=payload).model_dump_json()


class OrderConnection:
    """
    One websocket subscribed to one order.

    Sends are serialized per connection so a direct error reply and a
    broadcast never interleave on the wire.
    """

    def __init__(self, websocket: WebSocket, order_id: UUID, claims: Optional[TokenClaims] = None):
        self.websocket = websocket
        self.order_id = order_id
        self.claims = claims or TokenClaims.anonymous()
        self._send_lock = asyncio.Lock()

    async def send_text(self, text: str) -> None:
        async with self._send_lock:
            await self.websocket.send_text(text)

    async def send_message(self, message_type: WSMessageType, payload: Any) -> None:
        await self.send_text(encode_message(message_type, payload))

    async def close(self, code: int = 1000) -> None:
        """Close the socket; closing an already closed or dead socket is a no-op."""
        try:
            await self.websocket.close(code=code)
        except Exception as e:
            logger.debug(f"Connection for order {self.order_id} already closed: {type(e).__name__}: {e}")

    def __repr__(self) -> str:
        return f"OrderConnection(order_id={self.order_id}, user_id={self.claims.user_id})"


class BroadcastHub:
    """
    Subscribers per order id.

    Example:
        >>> hub = BroadcastHub(send_timeout=5.0)
        >>> await hub.join(order_id, connection)
        >>> delivered = await hub.broadcast(order_id, WSMessageType.ADD_ITEM, order)
        >>> await hub.leave(order_id, connection)
    """

    def __init__(self, send_timeout: float = 5.0):
        self.send_timeout = send_timeout
        self._subscribers: dict[UUID, set[OrderConnection]] = {}
        self._lock = asyncio.Lock()

    async def join(self, order_id: UUID, connection: OrderConnection) -> None:
        async with self._lock:
            self._subscribers.setdefault(order_id, set()).add(connection)
            count = len(self._subscribers[order_id])

        logger.info(f"Connection joined order {order_id} ({count} connected)")

    async def leave(self, order_id: UUID, connection: OrderConnection) -> None:
        async with self._lock:
            connections = self._subscribers.get(order_id)
            if connections is None or connection not in connections:
                return

            connections.discard(connection)
            if not connections:
                del self._subscribers[order_id]
            count = len(connections)

        logger.info(f"Connection left order {order_id} ({count} connected)")

    async def broadcast(self, order_id: UUID, message_type: WSMessageType, payload: Any) -> int:
        """
        Send one envelope to every subscriber of the order.

        Failed or slow peers are closed but stay registered until their own
        handler leaves.

        Returns:
            int: Number of successful deliveries
        """
        text = encode_message(message_type, payload)

        async with self._lock:
            connections = list(self._subscribers.get(order_id, ()))
            if not connections:
                return 0

            results = await asyncio.gather(
                *(asyncio.wait_for(c.send_text(text), self.send_timeout) for c in connections),
                return_exceptions=True,
            )

            failed = [
                (connection, result)
                for connection, result in zip(connections, results)
                if isinstance(result, BaseException)
            ]
            for connection, error in failed:
                logger.warning(
                    f"Broadcast {WSMessageType(message_type).value} to {connection!r} failed: "
                    f"{type(error).__name__}: {error}"
                )
                try:
                    await asyncio.wait_for(connection.close(code=1011), self.send_timeout)
                except asyncio.TimeoutError:
                    logger.warning(f"Closing {connection!r} timed out")

        delivered = len(connections) - len(failed)
        logger.debug(f"Broadcast {WSMessageType(message_type).value} on order {order_id}: {delivered}/{len(connections)}")
        return delivered

    async def subscriber_count(self, order_id: UUID) -> int:
        async with self._lock:
            return len(self._subscribers.get(order_id, ()))

    async def order_ids(self) -> list[UUID]:
        async with self._lock:
            return list(self._subscribers)
