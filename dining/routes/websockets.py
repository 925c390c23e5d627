"""
Order Websocket Endpoint

    WS /orders/{order_id}/ws[?token=<jwt>]

Authentication is optional: without a valid token the connection acts as an
anonymous customer.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, WebSocket

from dining.dependencies import get_optional_claims, get_ws_handler
from dining.schemas import TokenClaims
from dining.services.realtime import OrderWebsocketHandler

router = APIRouter(tags=["Realtime"])


@router.websocket("/orders/{order_id}/ws")
async def order_websocket(
    websocket: WebSocket,
    order_id: UUID,
    claims: TokenClaims = Depends(get_optional_claims),
    handler: OrderWebsocketHandler = Depends(get_ws_handler),
) -> None:
    await handler.serve(websocket, order_id, claims)
