"""
Realtime order collaboration over websockets.

Usage:
    from dining.services.realtime import BroadcastHub, OrderWebsocketHandler

    hub = BroadcastHub(send_timeout=settings.ws_send_timeout_seconds)
    handler = OrderWebsocketHandler(hub, orders_service)
"""

from dining.services.realtime.handler import OrderWebsocketHandler
from dining.services.realtime.hub import BroadcastHub, OrderConnection, encode_message
from dining.services.realtime.schemas import WSMessageType, WSRequestMessage, WSResponseMessage

__all__ = [
    "BroadcastHub",
    "OrderConnection",
    "OrderWebsocketHandler",
    "WSMessageType",
    "WSRequestMessage",
    "WSResponseMessage",
    "encode_message",
]
