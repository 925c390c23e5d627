"""
Realtime Message Schemas

Every frame, in both directions, is a JSON envelope ``{"type", "data"}``.

Client -> server:
    {"type": "add_item",     "data": {"item_id": "<menu item uuid>"}}
    {"type": "delete_item",  "data": {"item_id": "<order item uuid>"}}
    {"type": "update_order", "data": {"tip_amount_in_cents": 500, "status": "locked"}}

Server -> clients:
    {"type": "<same type>", "data": <full order>}   broadcast to every subscriber
    {"type": "error",       "data": "<message>"}     sent to the requester only
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel


class WSMessageType(str, Enum):
    """Types of realtime messages."""
    ADD_ITEM = "add_item"
    DELETE_ITEM = "delete_item"
    UPDATE_ORDER = "update_order"
    ERROR = "error"


class WSRequestMessage(BaseModel):
    """
    Envelope received from a client.

    ``type`` stays a plain string so unknown types reach the dispatcher
    instead of failing envelope validation.
    """
    type: str
    data: Any = None


class WSResponseMessage(BaseModel):
    """Envelope sent to clients."""
    type: WSMessageType
    data: Any = None
