"""
Pydantic Schemas for Request/Response Validation

Shared by the HTTP routes, the websocket handler and the repositories:
repositories return these objects, the state engine passes them through and
the transport layer serializes them unchanged.
"""

from datetime import datetime
from typing import Generic, List, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from dining.models import OrderStatus, StaffRole

# Tips are bounded to keep a mistyped amount from reaching the payment provider
MAX_TIP_AMOUNT_IN_CENTS = 20000

DataT = TypeVar("DataT")


# =============================================================================
# AUTH
# =============================================================================

class TokenClaims(BaseModel):
    """
    Claims of the caller as validated by the auth service.

    ``user_id`` is ``None`` for anonymous customers.
    """
    model_config = ConfigDict(extra="ignore")

    user_id: Optional[UUID] = None
    email: Optional[str] = None
    token_type: Optional[str] = None
    role: Optional[int] = None
    exp: Optional[int] = None

    @field_validator("user_id")
    @classmethod
    def nil_uuid_is_anonymous(cls, v: Optional[UUID]) -> Optional[UUID]:
        if v is not None and v.int == 0:
            return None
        return v

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    def has_role(self, *roles: StaffRole) -> bool:
        return self.role is not None and self.role in {r.value for r in roles}

    @classmethod
    def anonymous(cls) -> "TokenClaims":
        return cls()


# =============================================================================
# ORDER READ MODELS
# =============================================================================

class CurrentOrderResponse(BaseModel):
    """Current order of a table."""
    id: UUID


class MenuItemSnapshot(BaseModel):
    """Menu item as read at the moment it is added to an order."""
    id: UUID
    restaurant_id: UUID
    name: str
    price_in_cents: int = Field(..., ge=0)


class OrderItemResponse(BaseModel):
    """Single line of an order."""
    id: UUID
    item_id: Optional[UUID] = None
    restaurant_id: UUID = Field(..., exclude=True)
    name: str
    price_in_cents: int


class WaiterAssignmentResponse(BaseModel):
    """Staff user assigned to an order."""
    id: UUID
    user_id: UUID


class OrderResponse(BaseModel):
    """Full order view returned by every read and mutation."""
    id: UUID
    restaurant_id: UUID
    restaurant_name: Optional[str] = None
    table_id: UUID
    status: OrderStatus
    currency: str
    tip_amount_in_cents: int = 0
    updated_at: Optional[datetime] = None
    items: List[OrderItemResponse] = Field(default_factory=list)
    waiters: List[WaiterAssignmentResponse] = Field(default_factory=list)

    @computed_field
    @property
    def total_price_in_cents(self) -> int:
        return sum(item.price_in_cents for item in self.items)

    @property
    def is_finalized(self) -> bool:
        return self.status.is_finalized


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderItemRequest(BaseModel):
    """Add or delete an item. For deletes ``item_id`` is the order item id."""
    item_id: UUID


class UpdateOrderRequest(BaseModel):
    """Partial order update; at least one field must be present."""
    tip_amount_in_cents: Optional[int] = Field(None, ge=0, lt=MAX_TIP_AMOUNT_IN_CENTS)
    status: Optional[OrderStatus] = None

    @property
    def is_empty(self) -> bool:
        return self.tip_amount_in_cents is None and self.status is None


class RemoveWaiterRequest(BaseModel):
    assign_id: UUID


class CheckoutSessionRequest(BaseModel):
    success_url: str = Field(..., min_length=1, max_length=2048)
    cancel_url: str = Field(..., min_length=1, max_length=2048)


# =============================================================================
# PAYMENT SCHEMAS
# =============================================================================

class CheckoutSessionResponse(BaseModel):
    """Session issued by the payment provider."""
    url: str
    session_id: str


class PaymentRecord(BaseModel):
    """Verified payment, as parsed from a provider webhook and as stored."""
    id: Optional[UUID] = None
    order_id: UUID
    amount_in_cents: int
    currency: str
    provider: str
    provider_payment_id: str


# =============================================================================
# ENVELOPES
# =============================================================================

class SuccessResponse(BaseModel, Generic[DataT]):
    """Standard success response."""
    message: str
    data: Optional[DataT] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    payment_service: str
    realtime_orders: int
    timestamp: datetime
