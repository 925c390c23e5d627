"""
Domain Exceptions

Every error the order core raises derives from ``DiningError``. Each class
carries the HTTP status the transport layer answers with and a client-facing
message; the FastAPI exception handler in ``dining.main`` and the websocket
handler both rely on these two attributes.
"""

from typing import Optional


class DiningError(Exception):
    """Base class for all order-core errors."""

    status_code: int = 500
    message: str = "internal error"

    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        self.message = message or self.message
        self.detail = detail
        super().__init__(self.message if detail is None else f"{self.message}: {detail}")

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500


# =============================================================================
# NOT FOUND
# =============================================================================

class NotFoundError(DiningError):
    status_code = 404
    message = "resource not found"


class OrderNotFound(NotFoundError):
    message = "order with this id does not exist"


class NoCurrentOrder(NotFoundError):
    message = "current order for this table does not exist"


class TableNotFound(NotFoundError):
    message = "table with this id does not exist"


class MenuItemNotFound(NotFoundError):
    message = "menu item with this id does not exist"


class OrderItemNotFound(NotFoundError):
    message = "item is not part of this order"


class WaiterAssignmentNotFound(NotFoundError):
    message = "waiter assignment does not exist"


# =============================================================================
# ORDER STATE MACHINE
# =============================================================================

class OrderStateError(DiningError):
    status_code = 409


class OrderNotOpen(OrderStateError):
    message = "order is not open"


class OrderFinalized(OrderStateError):
    message = "order cannot be edited anymore since it's finalized"


class InvalidStatusTransition(OrderStateError):
    message = "order cannot move to the requested status"


# =============================================================================
# CLIENT ERRORS
# =============================================================================

class ItemRestaurantMismatch(DiningError):
    status_code = 400
    message = "item does not belong to this restaurant"


class EmptyPayload(DiningError):
    status_code = 400
    message = "payload is empty"


class OrderPriceIsZero(DiningError):
    status_code = 400
    message = "order total price and tip amount are 0"


class InvalidWebhookPayload(DiningError):
    status_code = 400
    message = "webhook payload is empty or malformed"


class PaymentVerificationError(DiningError):
    status_code = 400
    message = "failed to verify payment"


class UnhandledWebhookEvent(PaymentVerificationError):
    message = "unhandled webhook event type"


# =============================================================================
# AUTHORIZATION
# =============================================================================

class AuthenticationFailed(DiningError):
    status_code = 401
    message = "unauthorized"


class PermissionDenied(DiningError):
    status_code = 403
    message = "permission denied"


class UserCannotEditStatus(PermissionDenied):
    message = "user cannot edit status of this order"


class UserCannotEditLockedOrder(PermissionDenied):
    message = "this user cannot edit locked orders"


class UserNotRestaurantStaff(PermissionDenied):
    message = "user is not a waiter of this restaurant"


class InsufficientRole(PermissionDenied):
    message = "insufficient role"


# =============================================================================
# EXTERNAL DEPENDENCIES
# =============================================================================

class RepositoryError(DiningError):
    status_code = 500
    message = "storage failure"


class PaymentProviderError(DiningError):
    status_code = 502
    message = "payment provider failure"


class AuthServiceUnavailable(DiningError):
    status_code = 503
    message = "failed to reach auth service"
