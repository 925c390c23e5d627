"""
Repository Abstract Base Classes

Defines the persistence contract of the order core. Two implementations
exist: ``SqlOrdersRepository`` (SQLAlchemy, used by the running service) and
``InMemoryOrdersRepository`` (dict-backed, used in tests and local demos).

Every method either returns a schema object or raises an exception from
``dining.errors``: a ``NotFoundError`` subclass when the referenced row does
not exist, ``RepositoryError`` when the storage layer itself fails.
"""

from abc import ABC, abstractmethod
from uuid import UUID

from dining.schemas import (
    CurrentOrderResponse,
    MenuItemSnapshot,
    OrderItemResponse,
    OrderResponse,
    PaymentRecord,
    UpdateOrderRequest,
    WaiterAssignmentResponse,
)


class BaseOrdersRepository(ABC):
    """Storage of orders, order items and waiter assignments."""

    @abstractmethod
    async def get_current_order_for_table(self, table_id: UUID) -> CurrentOrderResponse:
        """
        Return the open or locked order of a table.

        Raises:
            NoCurrentOrder: The table has no current order
        """

    @abstractmethod
    async def create_order_for_table(self, table_id: UUID, currency: str) -> CurrentOrderResponse:
        """
        Create an open order for a table.

        If another writer created the table's current order first, that
        order is returned instead of a second one.

        Raises:
            TableNotFound: The table does not exist
        """

    @abstractmethod
    async def get_table_currency(self, table_id: UUID) -> str:
        """
        Currency of the restaurant owning the table.

        Raises:
            TableNotFound: The table does not exist
        """

    @abstractmethod
    async def add_item_to_order(self, order_id: UUID, item: MenuItemSnapshot) -> OrderItemResponse:
        """Insert a price snapshot of ``item`` into the order."""

    @abstractmethod
    async def get_order(self, order_id: UUID) -> OrderResponse:
        """
        Full order with items and waiters; the total is derived from the items.

        Raises:
            OrderNotFound: No such order
        """

    @abstractmethod
    async def get_menu_item(self, item_id: UUID) -> MenuItemSnapshot:
        """
        Raises:
            MenuItemNotFound: No such menu item
        """

    @abstractmethod
    async def delete_order_item(self, order_item_id: UUID, order_id: UUID) -> OrderItemResponse:
        """
        Hard-delete an order item and return the deleted row.

        Raises:
            OrderItemNotFound: The item is not part of the order
        """

    @abstractmethod
    async def update_order(self, order_id: UUID, request: UpdateOrderRequest) -> None:
        """
        Write the non-empty fields of ``request``.

        Raises:
            OrderNotFound: No such order
        """

    @abstractmethod
    async def is_user_restaurant_waiter(self, user_id: UUID, restaurant_id: UUID) -> bool:
        """Whether the user is staff (waiter or manager) of the restaurant."""

    @abstractmethod
    async def assign_waiter(self, order_id: UUID, user_id: UUID) -> WaiterAssignmentResponse:
        """Assign the user to the order; assigning twice returns the first assignment."""

    @abstractmethod
    async def remove_waiter(self, order_id: UUID, user_id: UUID, assignment_id: UUID) -> None:
        """
        Raises:
            WaiterAssignmentNotFound: No matching assignment
        """

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify the storage is reachable."""


class BasePaymentsRepository(ABC):
    """Storage of verified payments."""

    @abstractmethod
    async def save_payment(self, record: PaymentRecord) -> PaymentRecord:
        """
        Persist a verified payment.

        Saving the same ``provider_payment_id`` twice returns the stored
        record; payments are never modified.
        """
