"""
Order State Engine

Business rules of the order lifecycle, independent of the transport:
the HTTP routes and the websocket handler both call ``OrdersService`` and
then broadcast whatever order it returns.

Status Workflow:
    open -> locked -> completed
    open | locked -> cancelled

Every mutation is followed by a full re-read of the order so callers always
get the repository's view, never a locally computed delta.

Concurrency:
    Mutations of one order run one at a time inside the process (keyed
    ``asyncio.Lock`` per order id); get-or-create is serialized per table.
    Across processes the SQL partial unique index keeps one current order
    per table.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable
from uuid import UUID

from dining.errors import (
    EmptyPayload,
    InvalidStatusTransition,
    ItemRestaurantMismatch,
    NoCurrentOrder,
    OrderFinalized,
    OrderNotOpen,
    UserCannotEditLockedOrder,
    UserCannotEditStatus,
    UserNotRestaurantStaff,
)
from dining.models import OrderStatus
from dining.repository.base import BaseOrdersRepository
from dining.schemas import (
    CurrentOrderResponse,
    OrderResponse,
    TokenClaims,
    UpdateOrderRequest,
)

logger = logging.getLogger(__name__)


# Reachable statuses; staying in the current status is always allowed
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.OPEN: frozenset({OrderStatus.LOCKED, OrderStatus.CANCELLED}),
    OrderStatus.LOCKED: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def can_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    return requested == current or requested in ALLOWED_TRANSITIONS[current]


class KeyedLocks:
    """
    One ``asyncio.Lock`` per key, dropped once nobody holds or waits on it.

    Example:
        >>> locks = KeyedLocks()
        >>> async with locks.hold(order_id):
        ...     ...
    """

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class OrdersService:
    """
    Order lifecycle operations.

    Example:
        >>> service = OrdersService(InMemoryOrdersRepository())
        >>> current = await service.get_or_create_current_order(table_id)
        >>> order = await service.add_item_to_order(current.id, menu_item_id)
        >>> order.total_price_in_cents
        1500
    """

    def __init__(self, repository: BaseOrdersRepository):
        self.repository = repository
        self._order_locks = KeyedLocks()
        self._table_locks = KeyedLocks()

    # =========================================================================
    # READS
    # =========================================================================

    async def get_or_create_current_order(self, table_id: UUID) -> CurrentOrderResponse:
        """
        Current order of the table, creating an open one when there is none.

        Raises:
            TableNotFound: The table does not exist
        """
        async with self._table_locks.hold(table_id):
            try:
                return await self.repository.get_current_order_for_table(table_id)
            except NoCurrentOrder:
                pass

            currency = await self.repository.get_table_currency(table_id)
            current = await self.repository.create_order_for_table(table_id, currency)

        logger.info(f"Table {table_id} now has current order {current.id}")
        return current

    async def get_order(self, order_id: UUID) -> OrderResponse:
        return await self.repository.get_order(order_id)

    # =========================================================================
    # ITEMS
    # =========================================================================

    async def add_item_to_order(self, order_id: UUID, menu_item_id: UUID) -> OrderResponse:
        """
        Add a price snapshot of a menu item to an open order.

        Raises:
            MenuItemNotFound: No such menu item
            OrderNotFound: No such order
            ItemRestaurantMismatch: Item and order belong to different restaurants
            OrderNotOpen: Order is locked or finalized
        """
        async with self._order_locks.hold(order_id):
            item = await self.repository.get_menu_item(menu_item_id)
            order = await self.repository.get_order(order_id)

            if item.restaurant_id != order.restaurant_id:
                raise ItemRestaurantMismatch(detail=str(menu_item_id))

            if order.status != OrderStatus.OPEN:
                raise OrderNotOpen(detail=order.status.value)

            await self.repository.add_item_to_order(order_id, item)
            updated = await self.repository.get_order(order_id)

        logger.debug(f"Added {item.name} to order {order_id}, total {updated.total_price_in_cents}")
        return updated

    async def delete_order_item(self, order_id: UUID, order_item_id: UUID) -> OrderResponse:
        """
        Remove an item from an open order.

        Raises:
            OrderNotFound: No such order
            OrderNotOpen: Order is locked or finalized
            OrderItemNotFound: The item is not part of the order
        """
        async with self._order_locks.hold(order_id):
            order = await self.repository.get_order(order_id)
            if order.status != OrderStatus.OPEN:
                raise OrderNotOpen(detail=order.status.value)

            await self.repository.delete_order_item(order_item_id, order_id)
            updated = await self.repository.get_order(order_id)

        logger.debug(f"Removed item {order_item_id} from order {order_id}")
        return updated

    # =========================================================================
    # STATUS AND TIP
    # =========================================================================

    async def update_order(
        self,
        order_id: UUID,
        request: UpdateOrderRequest,
        claims: TokenClaims,
    ) -> OrderResponse:
        """
        Change status and/or tip. The first failing rule wins.

        Raises:
            EmptyPayload: Neither status nor tip given
            OrderNotFound: No such order
            OrderFinalized: Order is completed or cancelled
            UserCannotEditStatus: Anonymous actor requested a status other than locked
            UserCannotEditLockedOrder: Status change on a locked order by a non-staff actor
            InvalidStatusTransition: Requested status is not reachable
        """
        if request.is_empty:
            raise EmptyPayload()

        async with self._order_locks.hold(order_id):
            order = await self.repository.get_order(order_id)

            if order.is_finalized:
                raise OrderFinalized(detail=order.status.value)

            if request.status is not None:
                await self._authorize_status_change(order, request.status, claims)

                if not can_transition(order.status, request.status):
                    raise InvalidStatusTransition(
                        detail=f"{order.status.value} -> {request.status.value}"
                    )

            await self.repository.update_order(order_id, request)
            updated = await self.repository.get_order(order_id)

        if updated.status != order.status:
            logger.info(f"Order {order_id} moved {order.status.value} -> {updated.status.value}")
        return updated

    async def complete_paid_order(self, order_id: UUID) -> OrderResponse:
        """
        Mark an order completed after its payment was verified.

        Skips the actor rules and the transition table: a paid order may be
        completed from open or locked. Finalized orders are left untouched.

        Raises:
            OrderNotFound: No such order
        """
        async with self._order_locks.hold(order_id):
            order = await self.repository.get_order(order_id)

            if order.is_finalized:
                if order.status == OrderStatus.COMPLETED:
                    logger.info(f"Order {order_id} already completed, payment changes nothing")
                else:
                    logger.warning(f"Payment received for {order.status.value} order {order_id}, status left unchanged")
                return order

            await self.repository.update_order(order_id, UpdateOrderRequest(status=OrderStatus.COMPLETED))
            updated = await self.repository.get_order(order_id)

        logger.info(f"Order {order_id} moved {order.status.value} -> {updated.status.value} after payment")
        return updated

    async def _authorize_status_change(
        self,
        order: OrderResponse,
        requested: OrderStatus,
        claims: TokenClaims,
    ) -> None:
        # Customers may only submit (lock) their order
        if requested != OrderStatus.LOCKED and claims.is_anonymous:
            raise UserCannotEditStatus()

        if order.status == OrderStatus.LOCKED:
            if claims.is_anonymous:
                raise UserCannotEditLockedOrder()
            if not await self.repository.is_user_restaurant_waiter(claims.user_id, order.restaurant_id):
                raise UserCannotEditLockedOrder()

    # =========================================================================
    # WAITERS
    # =========================================================================

    async def assign_waiter(self, order_id: UUID, user_id: UUID) -> OrderResponse:
        """
        Assign a staff user to the order; assigning twice is a no-op.

        Raises:
            OrderNotFound: No such order
            UserNotRestaurantStaff: The user is not staff of the order's restaurant
        """
        async with self._order_locks.hold(order_id):
            order = await self.repository.get_order(order_id)
            await self._require_staff(user_id, order)

            assignment = await self.repository.assign_waiter(order_id, user_id)
            updated = await self.repository.get_order(order_id)

        logger.info(f"Waiter {user_id} assigned to order {order_id} ({assignment.id})")
        return updated

    async def remove_waiter(self, order_id: UUID, user_id: UUID, assignment_id: UUID) -> OrderResponse:
        """
        Remove the caller's own waiter assignment.

        Raises:
            OrderNotFound: No such order
            UserNotRestaurantStaff: The user is not staff of the order's restaurant
            WaiterAssignmentNotFound: No matching assignment
        """
        async with self._order_locks.hold(order_id):
            order = await self.repository.get_order(order_id)
            await self._require_staff(user_id, order)

            await self.repository.remove_waiter(order_id, user_id, assignment_id)
            updated = await self.repository.get_order(order_id)

        logger.info(f"Waiter {user_id} removed from order {order_id}")
        return updated

    async def _require_staff(self, user_id: UUID, order: OrderResponse) -> None:
        if not await self.repository.is_user_restaurant_waiter(user_id, order.restaurant_id):
            raise UserNotRestaurantStaff(detail=str(user_id))
