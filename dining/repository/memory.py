"""
In-Memory Repository Implementation

Dict-backed stand-in for the SQL repositories. Used by the test-suite and by
``scripts/simulate.py --in-memory``; behaves like the SQL implementation for
every contract in ``BaseOrdersRepository``, including the one-current-order
per table rule.

The ``add_*`` helpers seed the restaurant-side data that the SQL variant
reads from tables owned by the management service.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from dining.errors import (
    MenuItemNotFound,
    NoCurrentOrder,
    OrderItemNotFound,
    OrderNotFound,
    TableNotFound,
    WaiterAssignmentNotFound,
)
from dining.models import CURRENT_ORDER_STATUSES, OrderStatus, StaffRole
from dining.repository.base import BaseOrdersRepository, BasePaymentsRepository
from dining.schemas import (
    CurrentOrderResponse,
    MenuItemSnapshot,
    OrderItemResponse,
    OrderResponse,
    PaymentRecord,
    UpdateOrderRequest,
    WaiterAssignmentResponse,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _OrderRow:
    id: UUID
    restaurant_id: UUID
    table_id: UUID
    currency: str
    status: OrderStatus = OrderStatus.OPEN
    tip_amount_in_cents: int = 0
    updated_at: datetime = field(default_factory=_utcnow)
    items: list[OrderItemResponse] = field(default_factory=list)
    waiters: list[WaiterAssignmentResponse] = field(default_factory=list)


@dataclass
class _TableRow:
    id: UUID
    restaurant_id: UUID
    name: str


@dataclass
class _RestaurantRow:
    id: UUID
    name: str
    currency: str


class InMemoryOrdersRepository(BaseOrdersRepository):
    """
    Orders repository kept in process memory.

    Example:
        >>> repo = InMemoryOrdersRepository()
        >>> restaurant_id = repo.add_restaurant("Trattoria", currency="eur")
        >>> table_id = repo.add_table(restaurant_id)
        >>> item_id = repo.add_menu_item(restaurant_id, "Pizza", 1500)
    """

    def __init__(self):
        self.restaurants: dict[UUID, _RestaurantRow] = {}
        self.tables: dict[UUID, _TableRow] = {}
        self.menu_items: dict[UUID, MenuItemSnapshot] = {}
        self.staff: dict[tuple[UUID, UUID], StaffRole] = {}
        self.orders: dict[UUID, _OrderRow] = {}
        self._lock = asyncio.Lock()

    # =========================================================================
    # SEEDING
    # =========================================================================

    def add_restaurant(self, name: str = "Restaurant", currency: str = "eur") -> UUID:
        restaurant_id = uuid.uuid4()
        self.restaurants[restaurant_id] = _RestaurantRow(restaurant_id, name, currency)
        return restaurant_id

    def add_table(self, restaurant_id: UUID, name: str = "T1") -> UUID:
        table_id = uuid.uuid4()
        self.tables[table_id] = _TableRow(table_id, restaurant_id, name)
        return table_id

    def add_menu_item(self, restaurant_id: UUID, name: str, price_in_cents: int) -> UUID:
        item_id = uuid.uuid4()
        self.menu_items[item_id] = MenuItemSnapshot(
            id=item_id,
            restaurant_id=restaurant_id,
            name=name,
            price_in_cents=price_in_cents,
        )
        return item_id

    def set_menu_price(self, item_id: UUID, price_in_cents: int) -> None:
        self.menu_items[item_id] = self.menu_items[item_id].model_copy(
            update={"price_in_cents": price_in_cents}
        )

    def add_staff(self, user_id: UUID, restaurant_id: UUID, role: StaffRole = StaffRole.WAITER) -> None:
        self.staff[(user_id, restaurant_id)] = role

    # =========================================================================
    # REPOSITORY CONTRACT
    # =========================================================================

    async def get_current_order_for_table(self, table_id: UUID) -> CurrentOrderResponse:
        row = self._current_order_row(table_id)
        if row is None:
            raise NoCurrentOrder(detail=str(table_id))
        return CurrentOrderResponse(id=row.id)

    async def create_order_for_table(self, table_id: UUID, currency: str) -> CurrentOrderResponse:
        async with self._lock:
            table = self.tables.get(table_id)
            if table is None:
                raise TableNotFound(detail=str(table_id))

            existing = self._current_order_row(table_id)
            if existing is not None:
                logger.info(f"Table {table_id} got a current order concurrently, reusing it")
                return CurrentOrderResponse(id=existing.id)

            row = _OrderRow(
                id=uuid.uuid4(),
                restaurant_id=table.restaurant_id,
                table_id=table_id,
                currency=currency,
            )
            self.orders[row.id] = row

        return CurrentOrderResponse(id=row.id)

    async def get_table_currency(self, table_id: UUID) -> str:
        table = self.tables.get(table_id)
        if table is None or table.restaurant_id not in self.restaurants:
            raise TableNotFound(detail=str(table_id))
        return self.restaurants[table.restaurant_id].currency

    async def add_item_to_order(self, order_id: UUID, item: MenuItemSnapshot) -> OrderItemResponse:
        row = self._order_row(order_id)
        added = OrderItemResponse(
            id=uuid.uuid4(),
            item_id=item.id,
            restaurant_id=item.restaurant_id,
            name=item.name,
            price_in_cents=item.price_in_cents,
        )
        row.items.append(added)
        row.updated_at = _utcnow()
        return added

    async def get_order(self, order_id: UUID) -> OrderResponse:
        row = self._order_row(order_id)
        restaurant = self.restaurants.get(row.restaurant_id)

        return OrderResponse(
            id=row.id,
            restaurant_id=row.restaurant_id,
            restaurant_name=restaurant.name if restaurant else None,
            table_id=row.table_id,
            status=row.status,
            currency=row.currency,
            tip_amount_in_cents=row.tip_amount_in_cents,
            updated_at=row.updated_at,
            items=list(row.items),
            waiters=list(row.waiters),
        )

    async def get_menu_item(self, item_id: UUID) -> MenuItemSnapshot:
        item = self.menu_items.get(item_id)
        if item is None:
            raise MenuItemNotFound(detail=str(item_id))
        return item

    async def delete_order_item(self, order_item_id: UUID, order_id: UUID) -> OrderItemResponse:
        row = self.orders.get(order_id)
        if row is None:
            raise OrderItemNotFound(detail=str(order_item_id))

        for index, item in enumerate(row.items):
            if item.id == order_item_id:
                del row.items[index]
                row.updated_at = _utcnow()
                return item

        raise OrderItemNotFound(detail=str(order_item_id))

    async def update_order(self, order_id: UUID, request: UpdateOrderRequest) -> None:
        row = self._order_row(order_id)
        if request.status is not None:
            row.status = request.status
        if request.tip_amount_in_cents is not None:
            row.tip_amount_in_cents = request.tip_amount_in_cents
        row.updated_at = _utcnow()

    async def is_user_restaurant_waiter(self, user_id: UUID, restaurant_id: UUID) -> bool:
        return (user_id, restaurant_id) in self.staff

    async def assign_waiter(self, order_id: UUID, user_id: UUID) -> WaiterAssignmentResponse:
        row = self._order_row(order_id)
        for assignment in row.waiters:
            if assignment.user_id == user_id:
                return assignment

        assignment = WaiterAssignmentResponse(id=uuid.uuid4(), user_id=user_id)
        row.waiters.append(assignment)
        return assignment

    async def remove_waiter(self, order_id: UUID, user_id: UUID, assignment_id: UUID) -> None:
        row = self.orders.get(order_id)
        if row is not None:
            for index, assignment in enumerate(row.waiters):
                if assignment.id == assignment_id and assignment.user_id == user_id:
                    del row.waiters[index]
                    return

        raise WaiterAssignmentNotFound(detail=str(assignment_id))

    async def health_check(self) -> bool:
        return True

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _order_row(self, order_id: UUID) -> _OrderRow:
        row = self.orders.get(order_id)
        if row is None:
            raise OrderNotFound(detail=str(order_id))
        return row

    def _current_order_row(self, table_id: UUID) -> Optional[_OrderRow]:
        for row in self.orders.values():
            if row.table_id == table_id and row.status in CURRENT_ORDER_STATUSES:
                return row
        return None


class InMemoryPaymentsRepository(BasePaymentsRepository):
    """Payments repository kept in process memory."""

    def __init__(self):
        self.payments: dict[str, PaymentRecord] = {}

    async def save_payment(self, record: PaymentRecord) -> PaymentRecord:
        existing = self.payments.get(record.provider_payment_id)
        if existing is not None:
            logger.info(f"Payment {record.provider_payment_id} already stored, skipping")
            return existing

        saved = record.model_copy(update={"id": uuid.uuid4()})
        self.payments[record.provider_payment_id] = saved
        return saved
