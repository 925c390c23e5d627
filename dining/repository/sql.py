"""
SQLAlchemy Repository Implementation

Each public method runs in its own session and transaction, so every call is
read-committed on its own; the order core never relies on multi-call
atomicity. Storage failures are wrapped in ``RepositoryError``.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql import func

from dining.errors import (
    MenuItemNotFound,
    NoCurrentOrder,
    OrderItemNotFound,
    OrderNotFound,
    RepositoryError,
    TableNotFound,
    WaiterAssignmentNotFound,
)
from dining.models import (
    CURRENT_ORDER_STATUSES,
    MenuItem,
    Order,
    OrderItem,
    OrderStatus,
    OrderWaiter,
    Payment,
    Restaurant,
    RestaurantStaff,
    RestaurantTable,
)
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

# Plain UPDATE/DELETE statements; rowcount stays exact and no ORM state is synced
_BULK = {"synchronize_session": False}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _SqlRepository:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @asynccontextmanager
    async def _transaction(self, action: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_maker() as session, session.begin():
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Database error while {action}: {e}")
            raise RepositoryError(detail=action) from e


class SqlOrdersRepository(_SqlRepository, BaseOrdersRepository):
    """Orders repository backed by the relational database."""

    async def get_current_order_for_table(self, table_id: UUID) -> CurrentOrderResponse:
        async with self._transaction("fetching current order for table") as session:
            order_id = (
                await session.execute(
                    select(Order.id)
                    .where(Order.table_id == table_id, Order.status.in_(CURRENT_ORDER_STATUSES))
                    .order_by(Order.created_at.desc())
                    .limit(1)
                )
            ).scalar_one_or_none()

        if order_id is None:
            raise NoCurrentOrder(detail=str(table_id))

        return CurrentOrderResponse(id=order_id)

    async def create_order_for_table(self, table_id: UUID, currency: str) -> CurrentOrderResponse:
        order_id = uuid.uuid4()

        try:
            async with self._session_maker() as session, session.begin():
                restaurant_id = (
                    await session.execute(
                        select(RestaurantTable.restaurant_id).where(RestaurantTable.id == table_id)
                    )
                ).scalar_one_or_none()
                if restaurant_id is None:
                    raise TableNotFound(detail=str(table_id))

                session.add(Order(
                    id=order_id,
                    restaurant_id=restaurant_id,
                    table_id=table_id,
                    status=OrderStatus.OPEN,
                    currency=currency,
                    tip_amount_in_cents=0,
                ))
        except IntegrityError:
            # Lost the race against another writer on the partial unique index
            logger.info(f"Table {table_id} got a current order concurrently, reusing it")
            return await self.get_current_order_for_table(table_id)
        except SQLAlchemyError as e:
            logger.error(f"Database error while inserting new order: {e}")
            raise RepositoryError(detail="inserting new order") from e

        logger.info(f"Created order {order_id} for table {table_id} ({currency})")
        return CurrentOrderResponse(id=order_id)

    async def get_table_currency(self, table_id: UUID) -> str:
        async with self._transaction("fetching table currency") as session:
            currency = (
                await session.execute(
                    select(Restaurant.currency)
                    .join(RestaurantTable, RestaurantTable.restaurant_id == Restaurant.id)
                    .where(RestaurantTable.id == table_id)
                )
            ).scalar_one_or_none()

        if currency is None:
            raise TableNotFound(detail=str(table_id))

        return currency

    async def add_item_to_order(self, order_id: UUID, item: MenuItemSnapshot) -> OrderItemResponse:
        row = OrderItem(
            id=uuid.uuid4(),
            order_id=order_id,
            item_id=item.id,
            restaurant_id=item.restaurant_id,
            item_name=item.name,
            price_in_cents=item.price_in_cents,
            created_at=_utcnow(),
        )

        added = OrderItemResponse(
            id=row.id,
            item_id=item.id,
            restaurant_id=item.restaurant_id,
            name=item.name,
            price_in_cents=item.price_in_cents,
        )

        async with self._transaction("inserting order item") as session:
            session.add(row)
            await session.execute(
                update(Order).where(Order.id == order_id).values(updated_at=func.now()),
                execution_options=_BULK,
            )

        return added

    async def get_order(self, order_id: UUID) -> OrderResponse:
        async with self._transaction("fetching order") as session:
            result = (
                await session.execute(
                    select(Order, Restaurant.name)
                    .join(Restaurant, Restaurant.id == Order.restaurant_id, isouter=True)
                    .where(Order.id == order_id)
                )
            ).one_or_none()
            if result is None:
                raise OrderNotFound(detail=str(order_id))

            order, restaurant_name = result

            items = (
                await session.execute(
                    select(OrderItem)
                    .where(OrderItem.order_id == order_id)
                    .order_by(OrderItem.created_at, OrderItem.id)
                )
            ).scalars().all()

            waiters = (
                await session.execute(
                    select(OrderWaiter)
                    .where(OrderWaiter.order_id == order_id)
                    .order_by(OrderWaiter.created_at, OrderWaiter.id)
                )
            ).scalars().all()

            return OrderResponse(
                id=order.id,
                restaurant_id=order.restaurant_id,
                restaurant_name=restaurant_name,
                table_id=order.table_id,
                status=order.status,
                currency=order.currency,
                tip_amount_in_cents=order.tip_amount_in_cents or 0,
                updated_at=order.updated_at,
                items=[
                    OrderItemResponse(
                        id=i.id,
                        item_id=i.item_id,
                        restaurant_id=i.restaurant_id,
                        name=i.item_name,
                        price_in_cents=i.price_in_cents,
                    )
                    for i in items
                ],
                waiters=[WaiterAssignmentResponse(id=w.id, user_id=w.user_id) for w in waiters],
            )

    async def get_menu_item(self, item_id: UUID) -> MenuItemSnapshot:
        async with self._transaction("fetching menu item") as session:
            item = await session.get(MenuItem, item_id)
            if item is None:
                raise MenuItemNotFound(detail=str(item_id))

            return MenuItemSnapshot(
                id=item.id,
                restaurant_id=item.restaurant_id,
                name=item.name,
                price_in_cents=item.price_in_cents,
            )

    async def delete_order_item(self, order_item_id: UUID, order_id: UUID) -> OrderItemResponse:
        async with self._transaction("deleting order item") as session:
            row = (
                await session.execute(
                    select(OrderItem).where(
                        OrderItem.id == order_item_id,
                        OrderItem.order_id == order_id,
                    )
                )
            ).scalar_one_or_none()
            if row is None:
                raise OrderItemNotFound(detail=str(order_item_id))

            deleted = OrderItemResponse(
                id=row.id,
                item_id=row.item_id,
                restaurant_id=row.restaurant_id,
                name=row.item_name,
                price_in_cents=row.price_in_cents,
            )

            await session.execute(
                delete(OrderItem).where(OrderItem.id == order_item_id),
                execution_options=_BULK,
            )
            await session.execute(
                update(Order).where(Order.id == order_id).values(updated_at=func.now()),
                execution_options=_BULK,
            )

        return deleted

    async def update_order(self, order_id: UUID, request: UpdateOrderRequest) -> None:
        values = {"updated_at": func.now()}
        if request.status is not None:
            values["status"] = request.status
        if request.tip_amount_in_cents is not None:
            values["tip_amount_in_cents"] = request.tip_amount_in_cents

        async with self._transaction("updating order") as session:
            result = await session.execute(
                update(Order).where(Order.id == order_id).values(**values),
                execution_options=_BULK,
            )
            if result.rowcount == 0:
                raise OrderNotFound(detail=str(order_id))

    async def is_user_restaurant_waiter(self, user_id: UUID, restaurant_id: UUID) -> bool:
        async with self._transaction("checking restaurant staff") as session:
            staff_id = (
                await session.execute(
                    select(RestaurantStaff.id).where(
                        RestaurantStaff.user_id == user_id,
                        RestaurantStaff.restaurant_id == restaurant_id,
                    )
                )
            ).scalar_one_or_none()

        return staff_id is not None

    async def assign_waiter(self, order_id: UUID, user_id: UUID) -> WaiterAssignmentResponse:
        assignment_id = uuid.uuid4()

        try:
            async with self._session_maker() as session, session.begin():
                session.add(OrderWaiter(
                    id=assignment_id,
                    order_id=order_id,
                    user_id=user_id,
                    created_at=_utcnow(),
                ))
        except IntegrityError:
            existing = await self._get_assignment(order_id, user_id)
            if existing is None:
                raise OrderNotFound(detail=str(order_id))
            return existing
        except SQLAlchemyError as e:
            logger.error(f"Database error while assigning waiter: {e}")
            raise RepositoryError(detail="assigning waiter") from e

        return WaiterAssignmentResponse(id=assignment_id, user_id=user_id)

    async def _get_assignment(self, order_id: UUID, user_id: UUID):
        async with self._transaction("fetching waiter assignment") as session:
            row = (
                await session.execute(
                    select(OrderWaiter).where(
                        OrderWaiter.order_id == order_id,
                        OrderWaiter.user_id == user_id,
                    )
                )
            ).scalar_one_or_none()
            if row is None:
                return None
            return WaiterAssignmentResponse(id=row.id, user_id=row.user_id)

    async def remove_waiter(self, order_id: UUID, user_id: UUID, assignment_id: UUID) -> None:
        async with self._transaction("removing waiter") as session:
            result = await session.execute(
                delete(OrderWaiter).where(
                    OrderWaiter.id == assignment_id,
                    OrderWaiter.user_id == user_id,
                    OrderWaiter.order_id == order_id,
                ),
                execution_options=_BULK,
            )
            if result.rowcount == 0:
                raise WaiterAssignmentNotFound(detail=str(assignment_id))

    async def health_check(self) -> bool:
        try:
            async with self._session_maker() as session:
                await session.execute(select(func.now()))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False


class SqlPaymentsRepository(_SqlRepository, BasePaymentsRepository):
    """Payments repository backed by the relational database."""

    async def save_payment(self, record: PaymentRecord) -> PaymentRecord:
        payment_id = uuid.uuid4()

        try:
            async with self._session_maker() as session, session.begin():
                session.add(Payment(
                    id=payment_id,
                    order_id=record.order_id,
                    amount_in_cents=record.amount_in_cents,
                    currency=record.currency,
                    provider=record.provider,
                    provider_payment_id=record.provider_payment_id,
                ))
        except IntegrityError as e:
            # Providers redeliver webhooks; the first stored payment wins
            existing = await self._get_by_provider_id(record.provider_payment_id)
            if existing is None:
                logger.error(f"Database error while saving payment {record.provider_payment_id}: {e}")
                raise RepositoryError(detail="saving payment") from e
            logger.info(f"Payment {record.provider_payment_id} already stored, skipping")
            return existing
        except SQLAlchemyError as e:
            logger.error(f"Database error while saving payment {record.provider_payment_id}: {e}")
            raise RepositoryError(detail="saving payment") from e

        return record.model_copy(update={"id": payment_id})

    async def _get_by_provider_id(self, provider_payment_id: str):
        async with self._transaction("fetching payment") as session:
            row = (
                await session.execute(
                    select(Payment).where(Payment.provider_payment_id == provider_payment_id)
                )
            ).scalar_one_or_none()

            if row is None:
                return None
            return PaymentRecord(
                id=row.id,
                order_id=row.order_id,
                amount_in_cents=row.amount_in_cents,
                currency=row.currency,
                provider=row.provider,
                provider_payment_id=row.provider_payment_id,
            )
