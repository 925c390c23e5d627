"""
SQLAlchemy Database Models

Tables owned by the orders service (orders, order items, waiter assignments,
payments) plus the restaurant-side tables the order core reads
(restaurants, tables, menu items, staff).
"""

import enum
import uuid

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.sql import func

from dining.database import Base


class OrderStatus(str, enum.Enum):
    """
    Order status workflow.

    open -> locked -> completed, and open|locked -> cancelled.
    """
    OPEN = "open"
    LOCKED = "locked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_finalized(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


# Statuses that make an order the "current" order of its table
CURRENT_ORDER_STATUSES = (OrderStatus.OPEN, OrderStatus.LOCKED)

# Partial index predicate; the Enum column stores member names
_CURRENT_ORDER_PREDICATE = "status IN ('OPEN', 'LOCKED')"


class StaffRole(int, enum.Enum):
    """Restaurant staff roles, matching the auth service role ids."""
    MANAGER = 1
    WAITER = 2


# =============================================================================
# RESTAURANT SIDE (read by the order core)
# =============================================================================

class Restaurant(Base):
    __tablename__ = "restaurants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    currency = Column(String(3), nullable=False, default="eur")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Restaurant {self.id} - {self.name}>"


class RestaurantTable(Base):
    __tablename__ = "restaurant_tables"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(
        Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(50), nullable=False)

    def __repr__(self):
        return f"<RestaurantTable {self.id} - {self.name}>"


class MenuItem(Base):
    __tablename__ = "menu_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(
        Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(100), nullable=False)
    price_in_cents = Column(Integer, nullable=False)

    def __repr__(self):
        return f"<MenuItem {self.id} - {self.name} - {self.price_in_cents}>"


class RestaurantStaff(Base):
    """Users allowed to handle orders of a restaurant."""
    __tablename__ = "restaurant_staff"
    __table_args__ = (UniqueConstraint("user_id", "restaurant_id", name="uq_staff_user_restaurant"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    restaurant_id = Column(
        Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role = Column(Integer, nullable=False, default=StaffRole.WAITER.value)


# =============================================================================
# ORDERS
# =============================================================================

class Order(Base):
    """
    A table's purchase session.

    Orders are never deleted; finalized orders stay queryable. At most one
    open or locked order exists per table (partial unique index).
    """
    __tablename__ = "orders"
    __table_args__ = (
        Index(
            "uq_orders_current_per_table",
            "table_id",
            unique=True,
            postgresql_where=text(_CURRENT_ORDER_PREDICATE),
            sqlite_where=text(_CURRENT_ORDER_PREDICATE),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id"), nullable=False, index=True)
    table_id = Column(Uuid, ForeignKey("restaurant_tables.id"), nullable=False, index=True)

    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.OPEN,
        nullable=False,
        index=True
    )
    currency = Column(String(3), nullable=False)
    tip_amount_in_cents = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Order {self.id} - {self.status.value}>"


class OrderItem(Base):
    """Frozen-price copy of a menu item placed on an order."""
    __tablename__ = "order_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Kept nullable so removing a menu item never touches placed orders
    item_id = Column(Uuid, ForeignKey("menu_items.id", ondelete="SET NULL"), nullable=True)
    restaurant_id = Column(Uuid, nullable=False)
    item_name = Column(String(100), nullable=False)
    price_in_cents = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class OrderWaiter(Base):
    """Assignment of a staff user to an order."""
    __tablename__ = "order_waiters"
    __table_args__ = (UniqueConstraint("order_id", "user_id", name="uq_order_waiter"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(Uuid, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Payment(Base):
    """Verified payment for an order. Rows are never updated."""
    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id"), nullable=False, index=True)
    amount_in_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    provider = Column(String(30), nullable=False)
    provider_payment_id = Column(String(255), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Payment {self.provider_payment_id} - {self.amount_in_cents} {self.currency}>"
