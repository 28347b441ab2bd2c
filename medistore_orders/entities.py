"""
entities.py — Persistence Entities for Orders and the Stock Ledger

SQLAlchemy declarative models for the tables the order core reads and writes.
User and Medicine belong to the identity and catalog modules; only the
columns the order core needs are mapped here.

Entities:
    - User: customer, seller or admin account (projection).
    - Medicine: catalog item carrying the stock ledger (stock + status).
    - Order: order header; status follows ORDER_TRANSITIONS.
    - OrderItem: line item with seller and price snapshots.
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List

from sqlalchemy import CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, enum.Enum):
    CUSTOMER = "CUSTOMER"
    SELLER = "SELLER"
    ADMIN = "ADMIN"


class MedicineStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    DISABLED = "DISABLED"


class OrderStatus(str, enum.Enum):
    PLACED = "PLACED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


# Allowed forward moves of the fulfillment lifecycle. DELIVERED and CANCELLED are terminal.
ORDER_TRANSITIONS = {
    OrderStatus.PLACED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

CANCELLABLE_STATUSES = frozenset(
    status for status, targets in ORDER_TRANSITIONS.items() if OrderStatus.CANCELLED in targets
)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[current]


def _enum_column(enum_cls, name):
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        validate_strings=True,
        values_callable=lambda members: [m.value for m in members],
    )


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    role: Mapped[Role] = mapped_column(_enum_column(Role, "user_role"), default=Role.CUSTOMER)

    def __repr__(self):
        return f"<User {self.email} ({self.role.value})>"


class Medicine(Base):
    __tablename__ = "medicines"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_medicines_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_medicines_price_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[MedicineStatus] = mapped_column(
        _enum_column(MedicineStatus, "medicine_status"), default=MedicineStatus.ACTIVE
    )
    seller_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    seller = relationship("User")

    def __repr__(self):
        return f"<Medicine {self.name} stock={self.stock} {self.status.value}>"


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    customer_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    address: Mapped[str] = mapped_column(String(500), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    status: Mapped[OrderStatus] = mapped_column(
        _enum_column(OrderStatus, "order_status"), default=OrderStatus.PLACED, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    customer = relationship("User")
    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )

    def __repr__(self):
        return f"<Order {self.id} {self.status.value} total={self.total}>"


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (
        UniqueConstraint("order_id", "medicine_id", name="uq_order_items_order_medicine"),
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    order_id: Mapped[str] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    medicine_id: Mapped[str] = mapped_column(ForeignKey("medicines.id"), nullable=False)
    # Snapshots taken when the line was written
    seller_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")
    medicine = relationship("Medicine")

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity
