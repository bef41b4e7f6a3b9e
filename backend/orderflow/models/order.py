"""Customer order models: Order, OrderItem and OrderItemModifier."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, deferred, mapped_column, relationship

from orderflow.db.base import Base, TimestampMixin, VersionMixin


class OrderStatus(str, Enum):
    """Lifecycle of a customer order. Legal edges live in the state machine."""

    CREATED = "created"
    SENT_TO_KITCHEN = "sent_to_kitchen"
    PREPARING = "preparing"
    READY = "ready"
    READY_FOR_PICKUP = "ready_for_pickup"
    PAID = "paid"
    CANCELLED = "cancelled"


class Order(Base, TimestampMixin, VersionMixin):
    """A customer's set of requested items, from creation to payment."""

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    table_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    customer_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    discount_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    tax_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    suggested_tip: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e]),
        default=OrderStatus.CREATED,
        nullable=False,
        index=True,
    )
    created_by_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    closed_by_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    estimated_prep_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    pickup_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    @property
    def is_takeout(self) -> bool:
        return self.table_id is None


class OrderItem(Base):
    """One line of an order.

    ``product_id`` and ``product_size_id`` are soft references (no foreign
    key) so an order survives product deletion. ``product_name`` and
    ``size_label`` are snapshots taken at creation and never refreshed.
    """

    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint("unit_price > 0", name="ck_order_items_unit_price_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    product_size_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    product_name: Mapped[str] = mapped_column(String(160), nullable=False)
    size_label: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Optional column on older databases; read through SchemaCapabilities
    ingredient_overrides: Mapped[Optional[dict]] = deferred(mapped_column(JSON, nullable=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # Relationships
    order: Mapped["Order"] = relationship("Order", back_populates="items")
    modifiers: Mapped[list["OrderItemModifier"]] = relationship(
        "OrderItemModifier",
        back_populates="order_item",
        cascade="all, delete-orphan",
        order_by="OrderItemModifier.id",
    )


class OrderItemModifier(Base):
    """A modifier option chosen for an order item (extra cheese, no onion)."""

    __tablename__ = "order_item_modifiers"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_item_id: Mapped[int] = mapped_column(
        ForeignKey("order_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    modifier_option_id: Mapped[int] = mapped_column(Integer, nullable=False)
    option_name: Mapped[str] = mapped_column(String(120), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    # Relationships
    order_item: Mapped["OrderItem"] = relationship("OrderItem", back_populates="modifiers")
