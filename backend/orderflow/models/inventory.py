"""Inventory models: InventoryItem balances and the InventoryMovement ledger."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orderflow.db.base import Base, TimestampMixin


class MovementType(str, Enum):
    """Kinds of stock movement."""

    ENTRY = "entry"
    EXIT = "exit"
    ADJUSTMENT = "adjustment"


class MovementOrigin(str, Enum):
    """Where a movement came from."""

    PURCHASE = "purchase"
    CONSUMPTION = "consumption"
    ADJUSTMENT = "adjustment"
    RETURN = "return"
    MANUAL = "manual"
    AUTOMATIC_RECIPE = "automatic-recipe"  # Order reached ready
    FORCED_RECIPE = "forced-recipe"  # Order forced to ready despite shortfalls


def _values(enum_cls):
    return [member.value for member in enum_cls]


class InventoryItem(Base, TimestampMixin):
    """A stock item. ``current_quantity`` is changed only through movements."""

    __tablename__ = "inventory_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="General")
    unit: Mapped[str] = mapped_column(String(32), nullable=False)
    current_quantity: Mapped[Decimal] = mapped_column(Numeric(14, 4), default=0, nullable=False)
    min_stock: Mapped[Decimal] = mapped_column(Numeric(14, 4), default=0, nullable=False)
    max_stock: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 4), nullable=True)
    unit_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4), nullable=True)
    supplier: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    movements: Mapped[list["InventoryMovement"]] = relationship(
        "InventoryMovement", back_populates="inventory_item"
    )


class InventoryMovement(Base):
    """Ledger of all stock changes (append-only, never updated)."""

    __tablename__ = "inventory_movements"

    id: Mapped[int] = mapped_column(primary_key=True)
    inventory_item_id: Mapped[int] = mapped_column(
        ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    movement_type: Mapped[MovementType] = mapped_column(
        SQLEnum(MovementType, native_enum=False, length=20, values_callable=_values),
        nullable=False,
    )
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)  # signed effect
    unit_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    origin: Mapped[MovementOrigin] = mapped_column(
        SQLEnum(MovementOrigin, native_enum=False, length=32, values_callable=_values),
        nullable=False,
        index=True,
    )
    order_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_by_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    # Relationships
    inventory_item: Mapped["InventoryItem"] = relationship("InventoryItem", back_populates="movements")
