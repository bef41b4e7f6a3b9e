"""Recipe rules: how much stock a product consumes per portion sold."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orderflow.db.base import Base, TimestampMixin


class ProductIngredientRule(Base, TimestampMixin):
    """Links a product (optionally one size of it) to an inventory item.

    Created and edited by product management; read-only to fulfillment.
    """

    __tablename__ = "product_ingredient_rules"

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_size_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("product_sizes.id", ondelete="SET NULL"), nullable=True, index=True
    )
    inventory_item_id: Mapped[int] = mapped_column(
        ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    quantity_per_portion: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    unit: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # None = stock unit
    auto_deduct: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    customizable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    optional: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Relationships
    inventory_item: Mapped["InventoryItem"] = relationship("InventoryItem")


# Forward references
from orderflow.models.inventory import InventoryItem  # noqa: E402
