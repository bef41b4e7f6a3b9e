"""Idempotency markers for per-order side effects.

Existence of a non-repeat marker row is the only source of truth for
"this side effect already ran automatically for this order". Order status is
never used for that decision.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from orderflow.db.base import Base


class SideEffectKind(str, Enum):
    INVENTORY_DEDUCT = "inventory-deduct"
    PRINT_TICKET = "print-ticket"


class SideEffectMarker(Base):
    """One row per completed side effect run (automatic or repeat)."""

    __tablename__ = "side_effect_markers"
    __table_args__ = (
        # At most one automatic (non-repeat) marker per order and kind
        Index(
            "uq_side_effect_markers_automatic",
            "order_id",
            "kind",
            unique=True,
            sqlite_where=text("is_repeat = 0"),
            postgresql_where=text("is_repeat = false"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[SideEffectKind] = mapped_column(
        SQLEnum(
            SideEffectKind,
            native_enum=False,
            length=32,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    is_repeat: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    actor_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
