"""Order schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, computed_field

from orderflow.models.order import OrderStatus
from orderflow.models.side_effect import SideEffectKind


class ModifierInput(BaseModel):
    """A chosen modifier option."""

    modifier_option_id: int
    option_name: str = Field(min_length=1, max_length=120)
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)


class OrderItemInput(BaseModel):
    """One line of an order creation or add-items request.

    ``unit_price`` falls back to the catalog price of the size or product.
    ``omit_ingredients`` lists inventory item ids of optional ingredients to
    skip; ``ingredient_factors`` scales customizable ones ("2" = double).
    """

    product_id: int
    product_size_id: Optional[int] = None
    product_name: Optional[str] = Field(default=None, max_length=160)
    size_label: Optional[str] = Field(default=None, max_length=60)
    quantity: int = Field(gt=0)
    unit_price: Optional[Decimal] = Field(default=None, gt=0)
    note: Optional[str] = None
    modifiers: List[ModifierInput] = []
    omit_ingredients: List[int] = []
    ingredient_factors: Dict[int, Decimal] = {}


class OrderCreate(BaseModel):
    """Order creation schema. ``table_id`` absent means takeout."""

    table_id: Optional[int] = None
    customer_id: Optional[int] = None
    customer_name: Optional[str] = Field(default=None, max_length=120)
    customer_phone: Optional[str] = Field(default=None, max_length=32)
    discount_total: Decimal = Field(default=Decimal("0"), ge=0)
    tax_total: Decimal = Field(default=Decimal("0"), ge=0)
    suggested_tip: Decimal = Field(default=Decimal("0"), ge=0)
    pickup_time: Optional[datetime] = None
    items: List[OrderItemInput] = Field(min_length=1)


class AddItemsRequest(BaseModel):
    items: List[OrderItemInput] = Field(min_length=1)


class StatusUpdateRequest(BaseModel):
    """Status change request. ``force`` bypasses the stock check on ready."""

    status: OrderStatus
    force: bool = False
    reason: Optional[str] = Field(default=None, max_length=255)


class PrepTimeUpdate(BaseModel):
    minutes: int


class ModifierDetail(BaseModel):
    id: int
    modifier_option_id: int
    option_name: str
    unit_price: Decimal

    model_config = {"from_attributes": True}


class OrderItemDetail(BaseModel):
    id: int
    product_id: int
    product_size_id: Optional[int] = None
    product_name: str
    size_label: Optional[str] = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    note: Optional[str] = None
    modifiers: List[ModifierDetail] = []

    model_config = {"from_attributes": True}


class OrderDetail(BaseModel):
    """Order aggregate as seen by the kitchen, floor and printer."""

    id: int
    status: OrderStatus
    table_id: Optional[int] = None
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    subtotal: Decimal
    discount_total: Decimal
    tax_total: Decimal
    suggested_tip: Decimal
    total: Decimal
    created_by_user_id: Optional[int] = None
    closed_by_user_id: Optional[int] = None
    estimated_prep_minutes: Optional[int] = None
    pickup_time: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    items: List[OrderItemDetail] = []

    model_config = {"from_attributes": True}

    @computed_field
    @property
    def folio(self) -> str:
        return f"ORD-{self.id:06d}"

    @computed_field
    @property
    def is_takeout(self) -> bool:
        return self.table_id is None


class SideEffectMarkerResponse(BaseModel):
    id: int
    order_id: int
    kind: SideEffectKind
    is_repeat: bool
    actor_user_id: Optional[int] = None
    details: Optional[dict] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TransitionResponse(BaseModel):
    """Result of a status change."""

    order: OrderDetail
    previous_status: OrderStatus
    changed: bool
    inventory_deducted: bool = False
    ticket_queued: bool = False


class SideEffectResponse(BaseModel):
    """Result of a manual reprint or re-deduction."""

    order_id: int
    marker: SideEffectMarkerResponse
    rendered_path: Optional[str] = None
