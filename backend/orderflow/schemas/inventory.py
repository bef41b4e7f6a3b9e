"""Inventory and reconciliation schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from orderflow.models.inventory import MovementOrigin, MovementType


class InventoryItemCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    unit: str = Field(min_length=1, max_length=32)
    category: str = "General"
    opening_quantity: Decimal = Field(default=Decimal("0"), ge=0)
    min_stock: Decimal = Field(default=Decimal("0"), ge=0)
    max_stock: Optional[Decimal] = Field(default=None, ge=0)
    unit_cost: Optional[Decimal] = Field(default=None, ge=0)
    supplier: Optional[str] = None


class InventoryItemResponse(BaseModel):
    id: int
    name: str
    category: str
    unit: str
    current_quantity: Decimal
    min_stock: Decimal
    max_stock: Optional[Decimal] = None
    unit_cost: Optional[Decimal] = None
    supplier: Optional[str] = None
    active: bool

    model_config = {"from_attributes": True}


class MovementCreate(BaseModel):
    """Operator-entered movement.

    ``quantity`` is the magnitude for entries and exits and the counted stock
    for adjustments.
    """

    inventory_item_id: int
    movement_type: MovementType
    quantity: Decimal = Field(ge=0)
    origin: MovementOrigin = MovementOrigin.MANUAL
    reason: Optional[str] = Field(default=None, max_length=255)
    unit_cost: Optional[Decimal] = Field(default=None, ge=0)


class MovementResponse(BaseModel):
    id: int
    inventory_item_id: int
    movement_type: MovementType
    quantity: Decimal
    unit_cost: Optional[Decimal] = None
    reason: Optional[str] = None
    origin: MovementOrigin
    order_id: Optional[int] = None
    created_by_user_id: Optional[int] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class BalanceCheckResponse(BaseModel):
    inventory_item_id: int
    name: str
    materialized: Decimal
    ledger: Decimal
    matches: bool

    model_config = {"from_attributes": True}


class IntegrityReport(BaseModel):
    checked: int
    mismatches: List[BalanceCheckResponse] = []


class ReconciliationRequest(BaseModel):
    as_of: Optional[datetime] = None


class ReconciliationErrorEntry(BaseModel):
    order_id: int
    code: str
    message: str


class ReconciliationReportResponse(BaseModel):
    processed: int
    skipped: int
    errored: int
    errors: List[ReconciliationErrorEntry] = []
    started_at: datetime
    finished_at: datetime

    model_config = {"from_attributes": True}
