"""Inventory routes - items, movements and ledger integrity."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Query, status

from orderflow.api.deps import ActingUserId, InventoryLedgerDep
from orderflow.core.errors import UnknownInventoryItem
from orderflow.db.session import unit_of_work
from orderflow.models.inventory import InventoryItem
from orderflow.schemas.inventory import (
    BalanceCheckResponse,
    IntegrityReport,
    InventoryItemCreate,
    InventoryItemResponse,
    MovementCreate,
    MovementResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/items", response_model=InventoryItemResponse, status_code=status.HTTP_201_CREATED)
def create_item(data: InventoryItemCreate, ledger: InventoryLedgerDep, user_id: ActingUserId):
    """Create an inventory item; opening stock is booked as an entry."""
    with unit_of_work(ledger.db):
        item = ledger.create_item(
            name=data.name,
            unit=data.unit,
            opening_quantity=data.opening_quantity,
            category=data.category,
            min_stock=data.min_stock,
            max_stock=data.max_stock,
            unit_cost=data.unit_cost,
            supplier=data.supplier,
            acting_user_id=user_id,
        )
        response = InventoryItemResponse.model_validate(item)
    return response


@router.get("/items", response_model=List[InventoryItemResponse])
def list_items(
    ledger: InventoryLedgerDep,
    category: Optional[str] = None,
    active_only: bool = True,
):
    query = ledger.db.query(InventoryItem)
    if category:
        query = query.filter(InventoryItem.category == category)
    if active_only:
        query = query.filter(InventoryItem.active.is_(True))
    return query.order_by(InventoryItem.name).all()


@router.get("/items/low-stock", response_model=List[InventoryItemResponse])
def low_stock(ledger: InventoryLedgerDep):
    """Items at or below their minimum stock."""
    return ledger.low_stock_items()


@router.get("/items/{item_id}", response_model=InventoryItemResponse)
def get_item(item_id: int, ledger: InventoryLedgerDep):
    item = ledger.db.get(InventoryItem, item_id)
    if item is None:
        raise UnknownInventoryItem(item_id)
    return item


@router.post("/movements", response_model=MovementResponse, status_code=status.HTTP_201_CREATED)
def register_movement(data: MovementCreate, ledger: InventoryLedgerDep, user_id: ActingUserId):
    """Register an entry, exit or stock count (adjustment)."""
    with unit_of_work(ledger.db):
        movement = ledger.register_movement(
            inventory_item_id=data.inventory_item_id,
            movement_type=data.movement_type,
            quantity=data.quantity,
            origin=data.origin,
            reason=data.reason,
            unit_cost=data.unit_cost,
            acting_user_id=user_id,
        )
        ledger.db.flush()
        response = MovementResponse.model_validate(movement)
    return response


@router.get("/movements", response_model=List[MovementResponse])
def list_movements(
    ledger: InventoryLedgerDep,
    inventory_item_id: Optional[int] = None,
    order_id: Optional[int] = None,
    limit: int = Query(200, ge=1, le=1000),
):
    return ledger.list_movements(inventory_item_id=inventory_item_id, order_id=order_id, limit=limit)


@router.get("/integrity", response_model=IntegrityReport)
def check_integrity(ledger: InventoryLedgerDep):
    """Recompute every balance from its movements and report mismatches."""
    checks = ledger.verify_all_balances()
    return IntegrityReport(
        checked=len(checks),
        mismatches=[BalanceCheckResponse.model_validate(c) for c in checks if not c.matches],
    )


@router.post("/integrity/clamp-negative", response_model=List[MovementResponse])
def clamp_negative(ledger: InventoryLedgerDep, user_id: ActingUserId):
    """Correct negative balances to zero with adjustment movements."""
    with unit_of_work(ledger.db):
        movements = ledger.clamp_negative_balances(user_id)
        response = [MovementResponse.model_validate(m) for m in movements]
    return response
