"""Inventory Ledger - Append-only stock movements with materialized balances.

Every change to ``InventoryItem.current_quantity`` is made by inserting an
``InventoryMovement`` and updating the balance in the same transaction, so a
balance always equals the signed sum of the item's movements. Nothing here
commits: callers run these methods inside ``unit_of_work``.

Movement quantities are stored as signed effects:
- entry: +quantity
- exit: -quantity
- adjustment: the signed delta that was applied
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from orderflow.core.errors import InsufficientStock, InvalidOrderData, Shortfall, UnknownInventoryItem
from orderflow.models.inventory import InventoryItem, InventoryMovement, MovementOrigin, MovementType

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
QUANTITY_PLACES = Decimal("0.0001")
REASON_MAX_LENGTH = 255


def _q(value) -> Decimal:
    return Decimal(str(value if value is not None else 0)).quantize(QUANTITY_PLACES)


@dataclass(frozen=True)
class MovementRequest:
    """A movement to apply.

    ``quantity`` is a positive magnitude for entries and exits, and the
    signed delta for adjustments.
    """

    inventory_item_id: int
    movement_type: MovementType
    quantity: Decimal
    origin: MovementOrigin
    reason: Optional[str] = None
    order_id: Optional[int] = None
    unit_cost: Optional[Decimal] = None
    created_by_user_id: Optional[int] = None


@dataclass(frozen=True)
class BalanceCheck:
    """Materialized balance vs. the balance recomputed from movement history."""

    inventory_item_id: int
    name: str
    materialized: Decimal
    ledger: Decimal

    @property
    def matches(self) -> bool:
        return self.materialized == self.ledger

    @property
    def difference(self) -> Decimal:
        return self.materialized - self.ledger


class InventoryLedger:
    """Applies stock movements atomically."""

    def __init__(self, db: Session):
        self.db = db

    # ===== CORE: BATCH MOVEMENTS (ATOMIC) =====

    def apply_movements(
        self,
        movements: Iterable[MovementRequest],
        allow_shortfall: bool = False,
    ) -> List[InventoryMovement]:
        """Apply a batch of movements: all of them or none.

        Affected inventory rows are locked in ascending id order so that two
        batches touching the same items cannot deadlock.

        Args:
            movements: Movements to apply, in order.
            allow_shortfall: Clamp exits at the available balance instead of
                failing. Used only by forced deductions. The movement then
                records the quantity actually removed and its reason records
                the quantity requested.

        Returns:
            The inserted movement rows, flushed.

        Raises:
            InsufficientStock: an exit (or negative adjustment) would take a
                balance below zero; names the first offending item.
            UnknownInventoryItem: a movement references a missing item.
            InvalidOrderData: an entry or exit has a negative quantity.
        """
        movements = list(movements)
        if not movements:
            return []

        for movement in movements:
            if movement.movement_type != MovementType.ADJUSTMENT and movement.quantity < 0:
                raise InvalidOrderData(
                    f"{movement.movement_type.value} quantity must not be negative "
                    f"(inventory item {movement.inventory_item_id})"
                )

        items = self._lock_items({m.inventory_item_id for m in movements})
        balances: Dict[int, Decimal] = {item_id: _q(item.current_quantity) for item_id, item in items.items()}

        # Validate and compute every effect before writing anything
        planned = []
        for movement in movements:
            item = items[movement.inventory_item_id]
            balance = balances[item.id]
            requested = _q(movement.quantity)

            if movement.movement_type == MovementType.ENTRY:
                effect = requested
            elif movement.movement_type == MovementType.EXIT:
                effect = -requested
            else:
                effect = requested

            reason = movement.reason
            if balance + effect < 0:
                if not allow_shortfall:
                    raise InsufficientStock([
                        Shortfall(
                            inventory_item_id=item.id,
                            name=item.name,
                            unit=item.unit,
                            required=-effect,
                            available=balance,
                        )
                    ])
                applied = -max(balance, ZERO)
                suffix = f" (requested {-effect} {item.unit}, applied {-applied})"
                base = (reason or "Forced deduction")[: REASON_MAX_LENGTH - len(suffix)]
                reason = base + suffix
                effect = applied

            balances[item.id] = balance + effect
            planned.append((movement, effect, reason))

        with self.db.begin_nested():
            rows = []
            for movement, effect, reason in planned:
                row = InventoryMovement(
                    inventory_item_id=movement.inventory_item_id,
                    movement_type=movement.movement_type,
                    quantity=effect,
                    unit_cost=movement.unit_cost if movement.unit_cost is not None else items[movement.inventory_item_id].unit_cost,
                    reason=reason,
                    origin=movement.origin,
                    order_id=movement.order_id,
                    created_by_user_id=movement.created_by_user_id,
                )
                self.db.add(row)
                rows.append(row)

            for item_id, balance in balances.items():
                items[item_id].current_quantity = balance

            self.db.flush()

        logger.debug(f"Applied {len(rows)} inventory movements to {len(items)} items")
        return rows

    # ===== SINGLE MOVEMENTS =====

    def register_movement(
        self,
        inventory_item_id: int,
        movement_type: MovementType,
        quantity: Decimal,
        origin: MovementOrigin = MovementOrigin.MANUAL,
        reason: Optional[str] = None,
        unit_cost: Optional[Decimal] = None,
        acting_user_id: Optional[int] = None,
        order_id: Optional[int] = None,
    ) -> InventoryMovement:
        """Register one operator-entered movement.

        For entries and exits ``quantity`` is the magnitude. For adjustments it
        is the counted quantity: the balance is set to it and the movement
        stores the difference.
        """
        if movement_type == MovementType.ADJUSTMENT:
            if quantity < 0:
                raise InvalidOrderData("Counted quantity must not be negative")
            item = self._lock_items({inventory_item_id})[inventory_item_id]
            delta = _q(quantity) - _q(item.current_quantity)
            request_qty = delta
            reason = reason or f"Stock count: {_q(item.current_quantity)} -> {_q(quantity)} {item.unit}"
        else:
            if quantity <= 0:
                raise InvalidOrderData("Movement quantity must be greater than zero")
            request_qty = quantity

        [movement] = self.apply_movements([
            MovementRequest(
                inventory_item_id=inventory_item_id,
                movement_type=movement_type,
                quantity=request_qty,
                origin=origin,
                reason=reason,
                order_id=order_id,
                unit_cost=unit_cost,
                created_by_user_id=acting_user_id,
            )
        ])
        logger.info(
            f"Registered {movement_type.value} of {movement.quantity} on inventory item "
            f"{inventory_item_id} (origin={origin.value})"
        )
        return movement

    def create_item(
        self,
        name: str,
        unit: str,
        opening_quantity: Decimal = ZERO,
        category: str = "General",
        min_stock: Decimal = ZERO,
        max_stock: Optional[Decimal] = None,
        unit_cost: Optional[Decimal] = None,
        supplier: Optional[str] = None,
        acting_user_id: Optional[int] = None,
    ) -> InventoryItem:
        """Create an inventory item. Opening stock is booked as an entry movement."""
        if opening_quantity < 0:
            raise InvalidOrderData("Opening quantity must not be negative")

        item = InventoryItem(
            name=name,
            unit=unit,
            category=category,
            current_quantity=ZERO,
            min_stock=min_stock,
            max_stock=max_stock,
            unit_cost=unit_cost,
            supplier=supplier,
        )
        self.db.add(item)
        self.db.flush()

        if opening_quantity > 0:
            self.apply_movements([
                MovementRequest(
                    inventory_item_id=item.id,
                    movement_type=MovementType.ENTRY,
                    quantity=opening_quantity,
                    origin=MovementOrigin.PURCHASE,
                    reason="Opening stock",
                    unit_cost=unit_cost,
                    created_by_user_id=acting_user_id,
                )
            ])
        return item

    # ===== READS =====

    def check_availability(self, requirements, lock: bool = False) -> List[Shortfall]:
        """Shortfalls for a list of requirements (``inventory_item_id`` + ``quantity``).

        Every short item is reported. Without ``lock`` this is a plain read and
        ``apply_movements`` checks again under lock; with ``lock`` the rows stay
        locked until the caller's transaction ends.
        """
        needed: Dict[int, Decimal] = {}
        for req in requirements:
            needed[req.inventory_item_id] = needed.get(req.inventory_item_id, ZERO) + _q(req.quantity)
        if not needed:
            return []

        if lock:
            items = self._lock_items(set(needed))
        else:
            items = {
                item.id: item
                for item in self.db.query(InventoryItem).filter(InventoryItem.id.in_(list(needed)))
            }
        shortfalls = []
        for item_id in sorted(needed):
            item = items.get(item_id)
            if item is None:
                raise UnknownInventoryItem(item_id)
            available = _q(item.current_quantity)
            if available < needed[item_id]:
                shortfalls.append(
                    Shortfall(
                        inventory_item_id=item_id,
                        name=item.name,
                        unit=item.unit,
                        required=needed[item_id],
                        available=available,
                    )
                )
        return shortfalls

    def list_movements(
        self,
        inventory_item_id: Optional[int] = None,
        order_id: Optional[int] = None,
        limit: int = 200,
    ) -> List[InventoryMovement]:
        query = self.db.query(InventoryMovement)
        if inventory_item_id is not None:
            query = query.filter(InventoryMovement.inventory_item_id == inventory_item_id)
        if order_id is not None:
            query = query.filter(InventoryMovement.order_id == order_id)
        return query.order_by(InventoryMovement.id.desc()).limit(limit).all()

    def low_stock_items(self) -> List[InventoryItem]:
        """Active items at or below their minimum stock."""
        return (
            self.db.query(InventoryItem)
            .filter(
                InventoryItem.active.is_(True),
                InventoryItem.current_quantity <= InventoryItem.min_stock,
            )
            .order_by(InventoryItem.name)
            .all()
        )

    # ===== INTEGRITY =====

    def verify_balance(self, inventory_item_id: int) -> BalanceCheck:
        """Recompute one balance from its full movement history."""
        item = self.db.get(InventoryItem, inventory_item_id)
        if item is None:
            raise UnknownInventoryItem(inventory_item_id)
        ledger = self.db.query(
            func.coalesce(func.sum(InventoryMovement.quantity), 0)
        ).filter(InventoryMovement.inventory_item_id == inventory_item_id).scalar()
        return BalanceCheck(
            inventory_item_id=item.id,
            name=item.name,
            materialized=_q(item.current_quantity),
            ledger=_q(ledger),
        )

    def verify_all_balances(self) -> List[BalanceCheck]:
        sums = dict(
            self.db.query(InventoryMovement.inventory_item_id, func.sum(InventoryMovement.quantity))
            .group_by(InventoryMovement.inventory_item_id)
            .all()
        )
        checks = []
        for item in self.db.query(InventoryItem).order_by(InventoryItem.id):
            check = BalanceCheck(
                inventory_item_id=item.id,
                name=item.name,
                materialized=_q(item.current_quantity),
                ledger=_q(sums.get(item.id)),
            )
            if not check.matches:
                logger.warning(
                    f"Balance mismatch for inventory item {item.id} ('{item.name}'): "
                    f"materialized={check.materialized} ledger={check.ledger}"
                )
            checks.append(check)
        return checks

    def clamp_negative_balances(self, acting_user_id: Optional[int] = None) -> List[InventoryMovement]:
        """Bring negative balances back to zero with adjustment movements."""
        negative_ids = [
            item_id
            for (item_id,) in self.db.query(InventoryItem.id).filter(InventoryItem.current_quantity < 0)
        ]
        if not negative_ids:
            return []

        items = self._lock_items(set(negative_ids))
        requests = [
            MovementRequest(
                inventory_item_id=item.id,
                movement_type=MovementType.ADJUSTMENT,
                quantity=-_q(item.current_quantity),
                origin=MovementOrigin.ADJUSTMENT,
                reason=f"Negative balance {_q(item.current_quantity)} corrected to 0",
                created_by_user_id=acting_user_id,
            )
            for item in items.values()
            if item.current_quantity < 0
        ]
        movements = self.apply_movements(requests)
        for movement in movements:
            logger.warning(
                f"Corrected negative balance of inventory item {movement.inventory_item_id} "
                f"by {movement.quantity}"
            )
        return movements

    # ===== HELPERS =====

    def _lock_items(self, item_ids) -> Dict[int, InventoryItem]:
        """Lock inventory rows (ascending id) and return them by id."""
        ordered = sorted(item_ids)
        rows = (
            self.db.query(InventoryItem)
            .filter(InventoryItem.id.in_(ordered))
            .order_by(InventoryItem.id)
            .with_for_update()
            .populate_existing()
            .all()
        )
        items = {item.id: item for item in rows}
        for item_id in ordered:
            if item_id not in items:
                raise UnknownInventoryItem(item_id)
        return items
