"""Order State Machine - owns order status and its legal transitions.

    created -> sent_to_kitchen -> preparing -> ready -> ready_for_pickup -> paid
                                                   \\-> paid
    cancelled is reachable from every state except paid.

Entering a ready state (``ready`` or ``ready_for_pickup``) deducts the
order's recipe ingredients and queues the kitchen ticket, each through the
side-effect coordinator, in the same transaction as the status write.
Nothing here commits; ``OrderService`` wraps calls in ``unit_of_work``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Union

from sqlalchemy.orm import Session

from orderflow.core.errors import InsufficientStock, InvalidTransition, UnknownOrder
from orderflow.models.inventory import MovementOrigin, MovementType
from orderflow.models.order import Order, OrderStatus
from orderflow.models.side_effect import SideEffectKind
from orderflow.services.inventory_ledger import InventoryLedger, MovementRequest
from orderflow.services.recipe_resolver import RecipeResolver
from orderflow.services.side_effects import SideEffectCoordinator, SideEffectOutcome

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.CREATED: frozenset({OrderStatus.SENT_TO_KITCHEN, OrderStatus.CANCELLED}),
    OrderStatus.SENT_TO_KITCHEN: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset(
        {OrderStatus.READY_FOR_PICKUP, OrderStatus.PAID, OrderStatus.CANCELLED}
    ),
    OrderStatus.READY_FOR_PICKUP: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

READY_STATES = frozenset({OrderStatus.READY, OrderStatus.READY_FOR_PICKUP})
TERMINAL_STATES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)
KITCHEN_STATES = (OrderStatus.SENT_TO_KITCHEN, OrderStatus.PREPARING, OrderStatus.READY)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True)
class TransitionOptions:
    """``force`` lets a ready transition through despite missing stock."""

    force: bool = False
    reason: Optional[str] = None


@dataclass
class TransitionResult:
    order: Order
    previous_status: OrderStatus
    changed: bool
    side_effects: List[SideEffectOutcome] = field(default_factory=list)

    def outcome(self, kind: SideEffectKind) -> Optional[SideEffectOutcome]:
        for outcome in self.side_effects:
            if outcome.kind == kind:
                return outcome
        return None

    @property
    def ticket_queued(self) -> bool:
        outcome = self.outcome(SideEffectKind.PRINT_TICKET)
        return outcome is not None and outcome.executed


class OrderStateMachine:
    """Validates and applies status changes."""

    def __init__(
        self,
        db: Session,
        resolver: Optional[RecipeResolver] = None,
        ledger: Optional[InventoryLedger] = None,
        coordinator: Optional[SideEffectCoordinator] = None,
    ):
        self.db = db
        self.resolver = resolver or RecipeResolver(db)
        self.ledger = ledger or InventoryLedger(db)
        self.coordinator = coordinator or SideEffectCoordinator(db)

    def lock_order(self, order_id: int) -> Order:
        """Load an order with a row lock held until the transaction ends."""
        order = (
            self.db.query(Order)
            .filter(Order.id == order_id)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )
        if order is None:
            raise UnknownOrder(order_id)
        return order

    def transition(
        self,
        order_id: int,
        target: Union[OrderStatus, str],
        acting_user_id: Optional[int] = None,
        options: Optional[TransitionOptions] = None,
    ) -> TransitionResult:
        """Move an order to ``target``.

        Requesting the current status again is a no-op success without side
        effects, so client retries are harmless.

        Raises:
            UnknownOrder: no such order.
            InvalidTransition: ``target`` is not an edge from the current status.
            InsufficientStock: entering a ready state without enough stock
                and without ``options.force``.
        """
        options = options or TransitionOptions()
        order = self.lock_order(order_id)
        current = order.status

        try:
            target = OrderStatus(target)
        except ValueError:
            raise InvalidTransition(current.value, str(target)) from None

        if target == current:
            logger.debug(f"Order {order_id} already {current.value}; nothing to do")
            return TransitionResult(order=order, previous_status=current, changed=False)

        if not can_transition(current, target):
            raise InvalidTransition(current.value, target.value)

        outcomes = []
        if target in READY_STATES:
            outcomes = self._enter_ready(order, acting_user_id, options)

        order.status = target
        if target == OrderStatus.PAID:
            order.closed_by_user_id = acting_user_id
        self.db.flush()

        logger.info(
            f"Order {order_id}: {current.value} -> {target.value} (user {acting_user_id})"
        )
        return TransitionResult(
            order=order, previous_status=current, changed=True, side_effects=outcomes
        )

    def mark_paid(self, order_id: int, acting_user_id: Optional[int] = None) -> TransitionResult:
        """Accept the payment collaborator's "fully paid" signal."""
        return self.transition(order_id, OrderStatus.PAID, acting_user_id)

    def deduct_inventory(
        self,
        order: Order,
        acting_user_id: Optional[int] = None,
        force: bool = False,
        origin: MovementOrigin = MovementOrigin.AUTOMATIC_RECIPE,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Deduct the order's aggregated recipe consumption from inventory.

        All shortfalls are collected under lock before anything is written.
        With ``force`` a short order is deducted as a forced deduction: the
        movements carry origin ``forced-recipe`` and balances stop at zero.

        Returns:
            Details recorded on the inventory-deduct marker.
        """
        requirements = self.resolver.aggregate_for_order(order)
        shortfalls = self.ledger.check_availability(requirements, lock=True)
        if shortfalls and not force:
            raise InsufficientStock(shortfalls)

        forced = bool(shortfalls)
        movement_origin = MovementOrigin.FORCED_RECIPE if forced else origin
        movement_reason = reason or f"Order {order.id}"

        movements = self.ledger.apply_movements(
            [
                MovementRequest(
                    inventory_item_id=req.inventory_item_id,
                    movement_type=MovementType.EXIT,
                    quantity=req.quantity,
                    origin=movement_origin,
                    reason=movement_reason,
                    order_id=order.id,
                    created_by_user_id=acting_user_id,
                )
                for req in requirements
            ],
            allow_shortfall=forced,
        )

        details: Dict[str, Any] = {
            "origin": movement_origin.value,
            "movement_ids": [m.id for m in movements],
        }
        if forced:
            details["forced"] = True
            details["shortfalls"] = [s.to_dict() for s in shortfalls]
            logger.warning(
                f"FORCED inventory deduction for order {order.id} by user {acting_user_id}: "
                + "; ".join(f"'{s.name}' short by {s.missing} {s.unit}" for s in shortfalls)
            )
        else:
            logger.info(
                f"Deducted inventory for order {order.id}: {len(movements)} movements "
                f"(origin={movement_origin.value})"
            )
        return details

    def _enter_ready(
        self,
        order: Order,
        acting_user_id: Optional[int],
        options: TransitionOptions,
    ) -> List[SideEffectOutcome]:
        deduct_details = {"reason": options.reason} if options.reason else None
        deduction = self.coordinator.ensure_once(
            order.id,
            SideEffectKind.INVENTORY_DEDUCT,
            lambda: self.deduct_inventory(order, acting_user_id, force=options.force),
            actor_user_id=acting_user_id,
            details=deduct_details,
        )
        ticket = self.coordinator.ensure_once(
            order.id,
            SideEffectKind.PRINT_TICKET,
            lambda: {"queued": True},
            actor_user_id=acting_user_id,
        )
        return [deduction, ticket]
