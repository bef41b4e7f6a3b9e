"""Order Service - the operations the HTTP layer calls.

Each mutating call runs in its own ``unit_of_work``. Notifications and the
physical printing of automatically queued kitchen tickets happen only after
the commit, and their failures never undo it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session, selectinload

from orderflow.core.config import Settings, get_settings
from orderflow.core.errors import (
    FulfillmentError,
    InvalidOrderData,
    SideEffectFailed,
    UnknownOrder,
    UnknownProduct,
)
from orderflow.db.capabilities import capabilities_for
from orderflow.db.session import unit_of_work
from orderflow.models.inventory import MovementOrigin
from orderflow.models.order import Order, OrderItem, OrderItemModifier, OrderStatus
from orderflow.models.product import Product, ProductSize
from orderflow.models.side_effect import SideEffectKind, SideEffectMarker
from orderflow.schemas.order import OrderCreate, OrderDetail, OrderItemInput
from orderflow.services.kitchen_ticket_printer import KitchenTicketPrinter, PrintResult
from orderflow.services.notification_service import EventPublisher, LoggingPublisher, publish_safely
from orderflow.services.order_state_machine import (
    KITCHEN_STATES,
    READY_STATES,
    TERMINAL_STATES,
    OrderStateMachine,
    TransitionOptions,
)
from orderflow.services.reconciliation_service import ReconciliationReport, ReconciliationService
from orderflow.services.recipe_resolver import Customization
from orderflow.services.side_effects import SideEffectOutcome

logger = logging.getLogger(__name__)

MONEY_PLACES = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(MONEY_PLACES)


@dataclass
class OperationResult:
    """Structured result of a status change. Errors are returned, not raised."""

    success: bool
    order: Optional[OrderDetail] = None
    error: Optional[FulfillmentError] = None
    previous_status: Optional[OrderStatus] = None
    changed: bool = False
    inventory_deducted: bool = False
    ticket_queued: bool = False


class OrderService:
    """Facade over the order lifecycle."""

    def __init__(
        self,
        db: Session,
        publisher: Optional[EventPublisher] = None,
        printer: Optional[KitchenTicketPrinter] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.publisher = publisher or LoggingPublisher()
        self.printer = printer or KitchenTicketPrinter(self.settings)
        self.state_machine = OrderStateMachine(db)

    # ===== CREATION =====

    def create_order(self, data: OrderCreate, acting_user_id: Optional[int] = None) -> OrderDetail:
        """Create an order in status ``created`` with snapshot names and computed totals."""
        with unit_of_work(self.db):
            order = Order(
                table_id=data.table_id,
                customer_id=data.customer_id,
                customer_name=data.customer_name,
                customer_phone=data.customer_phone,
                discount_total=_money(data.discount_total),
                tax_total=_money(data.tax_total),
                suggested_tip=_money(data.suggested_tip),
                pickup_time=data.pickup_time,
                status=OrderStatus.CREATED,
                created_by_user_id=acting_user_id,
            )
            for item_data in data.items:
                order.items.append(self._build_item(item_data))
            self._recompute_totals(order)

            self.db.add(order)
            self.db.flush()
            detail = self._detail(order)

        logger.info(f"Created order {detail.folio} with {len(detail.items)} items (user {acting_user_id})")
        publish_safely(self.publisher, "order.created", self._event_payload(detail))
        return detail

    def add_items(
        self,
        order_id: int,
        items: List[OrderItemInput],
        acting_user_id: Optional[int] = None,
    ) -> OrderDetail:
        """Append items and recompute totals. Not allowed once the order is ready."""
        with unit_of_work(self.db):
            order = self.state_machine.lock_order(order_id)
            if order.status in READY_STATES or order.status in TERMINAL_STATES:
                raise InvalidOrderData(
                    f"Cannot add items to order {order_id} in status '{order.status.value}'"
                )
            for item_data in items:
                order.items.append(self._build_item(item_data))
            self._recompute_totals(order)
            self.db.flush()
            detail = self._detail(order)

        logger.info(f"Added {len(items)} items to order {detail.folio} (user {acting_user_id})")
        publish_safely(self.publisher, "order.updated", self._event_payload(detail))
        return detail

    # ===== STATUS =====

    def transition_status(
        self,
        order_id: int,
        target: Union[OrderStatus, str],
        acting_user_id: Optional[int] = None,
        force: bool = False,
        reason: Optional[str] = None,
    ) -> OperationResult:
        """Change an order's status.

        Every ``FulfillmentError`` is returned in the result; check
        ``result.error.retryable`` before retrying.
        """
        options = TransitionOptions(force=force, reason=reason)
        try:
            with unit_of_work(self.db):
                result = self.state_machine.transition(order_id, target, acting_user_id, options)
                detail = self._detail(result.order)
        except FulfillmentError as e:
            logger.info(f"Status change of order {order_id} to '{target}' rejected: [{e.code}] {e}")
            return OperationResult(success=False, error=e)

        deduction = result.outcome(SideEffectKind.INVENTORY_DEDUCT)
        operation = OperationResult(
            success=True,
            order=detail,
            previous_status=result.previous_status,
            changed=result.changed,
            inventory_deducted=deduction is not None and deduction.executed,
            ticket_queued=result.ticket_queued,
        )

        if result.changed:
            payload = self._event_payload(detail)
            payload["previous_status"] = result.previous_status.value
            publish_safely(self.publisher, "order.status_changed", payload)
        if result.ticket_queued:
            self._print_queued_ticket(detail)
        return operation

    def mark_paid(self, order_id: int, acting_user_id: Optional[int] = None) -> OperationResult:
        """Payment collaborator signal: the order is fully paid."""
        return self.transition_status(order_id, OrderStatus.PAID, acting_user_id)

    def set_estimated_prep_time(
        self,
        order_id: int,
        minutes: int,
        acting_user_id: Optional[int] = None,
    ) -> OrderDetail:
        low, high = self.settings.min_prep_minutes, self.settings.max_prep_minutes
        if not low <= minutes <= high:
            raise InvalidOrderData(f"Estimated preparation time must be between {low} and {high} minutes")

        with unit_of_work(self.db):
            order = self.state_machine.lock_order(order_id)
            if order.status in TERMINAL_STATES:
                raise InvalidOrderData(f"Order {order_id} is already {order.status.value}")
            order.estimated_prep_minutes = minutes
            self.db.flush()
            detail = self._detail(order)

        logger.info(f"Order {detail.folio} prep estimate set to {minutes} min (user {acting_user_id})")
        publish_safely(self.publisher, "order.updated", self._event_payload(detail))
        return detail

    # ===== READS =====

    def get_order_detail(self, order_id: int) -> OrderDetail:
        order = (
            self.db.query(Order)
            .options(selectinload(Order.items).selectinload(OrderItem.modifiers))
            .filter(Order.id == order_id)
            .one_or_none()
        )
        if order is None:
            raise UnknownOrder(order_id)
        return self._detail(order)

    def list_kitchen_orders(self) -> List[OrderDetail]:
        """Orders the kitchen is working on, oldest first."""
        orders = (
            self.db.query(Order)
            .options(selectinload(Order.items).selectinload(OrderItem.modifiers))
            .filter(Order.status.in_(list(KITCHEN_STATES)))
            .order_by(Order.created_at, Order.id)
            .all()
        )
        return [self._detail(order) for order in orders]

    def list_side_effects(self, order_id: int) -> List[SideEffectMarker]:
        if self.db.get(Order, order_id) is None:
            raise UnknownOrder(order_id)
        return self.state_machine.coordinator.list_markers(order_id)

    # ===== MANUAL SIDE EFFECTS =====

    def reprint_ticket(self, order_id: int, acting_user_id: Optional[int] = None) -> SideEffectOutcome:
        """Print the kitchen ticket again and record a repeat marker.

        Raises:
            SideEffectFailed: the printer failed; no marker is written.
        """
        with unit_of_work(self.db):
            order = self.state_machine.lock_order(order_id)
            detail = self._detail(order)

            def print_again() -> Dict[str, Any]:
                result = self.printer.render_and_print(detail, is_reprint=True)
                if not result.success:
                    raise SideEffectFailed(
                        SideEffectKind.PRINT_TICKET.value, order_id, result.message or "printer error"
                    )
                return {"rendered_path": result.rendered_path, "printer_message": result.message}

            outcome = self.state_machine.coordinator.ensure_repeatable(
                order_id,
                SideEffectKind.PRINT_TICKET,
                print_again,
                actor_user_id=acting_user_id,
            )

        publish_safely(self.publisher, "kitchen_ticket.reprinted", self._event_payload(detail))
        return outcome

    def rededuct_inventory(
        self,
        order_id: int,
        acting_user_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> SideEffectOutcome:
        """Deduct the order's recipe consumption again, on operator request.

        Only for orders that reached a ready state (an automatic deduction
        exists, or the order is ready or paid).
        """
        machine = self.state_machine
        with unit_of_work(self.db):
            order = machine.lock_order(order_id)
            reached_ready = order.status in READY_STATES or order.status == OrderStatus.PAID
            if not reached_ready and machine.coordinator.find_automatic_marker(
                order_id, SideEffectKind.INVENTORY_DEDUCT
            ) is None:
                raise InvalidOrderData(
                    f"Order {order_id} never reached a ready state; nothing to deduct again"
                )
            outcome = machine.coordinator.ensure_repeatable(
                order_id,
                SideEffectKind.INVENTORY_DEDUCT,
                lambda: machine.deduct_inventory(
                    order,
                    acting_user_id,
                    origin=MovementOrigin.MANUAL,
                    reason=reason or f"Manual re-deduction for order {order_id}",
                ),
                actor_user_id=acting_user_id,
                details={"manual": True},
            )
        return outcome

    def reconcile(
        self,
        as_of: Optional[datetime] = None,
        acting_user_id: Optional[int] = None,
    ) -> ReconciliationReport:
        service = ReconciliationService(self.db, self.settings, self.state_machine)
        return service.backfill_missing_deductions(as_of=as_of, acting_user_id=acting_user_id)

    # ===== HELPERS =====

    def _build_item(self, data: OrderItemInput) -> OrderItem:
        """Order line with product name, size label and price captured from the catalog."""
        product = self.db.get(Product, data.product_id)
        size = None
        if data.product_size_id is not None:
            size = self.db.get(ProductSize, data.product_size_id)
            if size is not None and size.product_id != data.product_id:
                raise UnknownProduct(data.product_id, data.product_size_id)

        product_name = product.name if product is not None else data.product_name
        if not product_name:
            raise UnknownProduct(data.product_id, data.product_size_id)
        size_label = size.label if size is not None else data.size_label
        if data.product_size_id is not None and not size_label:
            raise UnknownProduct(data.product_id, data.product_size_id)

        unit_price = data.unit_price
        if unit_price is None and size is not None:
            unit_price = size.price
        if unit_price is None and product is not None:
            unit_price = product.base_price
        if unit_price is None:
            raise UnknownProduct(data.product_id, data.product_size_id)
        unit_price = _money(unit_price)
        if unit_price <= 0:
            raise InvalidOrderData(f"Unit price of '{product_name}' must be greater than zero")

        item = OrderItem(
            product_id=data.product_id,
            product_size_id=data.product_size_id,
            product_name=product_name,
            size_label=size_label,
            quantity=data.quantity,
            unit_price=unit_price,
            note=data.note,
        )
        for modifier in data.modifiers:
            item.modifiers.append(
                OrderItemModifier(
                    modifier_option_id=modifier.modifier_option_id,
                    option_name=modifier.option_name,
                    unit_price=_money(modifier.unit_price),
                )
            )

        customization = Customization.from_overrides(
            {"omit": data.omit_ingredients, "factors": data.ingredient_factors}
        )
        overrides = customization.to_overrides()
        if overrides is not None:
            if not capabilities_for(self.db).item_ingredient_overrides:
                raise InvalidOrderData("Ingredient customization is not available on this database")
            item.ingredient_overrides = overrides

        modifiers_total = sum((m.unit_price for m in item.modifiers), Decimal("0"))
        item.line_total = _money(data.quantity * (unit_price + modifiers_total))
        return item

    def _recompute_totals(self, order: Order) -> None:
        """subtotal = sum of line totals; total = subtotal - discount + tax."""
        subtotal = sum((Decimal(item.line_total) for item in order.items), Decimal("0"))
        total = subtotal - Decimal(order.discount_total or 0) + Decimal(order.tax_total or 0)
        if total < 0:
            raise InvalidOrderData("Discount exceeds the order subtotal")
        order.subtotal = _money(subtotal)
        order.total = _money(total)

    def _detail(self, order: Order) -> OrderDetail:
        detail = OrderDetail.model_validate(order)
        if detail.estimated_prep_minutes is None:
            detail.estimated_prep_minutes = self.settings.default_prep_minutes
        return detail

    def _print_queued_ticket(self, detail: OrderDetail) -> PrintResult:
        """Physically print an automatically queued ticket (after commit)."""
        try:
            result = self.printer.render_and_print(detail, is_reprint=False)
        except Exception as e:
            logger.error(f"Printer raised while printing {detail.folio}: {e}", exc_info=True)
            result = PrintResult(success=False, message=str(e))

        if not result.success:
            logger.error(
                f"ALERT: kitchen ticket {detail.folio} was recorded but not printed "
                f"({result.message}); reprint it manually"
            )
            payload = self._event_payload(detail)
            payload["message"] = result.message
            publish_safely(self.publisher, "kitchen_ticket.print_failed", payload)
        return result

    @staticmethod
    def _event_payload(detail: OrderDetail) -> Dict[str, Any]:
        return {
            "order_id": detail.id,
            "folio": detail.folio,
            "status": detail.status.value,
            "table_id": detail.table_id,
            "is_takeout": detail.is_takeout,
        }
