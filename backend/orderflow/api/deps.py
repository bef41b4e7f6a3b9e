"""Request dependencies: acting user and service wiring."""

from typing import Annotated, Optional

from fastapi import Depends, Header

from orderflow.core.config import Settings, get_settings
from orderflow.db.session import DbSession
from orderflow.services.inventory_ledger import InventoryLedger
from orderflow.services.kitchen_ticket_printer import KitchenTicketPrinter
from orderflow.services.notification_service import EventPublisher, ws_publisher
from orderflow.services.order_service import OrderService


def get_acting_user_id(x_user_id: Annotated[Optional[int], Header()] = None) -> Optional[int]:
    """User id set by the authenticating gateway in front of this service."""
    return x_user_id


def get_publisher() -> EventPublisher:
    return ws_publisher


def get_printer(settings: Annotated[Settings, Depends(get_settings)]) -> KitchenTicketPrinter:
    return KitchenTicketPrinter(settings)


def get_order_service(
    db: DbSession,
    publisher: Annotated[EventPublisher, Depends(get_publisher)],
    printer: Annotated[KitchenTicketPrinter, Depends(get_printer)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> OrderService:
    return OrderService(db, publisher=publisher, printer=printer, settings=settings)


def get_inventory_ledger(db: DbSession) -> InventoryLedger:
    return InventoryLedger(db)


ActingUserId = Annotated[Optional[int], Depends(get_acting_user_id)]
OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
InventoryLedgerDep = Annotated[InventoryLedger, Depends(get_inventory_ledger)]
