"""Pytest configuration and fixtures."""

import os

# Settings are read at import time; keep the app off the on-disk database
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("PRINTER_MODE", "disabled")

import pytest
from decimal import Decimal
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from orderflow.api.deps import get_printer, get_publisher
from orderflow.core.config import Settings, get_settings
from orderflow.db.base import Base
from orderflow.db.capabilities import reset_capabilities_cache
from orderflow.db.session import enable_sqlite_transactions, get_db
from orderflow.main import app
# Import all models to ensure they're registered with Base.metadata
from orderflow.models import *
from orderflow.schemas.order import OrderCreate, OrderItemInput
from orderflow.services.inventory_ledger import InventoryLedger
from orderflow.services.kitchen_ticket_printer import KitchenTicketPrinter
from orderflow.services.notification_service import RecordingPublisher
from orderflow.services.order_service import OrderService

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

KITCHEN_PATH = [
    OrderStatus.SENT_TO_KITCHEN,
    OrderStatus.PREPARING,
    OrderStatus.READY,
]


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    enable_sqlite_transactions(engine)
    Base.metadata.create_all(bind=engine)
    reset_capabilities_cache()
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings with a file-spool printer under the test's tmp dir."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        printer_mode="file",
        printer_spool_dir=str(tmp_path / "tickets"),
        reconciliation_batch_size=10,
    )


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def printer(test_settings) -> KitchenTicketPrinter:
    return KitchenTicketPrinter(test_settings)


@pytest.fixture
def order_service(db_session, publisher, printer, test_settings) -> OrderService:
    return OrderService(db_session, publisher=publisher, printer=printer, settings=test_settings)


@pytest.fixture
def ledger(db_session) -> InventoryLedger:
    return InventoryLedger(db_session)


@pytest.fixture(scope="function")
def client(db_session: Session, publisher, printer, test_settings) -> Generator[TestClient, None, None]:
    """Create a test client with database, publisher and printer overrides."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_publisher] = lambda: publisher
    app.dependency_overrides[get_printer] = lambda: printer
    app.dependency_overrides[get_settings] = lambda: test_settings
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ============== Catalog factories ==============

@pytest.fixture
def make_item(db_session, ledger):
    """Create an inventory item whose opening stock is booked as an entry."""
    def _make(name="Ingredient X", unit="pcs", quantity=0, **kwargs) -> InventoryItem:
        item = ledger.create_item(name=name, unit=unit, opening_quantity=Decimal(str(quantity)), **kwargs)
        db_session.commit()
        return item
    return _make


@pytest.fixture
def make_product(db_session):
    """Create a product, optionally with (label, price) sizes."""
    def _make(name="Taco", base_price=Decimal("10.00"), sizes=()) -> Product:
        product = Product(name=name, base_price=base_price)
        for label, price in sizes:
            product.sizes.append(ProductSize(label=label, price=price))
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture
def add_rule(db_session):
    """Attach a recipe rule to a product."""
    def _add(product, item, qty, size=None, unit=None, auto_deduct=True, optional=False, customizable=False):
        rule = ProductIngredientRule(
            product_id=product.id,
            product_size_id=size.id if size is not None else None,
            inventory_item_id=item.id,
            quantity_per_portion=Decimal(str(qty)),
            unit=unit,
            auto_deduct=auto_deduct,
            optional=optional,
            customizable=customizable,
        )
        db_session.add(rule)
        db_session.commit()
        return rule
    return _add


@pytest.fixture
def place_order(order_service):
    """Create an order from (product, quantity[, size]) tuples or item dicts."""
    def _place(*lines, table_id=1, **kwargs):
        items = []
        for line in lines:
            if isinstance(line, dict):
                items.append(OrderItemInput(**line))
                continue
            product, quantity, *rest = line
            size = rest[0] if rest else None
            items.append(
                OrderItemInput(
                    product_id=product.id,
                    product_size_id=size.id if size is not None else None,
                    quantity=quantity,
                )
            )
        data = OrderCreate(table_id=table_id, items=items, **kwargs)
        return order_service.create_order(data, acting_user_id=7)
    return _place


@pytest.fixture
def advance(order_service):
    """Walk an order along the kitchen path up to ``target``; returns the last result."""
    def _advance(order_id, target=OrderStatus.READY, force=False):
        result = None
        for status in KITCHEN_PATH:
            result = order_service.transition_status(
                order_id, status, acting_user_id=7, force=force and status == target
            )
            assert result.success or status == target, result.error
            if status == target:
                break
        return result
    return _advance


@pytest.fixture
def scenario_a(make_item, make_product, add_rule):
    """One product consuming 3 units of ingredient X per portion; X has 10 units."""
    x = make_item(name="Ingredient X", unit="pcs", quantity=10)
    product = make_product(name="Combo Plate", base_price=Decimal("12.50"))
    add_rule(product, x, 3)
    return {"x": x, "product": product}
