"""Tests for the inventory ledger."""

import pytest
from decimal import Decimal

from orderflow.core.errors import InsufficientStock, InvalidOrderData, UnknownInventoryItem
from orderflow.db.session import unit_of_work
from orderflow.models.inventory import InventoryItem, InventoryMovement, MovementOrigin, MovementType
from orderflow.services.inventory_ledger import MovementRequest


def _exit(item, qty, **kwargs):
    return MovementRequest(
        inventory_item_id=item.id,
        movement_type=MovementType.EXIT,
        quantity=Decimal(str(qty)),
        origin=kwargs.pop("origin", MovementOrigin.CONSUMPTION),
        **kwargs,
    )


class TestCreateItem:
    def test_opening_stock_is_booked_as_entry(self, db_session, ledger, make_item):
        item = make_item(name="Tortilla", unit="pcs", quantity=50)

        assert item.current_quantity == Decimal("50")
        [movement] = ledger.list_movements(inventory_item_id=item.id)
        assert movement.movement_type == MovementType.ENTRY
        assert movement.origin == MovementOrigin.PURCHASE
        assert movement.quantity == Decimal("50")

    def test_zero_opening_stock_has_no_movement(self, ledger, make_item):
        item = make_item(name="Salt", unit="g", quantity=0)
        assert ledger.list_movements(inventory_item_id=item.id) == []

    def test_negative_opening_stock_rejected(self, ledger):
        with pytest.raises(InvalidOrderData):
            ledger.create_item(name="Bad", unit="g", opening_quantity=Decimal("-1"))


class TestApplyMovements:
    def test_exit_decrements_balance(self, db_session, ledger, make_item):
        item = make_item(quantity=10)
        with unit_of_work(db_session):
            [movement] = ledger.apply_movements([_exit(item, 4)])

        db_session.refresh(item)
        assert item.current_quantity == Decimal("6")
        assert movement.quantity == Decimal("-4")

    def test_batch_is_all_or_nothing(self, db_session, ledger, make_item):
        beans = make_item(name="Beans", unit="kg", quantity=5)
        rice = make_item(name="Rice", unit="kg", quantity=1)

        with pytest.raises(InsufficientStock) as exc_info:
            with unit_of_work(db_session):
                ledger.apply_movements([_exit(beans, 2), _exit(rice, 3)])

        assert [s.name for s in exc_info.value.shortfalls] == ["Rice"]
        assert db_session.get(InventoryItem, beans.id).current_quantity == Decimal("5")
        assert db_session.get(InventoryItem, rice.id).current_quantity == Decimal("1")
        assert db_session.query(InventoryMovement).filter(
            InventoryMovement.movement_type == MovementType.EXIT
        ).count() == 0

    def test_first_offending_item_is_named(self, db_session, ledger, make_item):
        a = make_item(name="Onion", unit="pcs", quantity=0)
        b = make_item(name="Garlic", unit="pcs", quantity=0)

        with pytest.raises(InsufficientStock) as exc_info:
            ledger.apply_movements([_exit(b, 1), _exit(a, 1)])

        [shortfall] = exc_info.value.shortfalls
        assert shortfall.name == "Garlic"
        assert shortfall.missing == Decimal("1")

    def test_repeated_item_uses_running_balance(self, db_session, ledger, make_item):
        item = make_item(quantity=5)
        with pytest.raises(InsufficientStock):
            ledger.apply_movements([_exit(item, 3), _exit(item, 3)])

    def test_allow_shortfall_clamps_at_zero(self, db_session, ledger, make_item):
        item = make_item(name="Cheese", unit="kg", quantity=2)
        with unit_of_work(db_session):
            [movement] = ledger.apply_movements(
                [_exit(item, 5, reason="Order 1", origin=MovementOrigin.FORCED_RECIPE)],
                allow_shortfall=True,
            )

        db_session.refresh(item)
        assert item.current_quantity == Decimal("0")
        assert movement.quantity == Decimal("-2")
        assert "requested 5.0000 kg" in movement.reason
        assert "applied 2.0000" in movement.reason

    def test_forced_reason_fits_column(self, db_session, ledger, make_item):
        item = make_item(name="Cheese", unit="kg", quantity=2)
        with unit_of_work(db_session):
            [movement] = ledger.apply_movements(
                [_exit(item, 5, reason="x" * 300, origin=MovementOrigin.FORCED_RECIPE)],
                allow_shortfall=True,
            )

        db_session.refresh(movement)
        assert len(movement.reason) <= 255
        assert movement.reason.startswith("xxx")
        assert movement.reason.endswith("(requested 5.0000 kg, applied 2.0000)")

    def test_negative_exit_quantity_rejected(self, ledger, make_item):
        item = make_item(quantity=5)
        with pytest.raises(InvalidOrderData):
            ledger.apply_movements([_exit(item, -1)])

    def test_unknown_item(self, ledger):
        with pytest.raises(UnknownInventoryItem):
            ledger.apply_movements([
                MovementRequest(
                    inventory_item_id=9999,
                    movement_type=MovementType.ENTRY,
                    quantity=Decimal("1"),
                    origin=MovementOrigin.PURCHASE,
                )
            ])

    def test_empty_batch(self, ledger):
        assert ledger.apply_movements([]) == []


class TestRegisterMovement:
    def test_entry(self, db_session, ledger, make_item):
        item = make_item(quantity=1)
        with unit_of_work(db_session):
            movement = ledger.register_movement(
                item.id, MovementType.ENTRY, Decimal("4"), origin=MovementOrigin.PURCHASE, acting_user_id=3
            )
        db_session.refresh(item)
        assert item.current_quantity == Decimal("5")
        assert movement.created_by_user_id == 3

    def test_adjustment_sets_counted_quantity(self, db_session, ledger, make_item):
        item = make_item(name="Lettuce", unit="pcs", quantity=10)
        with unit_of_work(db_session):
            movement = ledger.register_movement(
                item.id, MovementType.ADJUSTMENT, Decimal("7"), origin=MovementOrigin.ADJUSTMENT
            )

        db_session.refresh(item)
        assert item.current_quantity == Decimal("7")
        assert movement.quantity == Decimal("-3")
        assert "10.0000 -> 7.0000" in movement.reason

    def test_exit_needs_positive_quantity(self, ledger, make_item):
        item = make_item(quantity=3)
        with pytest.raises(InvalidOrderData):
            ledger.register_movement(item.id, MovementType.EXIT, Decimal("0"))

    def test_exit_beyond_balance(self, ledger, make_item):
        item = make_item(quantity=3)
        with pytest.raises(InsufficientStock):
            ledger.register_movement(item.id, MovementType.EXIT, Decimal("4"))


class TestAvailability:
    def test_reports_every_short_item(self, ledger, make_item):
        from orderflow.services.recipe_resolver import StockRequirement

        a = make_item(name="A", unit="pcs", quantity=1)
        b = make_item(name="B", unit="pcs", quantity=10)
        c = make_item(name="C", unit="pcs", quantity=0)
        requirements = [
            StockRequirement(a.id, "A", "pcs", Decimal("2")),
            StockRequirement(b.id, "B", "pcs", Decimal("2")),
            StockRequirement(c.id, "C", "pcs", Decimal("1")),
        ]

        shortfalls = ledger.check_availability(requirements)

        assert [s.name for s in shortfalls] == ["A", "C"]
        assert shortfalls[0].missing == Decimal("1")

    def test_low_stock_items(self, ledger, make_item):
        make_item(name="Plenty", quantity=50, min_stock=Decimal("5"))
        make_item(name="Scarce", quantity=2, min_stock=Decimal("5"))

        assert [i.name for i in ledger.low_stock_items()] == ["Scarce"]


class TestIntegrity:
    def test_balances_match_movement_history(self, db_session, ledger, make_item):
        item = make_item(quantity=10)
        with unit_of_work(db_session):
            ledger.register_movement(item.id, MovementType.EXIT, Decimal("2.5"))
            ledger.register_movement(item.id, MovementType.ADJUSTMENT, Decimal("6"))

        check = ledger.verify_balance(item.id)
        assert check.matches
        assert check.ledger == Decimal("6.0000")
        assert all(c.matches for c in ledger.verify_all_balances())

    def test_detects_direct_balance_edit(self, db_session, ledger, make_item):
        item = make_item(quantity=10)
        item.current_quantity = Decimal("12")
        db_session.commit()

        check = ledger.verify_balance(item.id)
        assert not check.matches
        assert check.difference == Decimal("2.0000")

    def test_clamp_negative_balances(self, db_session, ledger, make_item):
        item = make_item(name="Legacy", quantity=0)
        # Negative balances only exist in data written before the ledger
        db_session.add(
            InventoryMovement(
                inventory_item_id=item.id,
                movement_type=MovementType.EXIT,
                quantity=Decimal("-3"),
                origin=MovementOrigin.CONSUMPTION,
            )
        )
        item.current_quantity = Decimal("-3")
        db_session.commit()

        with unit_of_work(db_session):
            [movement] = ledger.clamp_negative_balances(acting_user_id=1)

        db_session.refresh(item)
        assert item.current_quantity == Decimal("0")
        assert movement.movement_type == MovementType.ADJUSTMENT
        assert movement.quantity == Decimal("3")
        assert ledger.verify_balance(item.id).matches
        assert ledger.clamp_negative_balances() == []
