"""Tests for recipe resolution and unit conversion."""

import pytest
from decimal import Decimal

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from orderflow.core.errors import IncompatibleUnits, InvalidOrderData, UnknownProduct
from orderflow.db.base import Base
from orderflow.db.capabilities import capabilities_for, reset_capabilities_cache
from orderflow.models import InventoryItem, Product, ProductIngredientRule
from orderflow.services.recipe_resolver import (
    Customization,
    RecipeResolver,
    convert_quantity,
    unit_family,
)


@pytest.fixture
def resolver(db_session):
    return RecipeResolver(db_session)


class TestUnitConversion:
    def test_grams_to_kilograms(self):
        assert convert_quantity(Decimal("250"), "g", "kg") == Decimal("0.25")

    def test_millilitres_to_litres_case_insensitive(self):
        assert convert_quantity(Decimal("330"), "ml", "L") == Decimal("0.33")

    def test_same_unit_is_identity(self):
        assert convert_quantity(Decimal("3"), "pcs", "pcs") == Decimal("3")

    def test_dozen_to_pieces(self):
        assert convert_quantity(Decimal("2"), "dozen", "pcs") == Decimal("24")

    def test_incompatible_families(self):
        with pytest.raises(IncompatibleUnits) as exc_info:
            convert_quantity(Decimal("1"), "g", "ml", "Cream")
        assert exc_info.value.item_name == "Cream"

    def test_unknown_unit(self):
        with pytest.raises(IncompatibleUnits):
            convert_quantity(Decimal("1"), "pinch", "g")

    def test_unit_family(self):
        assert unit_family("KG") == "weight"
        assert unit_family("fl_oz") == "volume"
        assert unit_family("ea") == "count"
        assert unit_family("bunch") is None


class TestCustomization:
    def test_parses_overrides(self):
        custom = Customization.from_overrides({"omit": ["3"], "factors": {"5": "2"}})
        assert custom.omit == frozenset({3})
        assert custom.factors == {5: Decimal("2")}
        assert Customization.from_overrides(custom.to_overrides()) == custom

    def test_empty_overrides(self):
        assert Customization.from_overrides(None) == Customization()
        assert Customization().to_overrides() is None

    def test_rejects_negative_factor(self):
        with pytest.raises(InvalidOrderData):
            Customization.from_overrides({"factors": {"1": "-1"}})

    def test_rejects_garbage(self):
        with pytest.raises(InvalidOrderData):
            Customization.from_overrides({"omit": ["abc"]})


class TestResolveConsumption:
    def test_scales_by_quantity_sold(self, resolver, scenario_a):
        [line] = resolver.resolve_consumption(scenario_a["product"].id, None, 2)
        assert line.inventory_item_id == scenario_a["x"].id
        assert line.quantity == Decimal("6")
        assert line.auto_deduct

    def test_size_scoped_rules_replace_generic_ones(self, resolver, make_item, make_product, add_rule):
        milk = make_item(name="Milk", unit="l", quantity=20)
        cup = make_item(name="Cup", unit="pcs", quantity=100)
        latte = make_product(name="Latte", sizes=(("small", Decimal("3.00")), ("large", Decimal("4.50"))))
        small, large = sorted(latte.sizes, key=lambda s: s.price)
        add_rule(latte, cup, 1)
        add_rule(latte, milk, 400, size=large, unit="ml")

        [large_line] = resolver.resolve_consumption(latte.id, large.id, 1)
        assert large_line.inventory_item_id == milk.id
        assert large_line.quantity == Decimal("0.4")

        [small_line] = resolver.resolve_consumption(latte.id, small.id, 1)
        assert small_line.inventory_item_id == cup.id

        [no_size_line] = resolver.resolve_consumption(latte.id, None, 1)
        assert no_size_line.inventory_item_id == cup.id

    def test_optional_ingredient_can_be_omitted(self, resolver, make_item, make_product, add_rule):
        bun = make_item(name="Bun", unit="pcs", quantity=10)
        onion = make_item(name="Onion", unit="g", quantity=1000)
        burger = make_product(name="Burger")
        add_rule(burger, bun, 1)
        add_rule(burger, onion, 20, optional=True)

        lines = resolver.resolve_consumption(burger.id, None, 1, Customization(omit=frozenset({onion.id})))
        assert [l.inventory_item_id for l in lines] == [bun.id]

    def test_omit_ignored_for_required_ingredient(self, resolver, make_item, make_product, add_rule):
        bun = make_item(name="Bun", unit="pcs", quantity=10)
        burger = make_product(name="Burger")
        add_rule(burger, bun, 1)

        lines = resolver.resolve_consumption(burger.id, None, 1, Customization(omit=frozenset({bun.id})))
        assert len(lines) == 1

    def test_customizable_factor(self, resolver, make_item, make_product, add_rule):
        cheese = make_item(name="Cheese", unit="kg", quantity=5)
        pizza = make_product(name="Pizza")
        add_rule(pizza, cheese, 100, unit="g", customizable=True)

        custom = Customization(factors={cheese.id: Decimal("2")})
        [line] = resolver.resolve_consumption(pizza.id, None, 3, custom)
        assert line.quantity == Decimal("0.6")
        assert line.customizable

    def test_factor_ignored_for_fixed_rule(self, resolver, make_item, make_product, add_rule):
        cheese = make_item(name="Cheese", unit="kg", quantity=5)
        pizza = make_product(name="Pizza")
        add_rule(pizza, cheese, Decimal("0.1"))

        [line] = resolver.resolve_consumption(pizza.id, None, 1, Customization(factors={cheese.id: Decimal("3")}))
        assert line.quantity == Decimal("0.1")

    def test_incompatible_rule_unit(self, resolver, make_item, make_product, add_rule):
        juice = make_item(name="Juice", unit="l", quantity=5)
        drink = make_product(name="Drink")
        add_rule(drink, juice, 200, unit="g")

        with pytest.raises(IncompatibleUnits):
            resolver.resolve_consumption(drink.id, None, 1)

    def test_priced_product_without_rules_is_empty(self, resolver, make_product):
        water = make_product(name="Tap water", base_price=Decimal("1.00"))
        assert resolver.resolve_consumption(water.id, None, 1) == []

    def test_unknown_product(self, resolver):
        with pytest.raises(UnknownProduct):
            resolver.resolve_consumption(424242, None, 1)

    def test_product_without_price_or_rules(self, resolver, make_product):
        mystery = make_product(name="Mystery", base_price=None)
        with pytest.raises(UnknownProduct):
            resolver.resolve_consumption(mystery.id, None, 1)


class TestAggregateForOrder:
    def test_sums_lines_per_item_and_skips_manual_rules(
        self, resolver, place_order, make_item, make_product, add_rule
    ):
        tortilla = make_item(name="Tortilla", unit="pcs", quantity=100)
        salsa = make_item(name="Salsa", unit="l", quantity=5)
        taco = make_product(name="Taco")
        burrito = make_product(name="Burrito")
        add_rule(taco, tortilla, 2)
        add_rule(taco, salsa, 50, unit="ml", auto_deduct=False)
        add_rule(burrito, tortilla, 1)

        order = place_order((taco, 2), (burrito, 1), (taco, 1))
        [requirement] = resolver.aggregate_for_order(order)

        assert requirement.inventory_item_id == tortilla.id
        assert requirement.quantity == Decimal("7")
        assert requirement.unit == "pcs"

    def test_order_with_no_ingredients(self, resolver, place_order, make_product):
        water = make_product(name="Tap water", base_price=Decimal("1.00"))
        order = place_order((water, 1))
        assert resolver.aggregate_for_order(order) == []

    def test_uses_stored_customization(self, resolver, place_order, make_item, make_product, add_rule):
        bun = make_item(name="Bun", unit="pcs", quantity=10)
        bacon = make_item(name="Bacon", unit="pcs", quantity=10)
        burger = make_product(name="Burger")
        add_rule(burger, bun, 1)
        add_rule(burger, bacon, 2, customizable=True)

        order = place_order(
            {"product_id": burger.id, "quantity": 1, "ingredient_factors": {bacon.id: "1.5"}}
        )
        requirements = {r.inventory_item_id: r.quantity for r in resolver.aggregate_for_order(order)}
        assert requirements == {bun.id: Decimal("1"), bacon.id: Decimal("3")}


class TestLegacySchema:
    """Databases created before size-scoped rules and rule options existed."""

    @pytest.fixture
    def legacy_session(self):
        engine = create_engine(
            "sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
        tables = [t for t in Base.metadata.sorted_tables if t.name != "product_ingredient_rules"]
        Base.metadata.create_all(bind=engine, tables=tables)
        with engine.begin() as conn:
            conn.execute(text(
                "CREATE TABLE product_ingredient_rules ("
                " id INTEGER PRIMARY KEY,"
                " product_id INTEGER NOT NULL,"
                " inventory_item_id INTEGER NOT NULL,"
                " quantity_per_portion NUMERIC(12, 4) NOT NULL,"
                " auto_deduct BOOLEAN NOT NULL DEFAULT 1,"
                " created_at DATETIME DEFAULT CURRENT_TIMESTAMP,"
                " updated_at DATETIME DEFAULT CURRENT_TIMESTAMP)"
            ))
        reset_capabilities_cache()
        session = sessionmaker(bind=engine)()
        yield session
        session.close()
        engine.dispose()
        reset_capabilities_cache()

    def test_capabilities_detected(self, legacy_session):
        caps = capabilities_for(legacy_session)
        assert caps.is_legacy
        assert not caps.size_scoped_recipes
        assert not caps.optional_ingredients
        assert caps.item_ingredient_overrides

    def test_current_schema_is_not_legacy(self, db_session):
        assert not capabilities_for(db_session).is_legacy

    def test_resolves_with_neutral_defaults(self, legacy_session):
        product = Product(name="Quesadilla", base_price=Decimal("8.00"))
        cheese = InventoryItem(name="Cheese", unit="kg", current_quantity=Decimal("3"))
        legacy_session.add_all([product, cheese])
        legacy_session.commit()
        legacy_session.execute(
            text(
                "INSERT INTO product_ingredient_rules"
                " (product_id, inventory_item_id, quantity_per_portion, auto_deduct)"
                " VALUES (:p, :i, 0.15, 1)"
            ),
            {"p": product.id, "i": cheese.id},
        )
        legacy_session.commit()

        resolver = RecipeResolver(legacy_session)
        [line] = resolver.resolve_consumption(product.id, 99, 2)

        assert line.quantity == Decimal("0.30")
        assert not line.optional
        assert not line.customizable
        assert legacy_session.query(ProductIngredientRule.id).count() == 1
