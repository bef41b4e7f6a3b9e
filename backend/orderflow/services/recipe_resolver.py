"""Recipe Resolver - Turns products sold into ingredient consumption.

For each product (and optional size) the resolver reads the product's
ingredient rules and returns how much of each inventory item one order line
consumes:

1. Pick the rules: size-scoped rules when the size has any, otherwise the
   size-agnostic rules of the product. Rules of other sizes are never used.
2. Drop optional rules the order line opted out of.
3. quantity = quantity_per_portion x quantity_sold (x factor when the rule is
   customizable and the line carries a factor).
4. Convert from the rule unit to the stock unit (g -> kg, ml -> L).

Rules with ``auto_deduct = False`` are returned for display but skipped by
``aggregate_for_order``, which is what the ledger consumes.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, FrozenSet, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from orderflow.core.errors import IncompatibleUnits, InvalidOrderData, UnknownProduct
from orderflow.db.capabilities import capabilities_for
from orderflow.models.inventory import InventoryItem
from orderflow.models.order import Order, OrderItem
from orderflow.models.product import Product, ProductSize
from orderflow.models.recipe import ProductIngredientRule

logger = logging.getLogger(__name__)

# Unit conversion factors (convert TO base unit)
UNIT_CONVERSIONS = {
    # Weight: base unit = g
    "kg": Decimal("1000"),
    "g": Decimal("1"),
    "mg": Decimal("0.001"),
    "lb": Decimal("453.592"),
    "oz": Decimal("28.3495"),

    # Volume: base unit = ml
    "l": Decimal("1000"),
    "ml": Decimal("1"),
    "cl": Decimal("10"),
    "dl": Decimal("100"),
    "gal": Decimal("3785.41"),
    "pt": Decimal("473.176"),
    "fl_oz": Decimal("29.5735"),

    # Count: base unit = pcs
    "pcs": Decimal("1"),
    "ea": Decimal("1"),
    "unit": Decimal("1"),
    "dozen": Decimal("12"),
}

WEIGHT_UNITS = {"kg", "g", "mg", "lb", "oz"}
VOLUME_UNITS = {"l", "ml", "cl", "dl", "gal", "pt", "fl_oz"}
COUNT_UNITS = {"pcs", "ea", "unit", "dozen"}

QUANTITY_PLACES = Decimal("0.0001")


def unit_family(unit: str) -> Optional[str]:
    """Family of a unit (weight, volume, count), or None when unknown."""
    unit = unit.lower().strip()
    if unit in WEIGHT_UNITS:
        return "weight"
    if unit in VOLUME_UNITS:
        return "volume"
    if unit in COUNT_UNITS:
        return "count"
    return None


def convert_quantity(qty: Decimal, from_unit: str, to_unit: str, item_name: str = "") -> Decimal:
    """Convert a quantity between units of the same family.

    Raises:
        IncompatibleUnits: units belong to different families, or one of
            them is unknown and they are not spelled the same.
    """
    source = from_unit.lower().strip()
    target = to_unit.lower().strip()

    if source == target:
        return qty

    source_family = unit_family(source)
    target_family = unit_family(target)
    if source_family is None or source_family != target_family:
        raise IncompatibleUnits(from_unit, to_unit, item_name)

    base_qty = qty * UNIT_CONVERSIONS[source]
    return (base_qty / UNIT_CONVERSIONS[target]).quantize(QUANTITY_PLACES)


@dataclass
class Customization:
    """Per order line ingredient overrides.

    ``omit`` holds inventory item ids of optional ingredients the customer
    declined; ``factors`` scales customizable ingredients ("double cheese"
    is a factor of 2).
    """

    omit: FrozenSet[int] = frozenset()
    factors: Dict[int, Decimal] = field(default_factory=dict)

    @classmethod
    def from_overrides(cls, data: Optional[Dict[str, Any]]) -> "Customization":
        """Parse the ``order_items.ingredient_overrides`` JSON document."""
        if not data:
            return cls()
        try:
            omit = frozenset(int(item_id) for item_id in data.get("omit") or [])
            factors = {
                int(item_id): Decimal(str(factor))
                for item_id, factor in (data.get("factors") or {}).items()
            }
        except (TypeError, ValueError, InvalidOperation) as e:
            raise InvalidOrderData(f"Malformed ingredient overrides: {data!r}") from e

        for item_id, factor in factors.items():
            if factor < 0:
                raise InvalidOrderData(
                    f"Customization factor for inventory item {item_id} must not be negative"
                )
        return cls(omit=omit, factors=factors)

    def to_overrides(self) -> Optional[Dict[str, Any]]:
        if not self.omit and not self.factors:
            return None
        return {
            "omit": sorted(self.omit),
            "factors": {str(k): str(v) for k, v in sorted(self.factors.items())},
        }


@dataclass(frozen=True)
class ConsumptionLine:
    """Stock one order line consumes from one inventory item (in stock units)."""

    rule_id: int
    inventory_item_id: int
    quantity: Decimal
    auto_deduct: bool
    optional: bool = False
    customizable: bool = False


@dataclass(frozen=True)
class StockRequirement:
    """Total auto-deducted quantity of one inventory item for a whole order."""

    inventory_item_id: int
    name: str
    unit: str
    quantity: Decimal


class RecipeResolver:
    """Reads recipe rules. Never locks and never writes."""

    def __init__(self, db: Session):
        self.db = db

    def resolve_consumption(
        self,
        product_id: int,
        size_id: Optional[int],
        quantity_sold: Decimal,
        customization: Optional[Customization] = None,
    ) -> List[ConsumptionLine]:
        """Consumption lines for ``quantity_sold`` units of a product, in rule order.

        Returns an empty list for a known product without ingredients.

        Raises:
            UnknownProduct: no rules exist and the product has no price.
            IncompatibleUnits: a rule unit cannot be converted to the stock unit.
        """
        customization = customization or Customization()
        quantity_sold = Decimal(str(quantity_sold))
        rows = self._select_rules(product_id, size_id)

        if not rows and not self._has_price(product_id, size_id):
            raise UnknownProduct(product_id, size_id)

        lines = []
        for row in rows:
            if row["optional"] and row["inventory_item_id"] in customization.omit:
                continue

            qty = row["quantity_per_portion"] * quantity_sold
            if row["customizable"]:
                factor = customization.factors.get(row["inventory_item_id"])
                if factor is not None:
                    qty = qty * factor

            if row["unit"]:
                qty = convert_quantity(qty, row["unit"], row["item_unit"], row["item_name"])

            lines.append(
                ConsumptionLine(
                    rule_id=row["id"],
                    inventory_item_id=row["inventory_item_id"],
                    quantity=qty,
                    auto_deduct=row["auto_deduct"],
                    optional=row["optional"],
                    customizable=row["customizable"],
                )
            )
        return lines

    def aggregate_for_order(self, order: Order) -> List[StockRequirement]:
        """Auto-deducted consumption of every item of an order, summed per inventory item.

        Duplicate product/size lines fold into one requirement. Requirements
        are ordered by inventory item id. A line whose product no longer
        resolves (deleted from the catalog) consumes nothing.
        """
        totals: "OrderedDict[int, Decimal]" = OrderedDict()
        for item in order.items:
            try:
                lines = self.resolve_consumption(
                    item.product_id,
                    item.product_size_id,
                    Decimal(item.quantity),
                    self.customization_for(item),
                )
            except UnknownProduct:
                # Deleted from the catalog after the order was taken; the
                # line keeps its snapshot price and consumes nothing
                logger.warning(
                    f"Order {order.id}: product {item.product_id} ('{item.product_name}') "
                    f"no longer resolves; its line deducts no inventory"
                )
                continue
            for line in lines:
                if not line.auto_deduct or line.quantity == 0:
                    continue
                totals[line.inventory_item_id] = (
                    totals.get(line.inventory_item_id, Decimal("0")) + line.quantity
                )

        if not totals:
            return []

        items = {
            inv.id: inv
            for inv in self.db.query(InventoryItem).filter(InventoryItem.id.in_(list(totals)))
        }
        return [
            StockRequirement(
                inventory_item_id=item_id,
                name=items[item_id].name,
                unit=items[item_id].unit,
                quantity=totals[item_id],
            )
            for item_id in sorted(totals)
        ]

    def customization_for(self, item: OrderItem) -> Customization:
        if not capabilities_for(self.db).item_ingredient_overrides:
            return Customization()
        return Customization.from_overrides(item.ingredient_overrides)

    # ===== HELPERS =====

    def _select_rules(self, product_id: int, size_id: Optional[int]) -> List[Dict[str, Any]]:
        """Rules that apply to the product/size, with neutral defaults for missing columns."""
        caps = capabilities_for(self.db)
        rules = ProductIngredientRule.__table__
        items = InventoryItem.__table__

        columns = [
            rules.c.id,
            rules.c.inventory_item_id,
            rules.c.quantity_per_portion,
            rules.c.auto_deduct,
            items.c.name.label("item_name"),
            items.c.unit.label("item_unit"),
        ]
        if caps.size_scoped_recipes:
            columns.append(rules.c.product_size_id)
        if caps.recipe_units:
            columns.append(rules.c.unit)
        if caps.optional_ingredients:
            columns.append(rules.c.optional)
        if caps.customizable_ingredients:
            columns.append(rules.c.customizable)

        stmt = (
            select(*columns)
            .join(items, items.c.id == rules.c.inventory_item_id)
            .where(rules.c.product_id == product_id)
            .order_by(rules.c.id)
        )
        rows = []
        for mapping in self.db.execute(stmt).mappings():
            row = dict(mapping)
            row.setdefault("product_size_id", None)
            row.setdefault("unit", None)
            row["optional"] = bool(row.get("optional", False))
            row["customizable"] = bool(row.get("customizable", False))
            row["quantity_per_portion"] = Decimal(str(row["quantity_per_portion"]))
            rows.append(row)

        if size_id is not None:
            scoped = [row for row in rows if row["product_size_id"] == size_id]
            if scoped:
                return scoped
        return [row for row in rows if row["product_size_id"] is None]

    def _has_price(self, product_id: int, size_id: Optional[int]) -> bool:
        product = self.db.get(Product, product_id)
        if product is None:
            return False
        if size_id is not None:
            size = self.db.get(ProductSize, size_id)
            if size is not None and size.product_id == product_id and size.price is not None:
                return True
        return product.base_price is not None
