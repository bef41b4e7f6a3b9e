"""Domain errors raised by the fulfillment core.

Every error carries a stable ``code`` that the HTTP layer maps to a status
code, and a ``retryable`` flag. Only storage failures are retryable: they are
raised after the unit of work has been rolled back, so nothing was committed.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Shortfall:
    """Missing stock for one inventory item."""

    inventory_item_id: int
    name: str
    unit: str
    required: Decimal
    available: Decimal

    @property
    def missing(self) -> Decimal:
        return self.required - self.available

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inventory_item_id": self.inventory_item_id,
            "name": self.name,
            "unit": self.unit,
            "required": str(self.required),
            "available": str(self.available),
            "missing": str(self.missing),
        }


class FulfillmentError(Exception):
    """Base class for errors surfaced by the fulfillment core."""

    code = "fulfillment_error"
    retryable = False

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": str(self), "retryable": self.retryable}


class InvalidTransition(FulfillmentError):
    """Raised when a status change is not an edge of the order graph."""

    code = "invalid_transition"

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move order from '{current}' to '{requested}'")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"current": self.current, "requested": self.requested})
        return data


class InsufficientStock(FulfillmentError):
    """Raised when a deduction would drive one or more balances below zero."""

    code = "insufficient_stock"

    def __init__(self, shortfalls: List[Shortfall]):
        self.shortfalls = shortfalls
        names = ", ".join(
            f"'{s.name}' short by {s.missing} {s.unit}" for s in shortfalls
        )
        super().__init__(f"Insufficient stock: {names}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["shortfalls"] = [s.to_dict() for s in self.shortfalls]
        return data


class UnknownOrder(FulfillmentError):
    code = "unknown_order"

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class UnknownProduct(FulfillmentError):
    code = "unknown_product"

    def __init__(self, product_id: int, size_id: Optional[int] = None):
        self.product_id = product_id
        self.size_id = size_id
        suffix = f" (size {size_id})" if size_id is not None else ""
        super().__init__(f"Product {product_id}{suffix} has no recipe and no price")


class UnknownInventoryItem(FulfillmentError):
    code = "unknown_inventory_item"

    def __init__(self, inventory_item_id: int):
        self.inventory_item_id = inventory_item_id
        super().__init__(f"Inventory item {inventory_item_id} not found")


class IncompatibleUnits(FulfillmentError):
    """Raised when a recipe unit cannot be converted to the stock unit."""

    code = "incompatible_units"

    def __init__(self, from_unit: str, to_unit: str, item_name: str = ""):
        self.from_unit = from_unit
        self.to_unit = to_unit
        self.item_name = item_name
        super().__init__(
            f"Cannot convert '{from_unit}' to '{to_unit}' for '{item_name}'"
        )


class InvalidOrderData(FulfillmentError):
    code = "invalid_order_data"


class StorageUnavailable(FulfillmentError):
    """Storage could not be reached or timed out; nothing was committed."""

    code = "storage_unavailable"
    retryable = True


class ConcurrentModification(StorageUnavailable):
    """Another request updated the same order first."""

    code = "concurrent_modification"


class SideEffectFailed(FulfillmentError):
    code = "side_effect_failed"

    def __init__(self, kind: str, order_id: int, reason: str):
        self.kind = kind
        self.order_id = order_id
        self.reason = reason
        super().__init__(f"Side effect '{kind}' failed for order {order_id}: {reason}")
